"""Quiz routing engine - drives a quiz session to a program recommendation.

A session is a plain state object. ``apply_answer`` never mutates the session
it is given; it returns the next state, so the HTTP layer can hold sessions
between requests without any callback chaining.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Union

from ..catalog import CatalogStore, QuizQuestion, QuizAnswerOption, QuestionType
from ..errors import InvalidAnswer, UnknownEntity
from ..storage.models import utcnow

logger = logging.getLogger(__name__)


class QuizStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED_RECOMMENDED = "completed_recommended"
    COMPLETED_DISQUALIFIED = "completed_disqualified"


class RoutingReason(Enum):
    """Why a session ended the way it did."""

    HIGHEST_SCORE = "highest_score"
    DIRECT_ROUTE = "direct_route"
    DEFAULT_PROGRAM = "default_program"
    NO_MATCHING_PROGRAM = "no_matching_program"
    DISQUALIFYING_ANSWER = "disqualifying_answer"


@dataclass
class RoutingResult:
    """Final routing decision of a quiz session."""

    status: QuizStatus
    program_id: Optional[str] = None
    reason: Optional[RoutingReason] = None
    score_by_program: Dict[str, int] = field(default_factory=dict)
    detail: Optional[str] = None

    @property
    def is_disqualified(self) -> bool:
        return self.status == QuizStatus.COMPLETED_DISQUALIFIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "programId": self.program_id,
            "reason": self.reason.value if self.reason else None,
            "scoreByProgram": dict(self.score_by_program),
            "detail": self.detail,
        }


@dataclass
class QuizSession:
    """Server-held state of one quiz run."""

    id: str
    account_id: str
    current_question_id: Optional[str] = None
    answers: Dict[str, Any] = field(default_factory=dict)
    score_by_program: Dict[str, int] = field(default_factory=dict)
    status: QuizStatus = QuizStatus.IN_PROGRESS
    program_id: Optional[str] = None
    reason: Optional[RoutingReason] = None
    detail: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def answered_question_ids(self) -> set:
        return set(self.answers)

    @property
    def is_complete(self) -> bool:
        return self.status != QuizStatus.IN_PROGRESS

    @property
    def result(self) -> Optional[RoutingResult]:
        if not self.is_complete:
            return None
        return RoutingResult(
            status=self.status,
            program_id=self.program_id,
            reason=self.reason,
            score_by_program=dict(self.score_by_program),
            detail=self.detail,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "accountId": self.account_id,
            "currentQuestionId": self.current_question_id,
            "answers": self.answers,
            "scoreByProgram": self.score_by_program,
            "status": self.status.value,
            "programId": self.program_id,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuizSession":
        return cls(
            id=data["id"],
            account_id=data["accountId"],
            current_question_id=data.get("currentQuestionId"),
            answers=dict(data.get("answers") or {}),
            score_by_program={k: int(v) for k, v in (data.get("scoreByProgram") or {}).items()},
            status=QuizStatus(data.get("status", QuizStatus.IN_PROGRESS.value)),
            program_id=data.get("programId"),
            reason=RoutingReason(data["reason"]) if data.get("reason") else None,
            detail=data.get("detail"),
            created_at=datetime.fromisoformat(data["createdAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )


class QuizEngine:
    """Question selection, scoring and routing over the catalog's quiz definitions."""

    def __init__(self, catalog: CatalogStore):
        self.catalog = catalog

    def start(self, account_id: str) -> QuizSession:
        """Create a session positioned at the first eligible question."""
        if self.catalog.resolve_account(account_id) is None:
            raise UnknownEntity(f"Unknown account: {account_id}")
        session = QuizSession(id=str(uuid.uuid4()), account_id=account_id)
        return self._advance(session)

    def next_question(self, session: QuizSession) -> Union[QuizQuestion, RoutingResult]:
        """Return the next question to ask, or the routing result when none remain."""
        if session.is_complete:
            return session.result
        eligible = self.eligible_questions(session)
        if eligible:
            return eligible[0]
        return self._route(session)

    def eligible_questions(self, session: QuizSession) -> List[QuizQuestion]:
        """Unanswered questions whose guard is satisfied, in display order."""
        return [
            q for q in self.catalog.list_quiz_questions(session.account_id)
            if q.id not in session.answers and self._guard_satisfied(q, session.answers)
        ]

    def apply_answer(self, session: QuizSession, question_id: str, answer: Any) -> QuizSession:
        """Record an answer and return the resulting session.

        ``answer`` is an option id for single-choice questions, a list of
        option ids for multi-choice questions, and free text for text questions.
        """
        if session.is_complete:
            raise InvalidAnswer("Quiz session is already complete")

        question = self._get_question(session.account_id, question_id)
        if question is None:
            raise InvalidAnswer(f"Unknown question: {question_id}")
        if question_id in session.answers:
            raise InvalidAnswer(f"Question {question_id} was already answered")
        if not self._guard_satisfied(question, session.answers):
            raise InvalidAnswer(f"Question {question_id} is not currently eligible")

        value, chosen = self._normalize_answer(question, answer)

        new_session = copy.deepcopy(session)
        new_session.answers[question_id] = value
        new_session.updated_at = utcnow()

        # Direct routing bypasses scoring entirely.
        if question.direct_route:
            for option in chosen:
                if not option.routes_to_program_id:
                    continue
                if self.catalog.resolve_program(session.account_id, option.routes_to_program_id) is None:
                    logger.warning(
                        f"Option {option.id} routes to unknown program {option.routes_to_program_id}"
                    )
                    continue
                return self._finish(
                    new_session,
                    QuizStatus.COMPLETED_RECOMMENDED,
                    program_id=option.routes_to_program_id,
                    reason=RoutingReason.DIRECT_ROUTE,
                )

        for option in chosen:
            if option.disqualifies:
                return self._finish(
                    new_session,
                    QuizStatus.COMPLETED_DISQUALIFIED,
                    reason=RoutingReason.DISQUALIFYING_ANSWER,
                    detail=option.disqualification_reason,
                )

        for option in chosen:
            for program_id, points in option.point_assignments.items():
                new_session.score_by_program[program_id] = (
                    new_session.score_by_program.get(program_id, 0) + points
                )

        return self._advance(new_session)

    # === INTERNALS ===

    def _get_question(self, account_id: str, question_id: str) -> Optional[QuizQuestion]:
        for question in self.catalog.list_quiz_questions(account_id):
            if question.id == question_id:
                return question
        return None

    @staticmethod
    def _guard_satisfied(question: QuizQuestion, answers: Dict[str, Any]) -> bool:
        condition = question.conditional_on
        if condition is None:
            return True
        if condition.question_id not in answers:
            return False
        recorded = answers[condition.question_id]
        chosen = recorded if isinstance(recorded, list) else [recorded]
        return any(option_id in condition.option_ids for option_id in chosen)

    @staticmethod
    def _normalize_answer(question: QuizQuestion, answer: Any):
        """Validate an answer against its question. Returns (stored value, chosen options)."""
        if question.question_type == QuestionType.TEXT:
            if not isinstance(answer, str):
                raise InvalidAnswer(f"Question {question.id} expects a text answer")
            return answer.strip(), []

        if question.question_type == QuestionType.MULTI_CHOICE:
            option_ids = [answer] if isinstance(answer, str) else answer
            if not isinstance(option_ids, list) or not option_ids:
                raise InvalidAnswer(f"Question {question.id} expects one or more option ids")
        else:
            if not isinstance(answer, str):
                raise InvalidAnswer(f"Question {question.id} expects a single option id")
            option_ids = [answer]

        chosen: List[QuizAnswerOption] = []
        for option_id in option_ids:
            option = question.get_option(option_id) if isinstance(option_id, str) else None
            if option is None:
                raise InvalidAnswer(f"Option {option_id} does not belong to question {question.id}")
            if option not in chosen:
                chosen.append(option)

        if question.question_type == QuestionType.MULTI_CHOICE:
            return [o.id for o in chosen], chosen
        return chosen[0].id, chosen

    def _advance(self, session: QuizSession) -> QuizSession:
        eligible = self.eligible_questions(session)
        if eligible:
            session.current_question_id = eligible[0].id
            return session
        result = self._route(session)
        return self._finish(
            session,
            result.status,
            program_id=result.program_id,
            reason=result.reason,
        )

    def _route(self, session: QuizSession) -> RoutingResult:
        """Pick the highest scoring program; ties go to lower display order, then lower id."""
        programs = self.catalog.list_programs(session.account_id)
        scored = [
            (session.score_by_program.get(p.id, 0), p)
            for p in programs
        ]
        scored = [(score, p) for score, p in scored if score > 0]

        if scored:
            _, best = min(scored, key=lambda sp: (-sp[0], sp[1].display_order, sp[1].id))
            return RoutingResult(
                status=QuizStatus.COMPLETED_RECOMMENDED,
                program_id=best.id,
                reason=RoutingReason.HIGHEST_SCORE,
                score_by_program=dict(session.score_by_program),
            )

        account = self.catalog.resolve_account(session.account_id)
        default_id = account.default_program_id if account else None
        if default_id and self.catalog.resolve_program(session.account_id, default_id):
            return RoutingResult(
                status=QuizStatus.COMPLETED_RECOMMENDED,
                program_id=default_id,
                reason=RoutingReason.DEFAULT_PROGRAM,
                score_by_program=dict(session.score_by_program),
            )

        return RoutingResult(
            status=QuizStatus.COMPLETED_DISQUALIFIED,
            reason=RoutingReason.NO_MATCHING_PROGRAM,
            score_by_program=dict(session.score_by_program),
        )

    @staticmethod
    def _finish(
        session: QuizSession,
        status: QuizStatus,
        program_id: Optional[str] = None,
        reason: Optional[RoutingReason] = None,
        detail: Optional[str] = None,
    ) -> QuizSession:
        session.status = status
        session.program_id = program_id
        session.reason = reason
        session.detail = detail
        session.current_question_id = None
        logger.info(
            f"Quiz session {session.id} finished: {status.value}"
            + (f" -> {program_id}" if program_id else "")
        )
        return session
