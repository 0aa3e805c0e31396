"""JSON-backed tenant and catalog store.

The catalog is owned by the configuration subsystem; this module only reads
it. Both naming generations are accepted on load: ``accounts``/``locations``
is canonical, ``schools``/``campuses`` are read as aliases.
"""

import json
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any

from .models import (
    Client,
    Account,
    Location,
    NotificationSettings,
    Program,
    CRMConnection,
    ConnectorType,
    QuizQuestion,
    QuizAnswerOption,
    QuizCondition,
    QuestionType,
)

logger = logging.getLogger(__name__)


def _pick(data: Dict[str, Any], *keys: str, default=None):
    """Return the first present key, so legacy field names still load."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _parse_notifications(raw: Any) -> Optional[NotificationSettings]:
    if not isinstance(raw, dict):
        return None
    recipients = raw.get("recipients") or []
    if isinstance(recipients, str):
        recipients = [r.strip() for r in recipients.split(",")]
    return NotificationSettings(
        enabled=bool(raw.get("enabled")),
        recipients=[r for r in recipients if r],
    )


class CatalogStore:
    """In-memory view of clients, accounts, programs, connections and quizzes."""

    def __init__(
        self,
        clients: Optional[List[Client]] = None,
        accounts: Optional[List[Account]] = None,
        locations: Optional[List[Location]] = None,
        programs: Optional[List[Program]] = None,
        connections: Optional[List[CRMConnection]] = None,
        questions: Optional[List[QuizQuestion]] = None,
    ):
        self.clients: Dict[str, Client] = {c.id: c for c in clients or []}
        self.accounts: Dict[str, Account] = {a.id: a for a in accounts or []}
        self.locations: Dict[str, Location] = {loc.id: loc for loc in locations or []}
        self.programs: Dict[str, Program] = {p.id: p for p in programs or []}
        self.connections: Dict[str, CRMConnection] = {c.id: c for c in connections or []}
        self.questions: Dict[str, QuizQuestion] = {q.id: q for q in questions or []}

    # === LOADING ===

    @classmethod
    def from_file(cls, path: Path) -> "CatalogStore":
        """Load a catalog from a JSON file. A missing file yields an empty catalog."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Catalog file not found: {path}")
            return cls()
        with open(path, "r") as f:
            data = json.load(f)
        store = cls.from_dict(data)
        logger.info(
            f"Loaded catalog from {path}: {len(store.accounts)} accounts, "
            f"{len(store.programs)} programs, {len(store.questions)} quiz questions"
        )
        return store

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogStore":
        clients = [
            Client(id=c["id"], name=c.get("name", ""))
            for c in data.get("clients", [])
        ]

        accounts = [
            Account(
                id=a["id"],
                client_id=_pick(a, "clientId", "client_id"),
                name=a.get("name", ""),
                crm_connection_id=_pick(a, "crmConnectionId", "crm_connection_id"),
                default_program_id=_pick(a, "defaultProgramId", "default_program_id"),
                active=_pick(a, "isActive", "active", default=True),
            )
            for a in _pick(data, "accounts", "schools", default=[])
        ]

        locations = [
            Location(
                id=loc["id"],
                account_id=_pick(loc, "accountId", "account_id", "schoolId"),
                name=loc.get("name", ""),
                active=_pick(loc, "isActive", "active", default=True),
                notifications=_parse_notifications(loc.get("notifications")),
            )
            for loc in _pick(data, "locations", "campuses", default=[])
        ]

        programs = [
            Program(
                id=p["id"],
                account_id=_pick(p, "accountId", "account_id", "schoolId"),
                name=p.get("name", ""),
                display_order=int(_pick(p, "displayOrder", "display_order", default=0)),
                active=_pick(p, "isActive", "active", default=True),
            )
            for p in data.get("programs", [])
        ]

        connections = [
            CRMConnection(
                id=c["id"],
                client_id=_pick(c, "clientId", "client_id", default=""),
                type=ConnectorType(c.get("type", "webhook")),
                config=c.get("config") or {},
            )
            for c in data.get("crmConnections", data.get("crm_connections", []))
        ]

        questions = [
            cls._question_from_dict(q)
            for q in data.get("quizQuestions", data.get("quiz_questions", []))
        ]

        return cls(clients, accounts, locations, programs, connections, questions)

    @staticmethod
    def _question_from_dict(q: Dict[str, Any]) -> QuizQuestion:
        condition = None
        raw_condition = _pick(q, "conditionalOn", "conditional_on")
        if raw_condition:
            condition = QuizCondition(
                question_id=_pick(raw_condition, "questionId", "question_id"),
                option_ids=tuple(_pick(raw_condition, "optionIds", "option_ids", default=[])),
            )

        options = []
        for o in q.get("options", []):
            points = _pick(o, "pointAssignments", "point_assignments", default={})
            options.append(QuizAnswerOption(
                id=o["id"],
                question_id=q["id"],
                label=_pick(o, "label", "optionText", "text", default=""),
                display_order=int(_pick(o, "displayOrder", "display_order", default=0)),
                point_assignments={k: int(v) for k, v in points.items()},
                routes_to_program_id=_pick(o, "routesToProgramId", "routes_to_program_id"),
                disqualifies=bool(_pick(o, "disqualifiesLead", "disqualifies", default=False)),
                disqualification_reason=_pick(o, "disqualificationReason", "disqualification_reason"),
            ))
        options.sort(key=lambda o: (o.display_order, o.id))

        return QuizQuestion(
            id=q["id"],
            account_id=_pick(q, "accountId", "account_id", "schoolId"),
            text=_pick(q, "text", "questionText", default=""),
            question_type=QuestionType(_pick(q, "questionType", "question_type", default="single_choice")),
            display_order=int(_pick(q, "displayOrder", "display_order", default=0)),
            conditional_on=condition,
            direct_route=bool(_pick(q, "directRoute", "direct_route", default=False)),
            options=options,
            active=_pick(q, "isActive", "active", default=True),
        )

    # === LOOKUPS ===

    def resolve_account(self, account_id: str) -> Optional[Account]:
        account = self.accounts.get(account_id)
        if account is None or not account.active:
            return None
        return account

    def resolve_location(self, account_id: str, location_id: str) -> Optional[Location]:
        location = self.locations.get(location_id)
        if location is None or not location.active or location.account_id != account_id:
            return None
        return location

    def resolve_program(self, account_id: str, program_id: str) -> Optional[Program]:
        """Return the program only if it is active and belongs to an active account."""
        if self.resolve_account(account_id) is None:
            return None
        program = self.programs.get(program_id)
        if program is None or not program.active or program.account_id != account_id:
            return None
        return program

    def resolve_connection(self, account_id: str) -> Optional[CRMConnection]:
        """Resolve the CRM connection configured for an account."""
        account = self.accounts.get(account_id)
        if account is None or not account.crm_connection_id:
            return None
        connection = self.connections.get(account.crm_connection_id)
        if connection is None:
            return None
        # A connection owned by another tenant is never used.
        if connection.client_id and connection.client_id != account.client_id:
            logger.warning(
                f"Connection {connection.id} belongs to client {connection.client_id}, "
                f"not {account.client_id}"
            )
            return None
        return connection

    def list_programs(self, account_id: str) -> List[Program]:
        programs = [
            p for p in self.programs.values()
            if p.account_id == account_id and p.active
        ]
        return sorted(programs, key=lambda p: (p.display_order, p.id))

    def list_quiz_questions(self, account_id: str) -> List[QuizQuestion]:
        """Active quiz questions for an account in ascending display order."""
        questions = [
            q for q in self.questions.values()
            if q.account_id == account_id and q.active
        ]
        return sorted(questions, key=lambda q: (q.display_order, q.id))
