"""Pydantic models for quiz sessions."""

from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field

from ...catalog import QuizQuestion
from ...quiz import QuizSession


class QuizStartRequest(BaseModel):
    accountId: Optional[str] = None
    schoolId: Optional[str] = None


class AnswerRequest(BaseModel):
    questionId: str
    answer: Union[str, List[str]]


class OptionOut(BaseModel):
    id: str
    label: str


class QuestionOut(BaseModel):
    id: str
    text: str
    questionType: str
    options: List[OptionOut] = Field(default_factory=list)

    @classmethod
    def from_question(cls, question: QuizQuestion) -> "QuestionOut":
        return cls(
            id=question.id,
            text=question.text,
            questionType=question.question_type.value,
            options=[
                OptionOut(id=o.id, label=o.label)
                for o in sorted(question.options, key=lambda o: (o.display_order, o.id))
            ],
        )


class QuizSessionResponse(BaseModel):
    sessionId: str
    accountId: str
    status: str
    question: Optional[QuestionOut] = None
    result: Optional[Dict[str, Any]] = None
    answeredQuestionIds: List[str] = Field(default_factory=list)

    @classmethod
    def build(cls, session: QuizSession, question: Optional[QuizQuestion]) -> "QuizSessionResponse":
        result = session.result
        return cls(
            sessionId=session.id,
            accountId=session.account_id,
            status=session.status.value,
            question=QuestionOut.from_question(question) if question else None,
            result=result.to_dict() if result else None,
            answeredQuestionIds=sorted(session.answered_question_ids),
        )
