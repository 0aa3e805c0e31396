"""Quiz session routes: start, answer, inspect."""

import logging
from fastapi import APIRouter, Depends, HTTPException

from ...catalog import QuizQuestion
from ...errors import LeadLanderError, ValidationError
from ...pipeline import Pipeline
from ..dependencies import get_pipeline
from ..errors import to_http_exception
from ..middleware.auth import verify_signature
from ..schemas.quiz import QuizStartRequest, AnswerRequest, QuizSessionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/quiz/sessions", tags=["quiz"], dependencies=[Depends(verify_signature)])


def _respond(pipeline: Pipeline, session) -> QuizSessionResponse:
    nxt = pipeline.quiz.next_question(session)
    question = nxt if isinstance(nxt, QuizQuestion) else None
    return QuizSessionResponse.build(session, question)


def _load(pipeline: Pipeline, session_id: str):
    session = pipeline.sessions.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail={"success": False, "error": "not_found", "detail": f"Unknown quiz session: {session_id}"},
        )
    return session


@router.post("", status_code=201, response_model=QuizSessionResponse)
async def start_session(body: QuizStartRequest, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        account_id = body.accountId or body.schoolId
        if not account_id:
            raise ValidationError("accountId is required")
        session = pipeline.quiz.start(account_id)
        pipeline.sessions.save(session)
    except LeadLanderError as e:
        raise to_http_exception(e)
    return _respond(pipeline, session)


@router.get("/{session_id}", response_model=QuizSessionResponse)
async def get_session(session_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    return _respond(pipeline, _load(pipeline, session_id))


@router.post("/{session_id}/answers", response_model=QuizSessionResponse)
async def answer(session_id: str, body: AnswerRequest, pipeline: Pipeline = Depends(get_pipeline)):
    session = _load(pipeline, session_id)
    try:
        session = pipeline.quiz.apply_answer(session, body.questionId, body.answer)
    except LeadLanderError as e:
        raise to_http_exception(e)
    pipeline.sessions.save(session)
    return _respond(pipeline, session)
