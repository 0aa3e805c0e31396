"""Mapping of pipeline errors to HTTP responses."""

import logging
from fastapi import HTTPException

from ..errors import (
    LeadLanderError,
    ValidationError,
    ConsentRequired,
    InvalidAnswer,
    UnknownEntity,
    SubmissionNotFound,
    NotAuthorized,
    InvalidTransition,
)

logger = logging.getLogger(__name__)

STATUS_CODES = [
    (ValidationError, 400),
    (ConsentRequired, 400),
    (InvalidAnswer, 400),
    (UnknownEntity, 404),
    (SubmissionNotFound, 404),
    (NotAuthorized, 403),
    (InvalidTransition, 409),
]


def to_http_exception(error: Exception) -> HTTPException:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(
                status_code=status_code,
                detail={"success": False, "error": error.code, "detail": str(error)},
            )
    if isinstance(error, LeadLanderError):
        logger.error(f"Unhandled pipeline error: {error}")
    return HTTPException(
        status_code=500,
        detail={"success": False, "error": "server_error", "detail": "Internal processing error"},
    )
