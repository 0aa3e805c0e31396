"""Lead submission route."""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from ...errors import LeadLanderError
from ...intake.client_info import request_metadata
from ...pipeline import Pipeline
from ..dependencies import get_pipeline
from ..errors import to_http_exception
from ..middleware.auth import verify_signature
from ..schemas.submission import SubmitResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/submissions", tags=["submissions"])


@router.post(
    "",
    status_code=202,
    response_model=SubmitResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def submit(request: Request, pipeline: Pipeline = Depends(get_pipeline), _auth=Depends(verify_signature)):
    """Accept a lead. Delivery to the CRM happens asynchronously.

    Resubmitting the same lead (same idempotency key) returns the original
    submission instead of creating a second one.
    """
    try:
        body = await request.json()
    except Exception:
        raise HTTPException(
            status_code=400,
            detail={"success": False, "error": "validation_error", "detail": "Invalid JSON body"},
        )

    try:
        result = pipeline.ingestor.submit(body, context=request_metadata(
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
            ip=request.client.host if request.client else None,
        ))
    except LeadLanderError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Submission error: {e}")
        raise to_http_exception(e)

    return SubmitResponse(**result.to_dict())
