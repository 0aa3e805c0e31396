"""Tenant-scoped admin routes: submissions, delivery history, audit, requeue."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...authz import (
    Caller,
    Role,
    scope_client_id,
    scope_account_id,
    ensure_submission_visible,
)
from ...errors import LeadLanderError, NotAuthorized, ValidationError
from ...pipeline import Pipeline
from ...storage.models import SubmissionStatus
from ..dependencies import get_pipeline
from ..errors import to_http_exception
from ..middleware.auth import get_caller
from ..schemas.submission import (
    SubmissionList,
    AttemptList,
    AuditList,
    RequeueResponse,
    BackfillRequest,
    BackfillResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO 8601 date")


@router.get("/submissions", response_model=SubmissionList)
async def list_submissions(
    clientId: Optional[str] = None,
    status: Optional[str] = None,
    programId: Optional[str] = None,
    locationId: Optional[str] = None,
    accountId: Optional[str] = None,
    createdFrom: Optional[str] = None,
    createdTo: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    try:
        client_id = scope_client_id(caller, clientId)
        account_id = scope_account_id(caller, accountId)
        try:
            status_filter = SubmissionStatus(status) if status else None
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
        items, total = pipeline.store.list_submissions(
            client_id,
            status=status_filter,
            program_id=programId,
            location_id=locationId,
            account_id=account_id,
            created_from=_parse_date(createdFrom, "createdFrom"),
            created_to=_parse_date(createdTo, "createdTo"),
            limit=limit,
            offset=offset,
        )
    except LeadLanderError as e:
        raise to_http_exception(e)

    return SubmissionList(items=[s.to_dict() for s in items], total=total, limit=limit, offset=offset)


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    try:
        submission = ensure_submission_visible(caller, pipeline.store.get(submission_id), submission_id)
    except LeadLanderError as e:
        raise to_http_exception(e)
    return submission.to_dict()


@router.get("/submissions/{submission_id}/attempts", response_model=AttemptList)
async def list_attempts(
    submission_id: str,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    try:
        ensure_submission_visible(caller, pipeline.store.get(submission_id), submission_id)
    except LeadLanderError as e:
        raise to_http_exception(e)
    attempts = pipeline.store.list_attempts(submission_id)
    return AttemptList(submissionId=submission_id, items=[a.to_dict() for a in attempts])


@router.post("/submissions/{submission_id}/requeue", response_model=RequeueResponse)
async def requeue(
    submission_id: str,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    try:
        result = pipeline.requeue.requeue(submission_id, caller)
    except LeadLanderError as e:
        raise to_http_exception(e)
    return RequeueResponse(
        submissionId=result.submission_id,
        status=result.status.value,
        enqueued=result.enqueued,
    )


@router.get("/audit", response_model=AuditList)
async def list_audit(
    clientId: Optional[str] = None,
    submissionId: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    try:
        client_id = scope_client_id(caller, clientId)
        if caller.role.is_account_scoped:
            # Account-scoped roles only read the trail of a submission they can see.
            if not submissionId:
                raise NotAuthorized("Account-scoped roles must name a submission")
            ensure_submission_visible(caller, pipeline.store.get(submissionId), submissionId)
    except LeadLanderError as e:
        raise to_http_exception(e)

    entries = pipeline.audit.query(client_id, submission_id=submissionId, limit=limit)
    return AuditList(clientId=client_id, items=[e.to_dict() for e in entries])


@router.get("/queue")
async def queue_depth(
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Delivery queue depth across all tenants."""
    if caller.role != Role.SUPER_ADMIN:
        raise to_http_exception(NotAuthorized("Queue depth is restricted to super_admin"))
    return {"depth": pipeline.queue.depth()}


@router.post("/backfill", response_model=BackfillResponse)
async def backfill(
    body: BackfillRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Re-enqueue stale undelivered submissions across all tenants."""
    if caller.role != Role.SUPER_ADMIN:
        raise to_http_exception(NotAuthorized("Backfill is restricted to super_admin"))
    report = pipeline.requeue.backfill(
        timedelta(minutes=body.olderThanMinutes),
        limit=body.limit,
        dry_run=body.dryRun,
    )
    logger.info(f"Backfill requested by {caller.user_id}: {len(report.enqueued)} enqueued")
    return BackfillResponse(
        cutoff=report.cutoff.isoformat(),
        dryRun=report.dry_run,
        candidates=report.candidates,
        enqueued=report.enqueued,
        skipped=report.skipped,
    )
