"""Pydantic models for submission intake and admin responses."""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel


class SubmitResponse(BaseModel):
    success: bool = True
    submissionId: str
    status: str
    idempotencyKey: Optional[str] = None


class SubmissionList(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


class AttemptList(BaseModel):
    submissionId: str
    items: List[Dict[str, Any]]


class AuditList(BaseModel):
    clientId: str
    items: List[Dict[str, Any]]


class RequeueResponse(BaseModel):
    submissionId: str
    status: str
    enqueued: bool


class BackfillRequest(BaseModel):
    olderThanMinutes: int = 15
    limit: int = 200
    dryRun: bool = False


class BackfillResponse(BaseModel):
    cutoff: str
    dryRun: bool
    candidates: List[str]
    enqueued: List[str]
    skipped: List[str]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: str
