"""Caller identity and tenant-scope checks for administrative operations.

Identity is established upstream (session login, role management); this
module only decides what an already-identified caller may see or do.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import NotAuthorized, SubmissionNotFound
from .storage.models import Submission

logger = logging.getLogger(__name__)


class Role(Enum):
    SUPER_ADMIN = "super_admin"
    CLIENT_ADMIN = "client_admin"
    ACCOUNT_ADMIN = "account_admin"
    STAFF = "staff"

    @classmethod
    def parse(cls, value: str) -> "Role":
        value = (value or "").strip().lower()
        if value == "school_admin":
            return cls.ACCOUNT_ADMIN
        try:
            return cls(value)
        except ValueError:
            raise NotAuthorized(f"Unknown role: {value or '(none)'}")

    @property
    def is_account_scoped(self) -> bool:
        return self in (Role.ACCOUNT_ADMIN, Role.STAFF)


@dataclass
class Caller:
    """An authenticated admin user."""

    user_id: str
    role: Role
    client_id: Optional[str] = None
    account_id: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


def can_access_client(caller: Caller, client_id: str) -> bool:
    if caller.is_super_admin:
        return True
    return caller.client_id is not None and caller.client_id == client_id


def can_access_submission(caller: Caller, submission: Submission) -> bool:
    if not can_access_client(caller, submission.client_id):
        return False
    if caller.role.is_account_scoped:
        return caller.account_id is not None and caller.account_id == submission.account_id
    return True


def scope_client_id(caller: Caller, requested: Optional[str] = None) -> str:
    """Resolve which client a read runs against.

    Super admins name a client explicitly; everyone else is pinned to their own.
    """
    if caller.is_super_admin:
        if not requested:
            raise NotAuthorized("super_admin must name a client")
        return requested
    if not caller.client_id:
        raise NotAuthorized("Caller has no client scope")
    if requested and requested != caller.client_id:
        raise NotAuthorized("Cross-tenant access denied")
    return caller.client_id


def scope_account_id(caller: Caller, requested: Optional[str] = None) -> Optional[str]:
    """Account filter a read must apply; account-scoped roles only see their account."""
    if caller.role.is_account_scoped:
        if not caller.account_id:
            raise NotAuthorized("Caller has no account scope")
        if requested and requested != caller.account_id:
            raise NotAuthorized("Cross-account access denied")
        return caller.account_id
    return requested


def ensure_submission_visible(caller: Caller, submission: Optional[Submission], submission_id: str) -> Submission:
    """Return the submission, or raise as if it did not exist."""
    if submission is None or not can_access_submission(caller, submission):
        if submission is not None:
            logger.warning(f"[{submission_id}] Access denied for user {caller.user_id}")
        raise SubmissionNotFound(submission_id)
    return submission


def authorize_requeue(caller: Caller, submission: Submission):
    """Requeue is open to super admins, client admins of the tenant, and account-scoped roles of the account."""
    if not can_access_submission(caller, submission):
        logger.warning(f"[{submission.id}] Requeue denied for user {caller.user_id}")
        raise SubmissionNotFound(submission.id)
