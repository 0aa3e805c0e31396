"""Audit trail."""

from .log import AuditLog

__all__ = ["AuditLog"]
