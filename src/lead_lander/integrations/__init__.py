"""Outbound integrations other than CRM delivery."""

from .email import SMTPConfig, LeadNotifier, build_lead_email

__all__ = ["SMTPConfig", "LeadNotifier", "build_lead_email"]
