"""Email notification sent to a location's recipients after a lead is delivered."""

import json
import logging
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Optional, List, Tuple

from ..catalog import CatalogStore
from ..config import settings
from ..storage.models import Submission

logger = logging.getLogger(__name__)


@dataclass
class SMTPConfig:
    """SMTP email configuration."""

    host: str
    port: int
    username: str
    password: str
    from_email: str
    from_name: str = "Lead Lander"
    use_tls: bool = True

    @classmethod
    def from_settings(cls) -> Optional["SMTPConfig"]:
        """SMTP settings from the environment, or None when email is off or incomplete."""
        if not settings.email_enabled:
            return None
        if not (settings.smtp_host and settings.smtp_user and settings.smtp_password):
            logger.warning("LL_EMAIL_ENABLED is set but SMTP is not configured, notifications disabled")
            return None
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
        )


def build_lead_email(submission: Submission, program_name: str, location_name: str) -> Tuple[str, str]:
    """Subject and plain-text body of a new-lead notification."""
    subject = f"New lead: {program_name} ({location_name})"
    lines = [
        f"Submission ID: {submission.id}",
        f"Account ID: {submission.account_id}",
        f"Location ID: {submission.location_id}",
        f"Program ID: {submission.program_id}",
        "",
        f"Name: {submission.contact.full_name}",
        f"Email: {submission.contact.email}",
        f"Phone: {submission.contact.phone}",
        "",
        "Answers:",
    ]
    for key, value in submission.answers.items():
        lines.append(f"- {key}: {json.dumps(value)}")
    return subject, "\n".join(lines)


class LeadNotifier:
    """Emails a location's notification recipients about a delivered lead.

    Sending is best effort: failures are logged and reported as False, never raised.
    """

    def __init__(self, catalog: CatalogStore, smtp: Optional[SMTPConfig] = None):
        self.catalog = catalog
        self.smtp = smtp

    def recipients_for(self, submission: Submission) -> List[str]:
        if not submission.location_id:
            return []
        location = self.catalog.resolve_location(submission.account_id, submission.location_id)
        if location is None or location.notifications is None or not location.notifications.enabled:
            return []
        return list(location.notifications.recipients)

    def notify_delivered(self, submission: Submission) -> bool:
        recipients = self.recipients_for(submission)
        if not recipients:
            return False
        if self.smtp is None:
            logger.info(f"[{submission.id}] Lead notification skipped, SMTP not configured")
            return False

        location = self.catalog.resolve_location(submission.account_id, submission.location_id)
        program = self.catalog.resolve_program(submission.account_id, submission.program_id)
        subject, body = build_lead_email(
            submission,
            program.name if program else submission.program_id,
            location.name if location else submission.location_id,
        )
        return self._send_smtp(submission.id, recipients, subject, body)

    def _send_smtp(self, submission_id: str, recipients: List[str], subject: str, body: str) -> bool:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.smtp.from_name} <{self.smtp.from_email}>"
        msg["To"] = ", ".join(recipients)

        try:
            if self.smtp.use_tls:
                server = smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=settings.http_timeout)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(self.smtp.host, self.smtp.port, timeout=settings.http_timeout)

            server.login(self.smtp.username, self.smtp.password)
            server.sendmail(self.smtp.from_email, recipients, msg.as_string())
            server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"[{submission_id}] Lead notification email failed: {e}")
            return False

        logger.info(f"[{submission_id}] Lead notification sent to {len(recipients)} recipient(s)")
        return True
