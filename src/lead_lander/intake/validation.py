"""Submission payload validation and normalization."""

import re
from typing import Any, Dict, Optional

from ..errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DISPOSABLE_DOMAINS = {
    "mailinator.com", "tempmail.com", "throwaway.email",
    "guerrillamail.com", "10minutemail.com", "fakeinbox.com",
    "yopmail.com", "sharklasers.com", "guerrillamailblock.com",
    "grr.la", "dispostable.com", "trashmail.com",
}

NAME_MAX_LENGTH = 100
TEXT_MAX_LENGTH = 2000


def strip_html(value: str, max_length: int = TEXT_MAX_LENGTH) -> str:
    """Remove tags, collapse whitespace and cap length."""
    value = re.sub(r"<[^>]+>", "", value)
    value = re.sub(r"\s+", " ", value).strip()
    return value[:max_length]


def phone_digits(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def validate_email(email: Any) -> str:
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("email is required")
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    if email.split("@")[-1] in DISPOSABLE_DOMAINS:
        raise ValidationError("Disposable email addresses not accepted")
    return email


def validate_phone(phone: Any) -> str:
    if not isinstance(phone, str) or not phone.strip():
        raise ValidationError("phone is required")
    digits = phone_digits(phone)
    if len(digits) < 7:
        raise ValidationError("Phone number too short")
    if len(set(digits)) == 1:
        raise ValidationError("Invalid phone number")
    return phone.strip()


def validate_name(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} is required")
    value = strip_html(value, NAME_MAX_LENGTH)
    if not value:
        raise ValidationError(f"{field_name} is required")
    return value


def sanitize_answers(answers: Any) -> Dict[str, Any]:
    """Free-text answers are HTML-stripped; option ids and lists pass through."""
    if answers is None:
        return {}
    if not isinstance(answers, dict):
        raise ValidationError("answers must be an object")
    cleaned = {}
    for key, value in answers.items():
        if isinstance(value, str):
            cleaned[str(key)] = strip_html(value)
        elif isinstance(value, list):
            cleaned[str(key)] = [strip_html(v) if isinstance(v, str) else v for v in value]
        else:
            cleaned[str(key)] = value
    return cleaned
