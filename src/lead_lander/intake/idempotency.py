"""Idempotency key derivation for submissions without a client-supplied key."""

import hashlib
from typing import Optional

from .validation import phone_digits


def compute_idempotency_key(
    client_id: str,
    email: str,
    phone: Optional[str],
    account_id: str,
    location_id: Optional[str],
    program_id: str,
) -> str:
    """sha256 over the normalized identity of a lead for one program."""
    normalized = "|".join([
        client_id,
        email.strip().lower(),
        phone_digits(phone),
        account_id,
        location_id or "",
        program_id,
    ])
    return hashlib.sha256(normalized.encode()).hexdigest()
