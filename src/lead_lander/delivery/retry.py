"""Retry policy and HTTP status classification."""

from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..storage.models import AttemptOutcome


@dataclass
class RetryPolicy:
    """Exponential backoff: base_delay * 2^(attempt-1), capped at max_delay."""

    max_attempts: int = 5
    base_delay_seconds: float = 10.0
    max_delay_seconds: float = 3600.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.backoff_ms / 1000.0,
            max_delay_seconds=settings.backoff_max_ms / 1000.0,
        )

    def delay_for(self, attempt_number: int) -> float:
        """Delay before the retry that follows a failed attempt."""
        delay = self.base_delay_seconds * (2 ** max(0, attempt_number - 1))
        return min(delay, self.max_delay_seconds)

    def is_exhausted(self, attempt_number: int) -> bool:
        return attempt_number >= self.max_attempts


def classify_http_status(status_code: Optional[int]) -> AttemptOutcome:
    """2xx succeeds; 429 and 5xx are worth retrying; everything else is permanent."""
    if status_code is None:
        return AttemptOutcome.RETRYABLE_FAILURE
    if 200 <= status_code < 300:
        return AttemptOutcome.SUCCESS
    if status_code == 429 or status_code >= 500:
        return AttemptOutcome.RETRYABLE_FAILURE
    return AttemptOutcome.PERMANENT_FAILURE
