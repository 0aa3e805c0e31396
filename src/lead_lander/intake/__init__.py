"""Lead intake: validation, deduplication and persistence of submissions."""

from .idempotency import compute_idempotency_key
from .ingestor import SubmissionIngestor, SubmitResult, IDEMPOTENCY_KEY_MAX_LENGTH

__all__ = ["SubmissionIngestor", "SubmitResult", "compute_idempotency_key", "IDEMPOTENCY_KEY_MAX_LENGTH"]
