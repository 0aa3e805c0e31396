"""Quiz scoring and program routing."""

from .engine import QuizEngine, QuizSession, QuizStatus, RoutingResult, RoutingReason
from .sessions import QuizSessionStore

__all__ = [
    "QuizEngine",
    "QuizSession",
    "QuizStatus",
    "RoutingResult",
    "RoutingReason",
    "QuizSessionStore",
]
