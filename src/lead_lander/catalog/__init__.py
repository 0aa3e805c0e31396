"""Tenant & catalog collaborator interface."""

from .models import (
    Client,
    Account,
    Location,
    NotificationSettings,
    Program,
    CRMConnection,
    ConnectorType,
    QuizQuestion,
    QuizAnswerOption,
    QuizCondition,
    QuestionType,
)
from .store import CatalogStore

__all__ = [
    "CatalogStore",
    "Client",
    "Account",
    "Location",
    "NotificationSettings",
    "Program",
    "CRMConnection",
    "ConnectorType",
    "QuizQuestion",
    "QuizAnswerOption",
    "QuizCondition",
    "QuestionType",
]
