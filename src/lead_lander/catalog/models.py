"""Tenant and catalog entities (read-only to the pipeline)."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


class ConnectorType(Enum):
    """CRM connector variants. New connectors extend this set."""

    WEBHOOK = "webhook"
    GENERIC = "generic"


class QuestionType(Enum):
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    TEXT = "text"


@dataclass
class Client:
    """A tenant: the isolation boundary for all data access."""

    id: str
    name: str = ""


@dataclass
class Account:
    """A client's business unit (formerly "school")."""

    id: str
    client_id: str
    name: str = ""
    crm_connection_id: Optional[str] = None
    default_program_id: Optional[str] = None
    active: bool = True


@dataclass
class NotificationSettings:
    """Who hears about a lead once it reaches the CRM."""

    enabled: bool = False
    recipients: List[str] = field(default_factory=list)


@dataclass
class Location:
    """A physical site of an account (formerly "campus")."""

    id: str
    account_id: str
    name: str = ""
    active: bool = True
    notifications: Optional[NotificationSettings] = None


@dataclass
class Program:
    id: str
    account_id: str
    name: str = ""
    display_order: int = 0
    active: bool = True


@dataclass
class CRMConnection:
    id: str
    client_id: str
    type: ConnectorType = ConnectorType.WEBHOOK
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuizCondition:
    """Show a question only when `question_id` was answered with one of `option_ids`."""

    question_id: str
    option_ids: tuple = ()


@dataclass
class QuizAnswerOption:
    id: str
    question_id: str
    label: str = ""
    display_order: int = 0
    point_assignments: Dict[str, int] = field(default_factory=dict)
    routes_to_program_id: Optional[str] = None
    disqualifies: bool = False
    disqualification_reason: Optional[str] = None


@dataclass
class QuizQuestion:
    id: str
    account_id: str
    text: str = ""
    question_type: QuestionType = QuestionType.SINGLE_CHOICE
    display_order: int = 0
    conditional_on: Optional[QuizCondition] = None
    direct_route: bool = False
    options: List[QuizAnswerOption] = field(default_factory=list)
    active: bool = True

    def get_option(self, option_id: str) -> Optional[QuizAnswerOption]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None
