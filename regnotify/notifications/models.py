"""Result types and exceptions for the customer notification pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when a template is missing or references an undefined variable."""

    pass


class MessageKind(str, Enum):
    STAGE_UPDATE = "stage_update"
    REJECTION = "rejection"

    @property
    def sms_template(self) -> str:
        return f"{self.value}_sms"

    @property
    def email_template(self) -> str:
        return f"{self.value}_email"


class QueueItemNote(str, Enum):
    """Outcome notes written onto a consumed queue item."""

    NO_LINKED_REGISTRATION = "no_linked_registration"
    SKIPPED_PREFERENCE_NONE = "skipped_preference_none"
    NO_CONTACT_INFO = "no_contact_info"
    ALL_CHANNELS_FAILED = "all_channels_failed"


@dataclass(frozen=True)
class CustomerMessage:
    """Rendered SMS and email for one queue item."""

    kind: MessageKind
    sms_body: str
    subject: str
    html: str


@dataclass
class QueueRunResult:
    """Counters for one queue processor invocation.

    Attributes:
        processed: Items claimed and finalised by this run (skips included)
        errors: Items whose every attempted channel failed, or which raised
        skipped_run: True when another run held the lock and nothing was done
        item_ids: Ids of the items this run processed, in order
    """

    processed: int = 0
    errors: int = 0
    skipped_run: bool = False
    item_ids: List[str] = field(default_factory=list)

    def as_response(self) -> dict:
        return {"processed": self.processed, "errors": self.errors}
