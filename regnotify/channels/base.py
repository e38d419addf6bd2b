"""Delivery channel interfaces shared by the SMS and email senders.

Both pipelines depend only on these abstractions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one provider call.

    Attributes:
        success: True if the provider accepted the message
        provider_message_id: Twilio SID or Resend id on success
        error: Human-readable failure reason
    """

    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def delivered(cls, provider_message_id: Optional[str]) -> "DeliveryResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(success=False, error=error)


class SmsSender(ABC):
    """Sends a plain-text SMS. Implementations must not raise from send()."""

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether credentials are present; unconfigured senders still return results."""

    @abstractmethod
    def send(self, to: str, body: str) -> DeliveryResult:
        pass


class EmailSender(ABC):
    """Sends an HTML email. Implementations must not raise from send()."""

    @property
    @abstractmethod
    def configured(self) -> bool:
        pass

    @abstractmethod
    def send(self, to: str, subject: str, html: str) -> DeliveryResult:
        pass
