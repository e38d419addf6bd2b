"""In-memory delivery channels that record every call."""

from typing import List, Optional, Tuple

from regnotify.channels.base import DeliveryResult, EmailSender, SmsSender


class FakeSmsSender(SmsSender):
    """Records (to, body) pairs and answers with a fixed outcome."""

    def __init__(self, fail_with: Optional[str] = None, configured: bool = True):
        self.fail_with = fail_with
        self._configured = configured
        self.sent: List[Tuple[str, str]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def send(self, to: str, body: str) -> DeliveryResult:
        self.sent.append((to, body))
        if self.fail_with:
            return DeliveryResult.failed(self.fail_with)
        return DeliveryResult.delivered(f"SM{len(self.sent):04d}")


class FakeEmailSender(EmailSender):
    """Records (to, subject, html) triples and answers with a fixed outcome."""

    def __init__(self, fail_with: Optional[str] = None, configured: bool = True):
        self.fail_with = fail_with
        self._configured = configured
        self.sent: List[Tuple[str, str, str]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def send(self, to: str, subject: str, html: str) -> DeliveryResult:
        self.sent.append((to, subject, html))
        if self.fail_with:
            return DeliveryResult.failed(self.fail_with)
        return DeliveryResult.delivered(f"email-{len(self.sent)}")
