"""Email delivery through the Resend HTTP API."""

from typing import Any, Dict, Optional

import requests

from regnotify.logging import get_logger

from .base import DeliveryResult, EmailSender
from .exceptions import ChannelConfigurationError, ChannelDeliveryError

logger = get_logger(__name__, component="channel.email")

RESEND_API_URL = "https://api.resend.com/emails"


class ResendEmailSender(EmailSender):
    """Send HTML email via Resend.

    Attributes:
        api_key: Resend API key (None disables the channel)
        from_address: RFC 5322 sender, e.g. "Brand <notifications@example.com>"
        timeout: HTTP request timeout in seconds
    """

    def __init__(
        self,
        api_key: Optional[str],
        from_address: str,
        timeout: int = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not from_address or not from_address.strip():
            raise ChannelConfigurationError("Email sender address cannot be empty")
        if not 1 <= timeout <= 120:
            raise ChannelConfigurationError(
                f"HTTP timeout must be between 1 and 120 seconds, got: {timeout}"
            )

        self.api_key = api_key
        self.from_address = from_address.strip()
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, subject: str, html: str) -> DeliveryResult:
        if not self.api_key:
            logger.warning(
                "Email channel not configured",
                extra={"event": "email.not_configured", "missing": ["RESEND_API_KEY"]},
            )
            return DeliveryResult.failed("Missing env var: RESEND_API_KEY")

        try:
            data = self._post({"from": self.from_address, "to": [to], "subject": subject, "html": html})
        except ChannelDeliveryError as e:
            logger.warning(
                f"Email send failed: {e}",
                extra={"event": "email.send.failed", "to_email": to, "status_code": e.status_code},
            )
            return DeliveryResult.failed(str(e))

        message_id = data.get("id")
        logger.info(
            "Email sent",
            extra={"event": "email.send.succeeded", "to_email": to, "provider_message_id": message_id},
        )
        return DeliveryResult.delivered(message_id)

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST to Resend and return the decoded body.

        Raises:
            ChannelDeliveryError: On transport errors, non-2xx status or bad JSON
        """
        try:
            response = self._session.post(
                RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ChannelDeliveryError(f"Resend request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ChannelDeliveryError(f"Resend request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            raise ChannelDeliveryError(
                _error_message(data) or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return data


def _error_message(data: Dict[str, Any]) -> Optional[str]:
    """Pull a message out of Resend's error body (flat or nested shape)."""
    if isinstance(data.get("message"), str):
        return data["message"]
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return None
