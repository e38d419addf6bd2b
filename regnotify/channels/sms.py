"""SMS delivery through the Twilio REST API."""

from typing import Callable, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from regnotify.logging import get_logger, mask_phone
from regnotify.utils.phone import normalize_phone

from .base import DeliveryResult, SmsSender

logger = get_logger(__name__, component="channel.sms")


class TwilioSmsSender(SmsSender):
    """Send SMS via Twilio.

    The REST client is created on first use. Missing credentials and every
    provider failure come back as a failed DeliveryResult.
    """

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        timeout: int = 15,
        client_factory: Optional[Callable[..., Client]] = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self._client_factory = client_factory or Client
        self._client: Optional[Client] = None

    @property
    def configured(self) -> bool:
        return not self.missing_settings()

    def missing_settings(self) -> list[str]:
        missing = []
        if not self.account_sid:
            missing.append("TWILIO_ACCOUNT_SID")
        if not self.auth_token:
            missing.append("TWILIO_AUTH_TOKEN")
        if not self.from_number:
            missing.append("TWILIO_PHONE_NUMBER")
        return missing

    def _get_client(self) -> Client:
        if self._client is None:
            client = self._client_factory(self.account_sid, self.auth_token)
            http_client = getattr(client, "http_client", None)
            if http_client is not None and hasattr(http_client, "timeout"):
                http_client.timeout = self.timeout
            self._client = client
        return self._client

    def send(self, to: str, body: str) -> DeliveryResult:
        missing = self.missing_settings()
        if missing:
            error = f"Missing env vars: {', '.join(missing)}"
            logger.warning(
                "SMS channel not configured",
                extra={"event": "sms.not_configured", "missing": missing},
            )
            return DeliveryResult.failed(error)

        recipient = normalize_phone(to)
        if recipient is None:
            logger.warning(
                "Invalid SMS recipient",
                extra={"event": "sms.invalid_recipient", "to_phone": to},
            )
            return DeliveryResult.failed(f"Invalid phone number: {mask_phone(to)}")

        try:
            message = self._get_client().messages.create(
                to=recipient,
                from_=self.from_number,
                body=body,
            )
        except TwilioRestException as e:
            logger.warning(
                f"Twilio rejected SMS: {e.msg}",
                extra={
                    "event": "sms.send.failed",
                    "to_phone": recipient,
                    "status_code": e.status,
                    "twilio_code": e.code,
                },
            )
            return DeliveryResult.failed(f"Twilio error {e.code or e.status}: {e.msg}")
        except Exception as e:
            logger.warning(
                f"SMS send failed: {e}",
                extra={
                    "event": "sms.send.failed",
                    "to_phone": recipient,
                    "error_type": type(e).__name__,
                },
            )
            return DeliveryResult.failed(str(e) or type(e).__name__)

        logger.info(
            "SMS sent",
            extra={"event": "sms.send.succeeded", "to_phone": recipient, "provider_message_id": message.sid},
        )
        return DeliveryResult.delivered(message.sid)
