"""Build the delivery channels from configuration."""

from typing import Tuple

from regnotify.config.environment import EnvironmentConfig
from regnotify.config.models import MessagingConfig
from regnotify.logging import get_logger

from .email import ResendEmailSender
from .sms import TwilioSmsSender

logger = get_logger(__name__, component="channel")


def build_senders(
    env_config: EnvironmentConfig, messaging: MessagingConfig
) -> Tuple[TwilioSmsSender, ResendEmailSender]:
    """Create the SMS and email senders.

    Unconfigured providers are still returned: each send then fails with a
    "Missing env var" result, which keeps the audit trail complete.

    Raises:
        ChannelConfigurationError: If the messaging settings are unusable
    """
    sms = TwilioSmsSender(
        account_sid=env_config.twilio_account_sid,
        auth_token=env_config.twilio_auth_token,
        from_number=env_config.twilio_phone_number,
        timeout=messaging.http_timeout,
    )
    email = ResendEmailSender(
        api_key=env_config.resend_api_key,
        from_address=env_config.email_from,
        timeout=messaging.http_timeout,
    )

    logger.info(
        "Delivery channels ready",
        extra={
            "event": "channels.initialised",
            "sms_configured": sms.configured,
            "email_configured": email.configured,
        },
    )
    if not sms.configured:
        logger.warning(
            "SMS disabled until Twilio credentials are set",
            extra={"event": "channels.sms.disabled", "missing": sms.missing_settings()},
        )
    if not email.configured:
        logger.warning(
            "Email disabled until RESEND_API_KEY is set",
            extra={"event": "channels.email.disabled"},
        )

    return sms, email
