"""Outbound delivery channels (Twilio SMS, Resend email)."""

from .base import DeliveryResult, EmailSender, SmsSender
from .email import ResendEmailSender
from .exceptions import ChannelConfigurationError, ChannelDeliveryError, ChannelError
from .factory import build_senders
from .sms import TwilioSmsSender

__all__ = [
    "DeliveryResult",
    "SmsSender",
    "EmailSender",
    "TwilioSmsSender",
    "ResendEmailSender",
    "build_senders",
    "ChannelError",
    "ChannelConfigurationError",
    "ChannelDeliveryError",
]
