"""Custom exceptions for delivery channels.

Senders never raise these out of send(); they surface as failed
DeliveryResults. They are raised at construction time and used internally
to carry a provider's error message.
"""


class ChannelError(Exception):
    """Base exception for all channel errors."""

    pass


class ChannelConfigurationError(ChannelError):
    """A sender was built with unusable settings (bad timeout, empty sender)."""

    pass


class ChannelDeliveryError(ChannelError):
    """A provider rejected or failed a single message."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
