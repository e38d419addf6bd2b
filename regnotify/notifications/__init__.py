"""Customer notification pipeline: templates, payloads and the queue processor."""

from .models import (
    CustomerMessage,
    MessageKind,
    NotificationError,
    NotificationTemplateError,
    QueueItemNote,
    QueueRunResult,
)
from .queue_processor import NotificationQueueProcessor
from .templates import TemplateRenderer

__all__ = [
    "NotificationQueueProcessor",
    "TemplateRenderer",
    "CustomerMessage",
    "MessageKind",
    "QueueItemNote",
    "QueueRunResult",
    "NotificationError",
    "NotificationTemplateError",
]
