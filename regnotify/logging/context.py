"""Context propagation for structured logging.

Fields pushed here (run_id, queue_item_id, registration_id, plate_id, ...) are
merged into every log record emitted inside the scope. Storage is a ContextVar,
so scopes are isolated per thread and per task: the scheduler thread and the
HTTP worker threads never see each other's run identifiers.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional


LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the active logging context."""
    return LogContextVar.get().copy()


def push_log_context(**fields: Any) -> Token:
    """Merge fields into the active context.

    Args:
        **fields: Key-value pairs to add (None values are dropped)

    Returns:
        Token for pop_log_context()
    """
    merged = {**LogContextVar.get()}
    merged.update({key: value for key, value in fields.items() if value is not None})
    return LogContextVar.set(merged)


def pop_log_context(token: Token) -> None:
    """Restore the context that was active before the matching push."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop every context field. Intended for tests."""
    LogContextVar.set({})


class log_context:
    """Scoped logging context.

    Example:
        >>> with log_context(run_id="abc123", queue_item_id="q-1"):
        ...     logger.info("Processing queue item")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
            self.token = None
        return False
