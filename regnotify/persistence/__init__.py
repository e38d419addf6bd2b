"""Persistence layer: engine/session management, ORM schema and repositories.

Example usage:
    >>> from regnotify.persistence import init_database, get_session, PlateAlertRepository
    >>> init_database("sqlite:///./data/regnotify.db")
    >>> with get_session() as session:
    ...     open_alerts = PlateAlertRepository(session).list_open()
"""

from .database import close_database, get_engine, get_session, init_database, is_initialized
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    InsuranceAlertRepository,
    NotificationLogRepository,
    NotificationQueueRepository,
    PlateAlertRepository,
    PlateRepository,
    RegistrationRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "is_initialized",
    # Repositories
    "RegistrationRepository",
    "NotificationQueueRepository",
    "PlateRepository",
    "PlateAlertRepository",
    "InsuranceAlertRepository",
    "NotificationLogRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
