"""Persistence layer exceptions.

Every storage failure surfaces as a PersistenceError subclass so the
pipelines and the HTTP layer can treat "store unavailable" uniformly.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the store cannot be initialised or reached.

    Examples:
    - Invalid or empty database URL
    - Database file not accessible
    - get_session() called before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an update targets a record that does not exist.

    Lookups return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised on constraint violations (duplicate keys, dangling plate ids)."""

    pass
