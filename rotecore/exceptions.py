from typing import Any, Optional
from uuid import UUID


class SchedulerError(Exception):
    """Base exception for scheduling errors."""

    pass


class InvalidStateError(SchedulerError, ValueError):
    """Raised when an item handed to the scheduler already breaks an invariant.

    The scheduler never repairs such items; run them through
    ``rotecore.migration.normalize`` first.
    """

    def __init__(
        self,
        message: str,
        item_id: Optional[UUID] = None,
        field: Optional[str] = None,
        value: Any = None,
    ):
        super().__init__(message)
        self.item_id = item_id
        self.field = field
        self.value = value


class DatabaseError(Exception):
    """Base exception for database-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(DatabaseError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(DatabaseError):
    """Raised for errors during schema setup."""

    pass


class ItemOperationError(DatabaseError):
    """Raised for errors during item operations (CRUD)."""

    pass


class ReviewOperationError(DatabaseError):
    """Indicates an error during a review-related database operation."""

    pass


class MarshallingError(DatabaseError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass


class DeckNotFoundError(DatabaseError):
    """Raised when a specified deck is not found."""

    pass
