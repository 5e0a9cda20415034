"""Database exceptions."""

from errors import ConflictError, UnexpectedError


class DatabaseError(UnexpectedError):
    """Raised when a persistence operation fails."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema creation or migration fails."""
    pass


class DuplicateKeyError(DatabaseError):
    """Raised when an insert violates a unique key."""

    def __init__(self, key: str, value):
        self.key = key
        self.value = value
        super().__init__(f"Duplicate value for {key}: {value}")


class ConcurrentModificationError(ConflictError):
    """Raised when a row changed between the read and the guarded write."""
    pass


class ReferencedRowError(ConflictError):
    """Raised when a delete is blocked by rows that still reference the target."""
    pass
