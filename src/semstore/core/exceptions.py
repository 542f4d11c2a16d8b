"""Custom exceptions for semstore."""


class SemStoreError(Exception):
    """Base exception for all semstore errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SemStoreError):
    """Raised when there's a configuration problem."""

    pass


class ValidationError(SemStoreError):
    """Raised when input is rejected before any write."""

    pass


class StoreNotOpenError(SemStoreError):
    """Raised when an operation is attempted on a closed engine or store."""

    pass


class OpenFailedError(SemStoreError):
    """Raised when a database cannot be opened or its schema created."""

    pass


class InsertFailedError(SemStoreError):
    """Raised when a write transaction fails and has been rolled back."""

    pass


class SearchFailedError(SemStoreError):
    """Recorded when a search fails; searches degrade to an empty list."""

    pass


class DimensionMismatchError(ValidationError):
    """Raised when an embedding does not match the store dimension."""

    def __init__(self, expected: int, actual: int, record_id: str | None = None) -> None:
        details: dict = {"expected": expected, "actual": actual}
        if record_id is not None:
            details["id"] = record_id
        super().__init__(
            f"Embedding dimension {actual} does not match store dimension {expected}",
            details,
        )
        self.expected = expected
        self.actual = actual


class EngineExecutionError(SemStoreError):
    """Raised for a generic fault in the underlying storage engine."""

    pass
