"""Core exceptions for semstore."""

from semstore.core.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    EngineExecutionError,
    InsertFailedError,
    OpenFailedError,
    SearchFailedError,
    SemStoreError,
    StoreNotOpenError,
    ValidationError,
)

__all__ = [
    "SemStoreError",
    "ConfigurationError",
    "ValidationError",
    "StoreNotOpenError",
    "OpenFailedError",
    "InsertFailedError",
    "SearchFailedError",
    "DimensionMismatchError",
    "EngineExecutionError",
]
