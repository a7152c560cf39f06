from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    DuplicateError,
    ConflictError,
    StorageError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "DuplicateError",
    "ConflictError",
    "StorageError",
]
