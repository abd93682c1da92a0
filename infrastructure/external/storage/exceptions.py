"""Content storage exceptions."""
from typing import Optional

from domain.common.exceptions import ContentUnavailableException


class StorageError(ContentUnavailableException):
    """Base storage exception; surfaces to callers as content unavailable."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(key)
        self.reason = message

    def __str__(self) -> str:
        return self.reason


class NotFoundError(StorageError):
    """Content object missing from storage."""
    pass


class TransientError(StorageError):
    """Transient error (network, rate limit, server error)."""
    pass


class ConfigurationError(StorageError):
    """Storage configuration error."""
    pass


class ValidationError(StorageError):
    """Storage key validation error."""
    pass
