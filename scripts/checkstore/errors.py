"""Exception types raised by core repositories.

Every error carries the name of the repository operation that raised it and
the storage key involved (when there is one), so callers can report failures
without inspecting the backend that produced them.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for all core repository errors.

    Attributes:
        message: Human-readable description of the failure.
        operation: Name of the repository operation (e.g. "add_check").
        key: Storage key involved in the failure, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.key = key

    def __str__(self) -> str:
        text = self.message
        if self.operation:
            text = f"{self.operation}: {text}"
        if self.key is not None:
            text = f"{text} (key={self.key!r})"
        return text


class InvalidReferenceError(StoreError, ValueError):
    """A checklist reference failed validation; storage was not touched."""


class NotFoundError(StoreError, LookupError):
    """A requested user has no stored record."""


class CorruptionError(StoreError, ValueError):
    """Stored bytes could not be decoded into the expected record shape."""


class StoreUnavailableError(StoreError, OSError):
    """The engine could not open, lock, read or commit."""
