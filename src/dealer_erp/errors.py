"""Error taxonomy shared by every Dealer ERP layer.

``ValidationError`` and ``NotFoundError`` also derive from the matching
built-in exceptions so callers that only know about ``ValueError`` or
``KeyError`` keep working.
"""

from __future__ import annotations

from typing import Any, Optional


class DealerError(Exception):
    """Root of all domain errors raised by the package."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(DealerError, ValueError):
    """Raised when a request carries malformed or missing input."""


class ConflictError(DealerError):
    """Raised when an invariant-protecting precondition no longer holds.

    The canonical case is an attempt to sell a vehicle that is already sold.
    """


class NotFoundError(DealerError, KeyError):
    """Raised when a referenced vehicle, sale, expense, or employee is absent."""


class AuthorizationError(DealerError):
    """Raised when the acting identity lacks the role an operation requires."""


class StoreError(DealerError):
    """Transient failure while talking to the document store."""


class WriteError(StoreError):
    """A store write failed and was not applied. Retrying the operation is safe."""


class ReadError(StoreError):
    """A store read failed."""


__all__ = [
    "DealerError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "AuthorizationError",
    "StoreError",
    "WriteError",
    "ReadError",
]
