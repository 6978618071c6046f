"""
Domain error hierarchy for the inventory lifecycle core.

Every error the core raises derives from DeviceStockError and carries a
machine-readable ``code`` (class attribute) plus an HTTP-style
``status_code`` so an outer transport layer can map it without parsing
messages. Structured context lives in ``details``.

    ValidationError     400  malformed or missing input
    Unauthorized        403  cross-company access
    NotFound            404  unknown item / session / company
    DuplicateKey        409  serial number collision within a company
    StateConflict       409  transition not allowed from the current state
    ImmutableRecordError 409 attempt to rewrite an audit record
    PreconditionFailed  412  no open daily stock session
"""

from __future__ import annotations

from typing import Any


class DeviceStockError(Exception):
    """Base class for all core errors."""

    code: str = "DEVICESTOCK_ERROR"
    status_code: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DeviceStockError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(DeviceStockError, LookupError):
    code = "NOT_FOUND"
    status_code = 404


class Unauthorized(DeviceStockError):
    """Actor's company does not own the entity."""

    code = "UNAUTHORIZED"
    status_code = 403


class DuplicateKey(DeviceStockError):
    code = "DUPLICATE_KEY"
    status_code = 409


class StateConflict(DeviceStockError):
    """
    Raised when a transition is attempted from a state that does not allow it,
    or when a concurrent writer won the race for the same row.
    """

    code = "STATE_CONFLICT"
    status_code = 409

    def __init__(self, message: str, *, current_state: str | None = None,
                 action: str | None = None, **details: Any):
        super().__init__(message, current_state=current_state, action=action, **details)
        self.current_state = current_state
        self.action = action


class PreconditionFailed(DeviceStockError):
    """A counted transaction was attempted without an open daily session."""

    code = "PRECONDITION_FAILED"
    status_code = 412


class ImmutableRecordError(DeviceStockError):
    code = "IMMUTABLE_RECORD"
    status_code = 409
