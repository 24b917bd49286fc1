"""
Lab Pool — Error Taxonomy

Typed failures returned to callers of the pool. Business-rule
rejections are never retried by the pool itself; the caller decides
whether to re-read, pick another item, or fix its input.

  NotFound           unknown item id
  AlreadyClaimed     lost a claim race, re-query and pick another item
  NotOwner           actor is not the current owner
  InvalidTransition  state/event mismatch (stale client state)
  ValidationError    malformed completion/cancellation payload
  Conflict           version mismatch on write, re-read and retry
  NotEligible        item is not yet released for claiming
  StoreUnavailable   persistence fault, the only retryable class
"""

from __future__ import annotations

from typing import Any


class PoolError(Exception):
    """Base class for all pool failures."""

    code = "pool_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFound(PoolError):
    code = "not_found"


class AlreadyClaimed(PoolError):
    code = "already_claimed"


class NotOwner(PoolError):
    code = "not_owner"


class InvalidTransition(PoolError):
    code = "invalid_transition"


class ValidationError(PoolError):
    """Carries field-level messages, e.g. ``results[0].label: required``."""

    code = "validation_error"

    def __init__(self, message: str, field_errors: list[str] | None = None):
        self.field_errors = list(field_errors or [])
        super().__init__(message, {"fields": self.field_errors})


class Conflict(PoolError):
    code = "conflict"


class NotEligible(PoolError):
    code = "not_eligible"


class StoreUnavailable(PoolError):
    code = "store_unavailable"


_BY_CODE: dict[str, type[PoolError]] = {
    cls.code: cls
    for cls in (
        NotFound, AlreadyClaimed, NotOwner, InvalidTransition,
        ValidationError, Conflict, NotEligible, StoreUnavailable,
    )
}


def error_for_code(code: str) -> type[PoolError]:
    """Map a rejection code from the state machine to its exception class."""
    return _BY_CODE.get(code, PoolError)
