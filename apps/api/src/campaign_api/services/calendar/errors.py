"""Error taxonomy for calendar operations.

Every error carries a stable ``code`` that API clients can branch on.
"""

from __future__ import annotations

from typing import Any


class CalendarError(Exception):
    """Base class for calendar failures surfaced to callers."""

    default_code = "calendar_error"
    retryable = False

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or self.code.replace("_", " ")
        self.details = details or {}
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class CalendarAuthorizationError(CalendarError):
    """Caller is not entitled to act, or the campaign is switched off."""

    default_code = "calendar_unauthorized"


class CalendarValidationError(CalendarError):
    """Unknown event/choice, window violation or malformed input."""

    default_code = "calendar_invalid"


class CalendarNotFoundError(CalendarValidationError):
    default_code = "calendar_not_found"


class CalendarConflictError(CalendarError):
    """State forbids the action (locked choice, raffle already drawn)."""

    default_code = "calendar_conflict"


class TransientStoreError(CalendarError):
    """Backing store unavailable; the whole operation may be retried."""

    default_code = "calendar_store_unavailable"
    retryable = True


__all__ = [
    "CalendarAuthorizationError",
    "CalendarConflictError",
    "CalendarError",
    "CalendarNotFoundError",
    "CalendarValidationError",
    "TransientStoreError",
]
