from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class CalendarSnapshot:
    outcomes: Dict[str, Dict[str, int]]
    errors: Dict[str, int]
    referral_bonuses: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "outcomes": {operation: dict(counts) for operation, counts in self.outcomes.items()},
            "errors": dict(self.errors),
            "referral_bonuses": self.referral_bonuses,
        }


class CalendarObservabilityStore:
    """Count calendar operation outcomes and failures by code."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._outcomes: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._errors: Dict[str, int] = defaultdict(int)
        self._referral_bonuses = 0

    def record_outcome(self, operation: str, status: str) -> None:
        with self._lock:
            self._outcomes[operation][status or "unknown"] += 1

    def record_error(self, operation: str, code: str) -> None:
        with self._lock:
            self._errors[code] += 1
            self._outcomes[operation]["error"] += 1

    def record_referral_bonus(self) -> None:
        with self._lock:
            self._referral_bonuses += 1

    def snapshot(self) -> CalendarSnapshot:
        with self._lock:
            outcomes = {operation: dict(counts) for operation, counts in self._outcomes.items()}
            errors = dict(self._errors)
            referral_bonuses = self._referral_bonuses
        return CalendarSnapshot(outcomes=outcomes, errors=errors, referral_bonuses=referral_bonuses)

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._errors.clear()
            self._referral_bonuses = 0


_STORE = CalendarObservabilityStore()


def get_calendar_store() -> CalendarObservabilityStore:
    return _STORE


__all__ = ["CalendarObservabilityStore", "CalendarSnapshot", "get_calendar_store"]
