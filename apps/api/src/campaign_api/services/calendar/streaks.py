from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.db.dialect import dialect_insert
from campaign_api.models.calendar import CalendarStreak


@dataclass(frozen=True, slots=True)
class StreakSnapshot:
    current: int
    max: int
    last_claimed_date: date | None

    def as_dict(self) -> dict[str, int]:
        return {"current": self.current, "max": self.max}


def advance_streak(previous: StreakSnapshot, claimed_on: date) -> StreakSnapshot:
    """Apply one successful claim to a streak.

    Consecutive day extends the run, same day is a no-op, a gap restarts at 1.
    A claim older than the last claimed day leaves the streak untouched so the
    run always ends at ``last_claimed_date``.
    """

    last = previous.last_claimed_date
    if last is not None and claimed_on < last:
        return previous
    if last is not None and claimed_on == last:
        current = max(previous.current, 1)
    elif last is not None and claimed_on - last == timedelta(days=1):
        current = previous.current + 1
    else:
        current = 1
    return StreakSnapshot(current=current, max=max(previous.max, current), last_claimed_date=claimed_on)


class StreakTracker:
    """Persists per-user streak state under a row lock."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def get(self, user_id: UUID) -> StreakSnapshot:
        record = await self._db.get(CalendarStreak, user_id)
        if record is None:
            return StreakSnapshot(current=0, max=0, last_claimed_date=None)
        return _snapshot(record)

    async def record_claim(self, user_id: UUID, claimed_on: date) -> StreakSnapshot:
        await self._db.execute(
            dialect_insert(self._db, CalendarStreak)
            .values(user_id=user_id, current_streak=0, max_streak=0, last_claimed_date=None)
            .on_conflict_do_nothing(index_elements=[CalendarStreak.user_id])
        )
        result = await self._db.execute(
            select(CalendarStreak)
            .where(CalendarStreak.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one()
        updated = advance_streak(_snapshot(record), claimed_on)
        record.current_streak = updated.current
        record.max_streak = updated.max
        record.last_claimed_date = updated.last_claimed_date
        await self._db.flush()
        return updated


def _snapshot(record: CalendarStreak) -> StreakSnapshot:
    return StreakSnapshot(
        current=int(record.current_streak or 0),
        max=int(record.max_streak or 0),
        last_claimed_date=record.last_claimed_date,
    )


__all__ = ["StreakSnapshot", "StreakTracker", "advance_streak"]
