from datetime import date, timedelta
from uuid import uuid4

import pytest

from campaign_api.services.calendar import StreakSnapshot, advance_streak
from campaign_api.services.calendar.streaks import StreakTracker


D = date(2025, 12, 1)


def test_consecutive_days_extend_streak() -> None:
    snapshot = StreakSnapshot(current=0, max=0, last_claimed_date=None)
    currents = []
    for offset in range(3):
        snapshot = advance_streak(snapshot, D + timedelta(days=offset))
        currents.append(snapshot.current)

    assert currents == [1, 2, 3]
    assert snapshot.max == 3
    assert snapshot.last_claimed_date == D + timedelta(days=2)


def test_same_day_is_noop_and_gap_resets() -> None:
    snapshot = StreakSnapshot(current=3, max=3, last_claimed_date=D + timedelta(days=2))

    same_day = advance_streak(snapshot, D + timedelta(days=2))
    assert same_day.current == 3

    after_gap = advance_streak(same_day, D + timedelta(days=4))
    assert after_gap.current == 1
    assert after_gap.max == 3


def test_older_claim_leaves_streak_untouched() -> None:
    snapshot = StreakSnapshot(current=2, max=5, last_claimed_date=D + timedelta(days=5))

    assert advance_streak(snapshot, D) == snapshot


@pytest.mark.asyncio
async def test_tracker_persists_streak_rows(session_factory) -> None:
    user_id = uuid4()
    async with session_factory() as session:
        tracker = StreakTracker(session)
        assert (await tracker.get(user_id)).current == 0

        await tracker.record_claim(user_id, D)
        await tracker.record_claim(user_id, D + timedelta(days=1))
        snapshot = await tracker.record_claim(user_id, D + timedelta(days=2))
        await session.commit()

    assert snapshot.as_dict() == {"current": 3, "max": 3}

    async with session_factory() as session:
        stored = await StreakTracker(session).get(user_id)
        assert stored.current == 3
        assert stored.last_claimed_date == D + timedelta(days=2)
