from datetime import date

import pytest

from campaign_api.services.calendar import MetricsAggregator, MetricsDelta


D = date(2025, 12, 3)


def test_delta_addition_and_zero_check() -> None:
    combined = MetricsDelta(claims=1, vouchers_issued=2) + MetricsDelta(vouchers_issued=-2, raffle_entries=3)

    assert combined == MetricsDelta(claims=1, vouchers_issued=0, raffle_entries=3)
    assert not combined.is_zero
    assert MetricsDelta().is_zero


@pytest.mark.asyncio
async def test_counters_accumulate_and_floor_at_zero(session_factory) -> None:
    async with session_factory() as session:
        aggregator = MetricsAggregator(session)

        await aggregator.apply(D, MetricsDelta(claims=1, vouchers_issued=2, raffle_entries=5))
        await aggregator.apply(D, MetricsDelta(claims=1, vouchers_issued=-3, raffle_entries=-1))
        await aggregator.apply(D, MetricsDelta())

        row = await aggregator.get(D)
        assert row.claims_count == 2
        assert row.vouchers_issued == 0
        assert row.raffle_entries_added == 4
        assert row.vouchers_redeemed == 0


@pytest.mark.asyncio
async def test_first_negative_delta_creates_zeroed_row(session_factory) -> None:
    async with session_factory() as session:
        aggregator = MetricsAggregator(session)

        await aggregator.apply(D, MetricsDelta(vouchers_issued=-1, streak_7=1))

        row = await aggregator.get(D)
        assert row.vouchers_issued == 0
        assert row.streak_7_count == 1
