from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select

from campaign_api.models.calendar import CalendarClaim, CalendarVoucher
from campaign_api.services.calendar import (
    CalendarConflictError,
    CalendarEngine,
    CalendarValidationError,
    RequestContext,
    StaticFeatureFlag,
)
from campaign_api.services.calendar.issuer import RewardIssuer
from campaign_api.services.calendar.metrics import MetricsAggregator

from conftest import RAFFLE_ID, at_noon, member_ctx, seed_event, seed_raffle


D = date(2025, 12, 5)

CHOICE_CONFIG = {
    "choices": [
        {
            "key": "coffee",
            "title": "Free coffee",
            "rewards": {
                "vouchers": [{"type": "coffee", "scope": "cafe"}],
                "raffle_entries": [{"raffle_id": RAFFLE_ID, "count": 2, "source": "jackpot"}],
            },
        },
        {
            "key": "tea",
            "title": "Free tea",
            "rewards": {"vouchers": [{"type": "tea", "scope": "cafe"}]},
        },
    ]
}


async def _seed(session) -> CalendarEngine:
    await seed_raffle(session)
    await seed_event(session, D, CHOICE_CONFIG)
    await session.commit()
    return CalendarEngine(session, feature_flag=StaticFeatureFlag(True))


async def _choice_vouchers(session, user_id) -> list[str]:
    result = await session.execute(
        select(CalendarVoucher.voucher_type).where(
            CalendarVoucher.user_id == user_id,
            CalendarVoucher.source == "choice",
        )
    )
    return sorted(result.scalars().all())


@pytest.mark.asyncio
async def test_switching_choice_replaces_previous_rewards(session_factory) -> None:
    user_id = uuid4()
    ctx = member_ctx(user_id, D)
    async with session_factory() as session:
        engine = await _seed(session)
        await engine.claim(user_id, ctx=ctx, event_date=D)

        coffee = await engine.select_choice(user_id, D, "coffee", ctx=ctx)
        assert coffee.status == "recorded"
        assert coffee.choice["key"] == "coffee"
        assert [(entry.source, entry.added) for entry in coffee.raffle_entries] == [("choice", 2)]
        assert coffee.claim.payload["choice"]["key"] == "coffee"
        assert coffee.claim.payload["choice"]["title"] == "Free coffee"

        again = await engine.select_choice(user_id, D, "coffee", ctx=ctx)
        assert again.status == "unchanged"
        assert again.vouchers == []

        tea = await engine.select_choice(user_id, D, "tea", ctx=ctx)
        assert tea.status == "recorded"
        assert tea.removed.vouchers == 1
        assert tea.removed.entries == 2
        assert tea.as_dict()["removed_vouchers"] == 1

        assert await _choice_vouchers(session, user_id) == ["tea"]
        assert await RewardIssuer(session).entry_totals(user_id) == {}

        metrics = await MetricsAggregator(session).get(D)
        assert metrics.vouchers_issued == 1
        assert metrics.raffle_entries_added == 0


@pytest.mark.asyncio
async def test_choice_locked_after_redemption(session_factory) -> None:
    user_id = uuid4()
    ctx = member_ctx(user_id, D)
    async with session_factory() as session:
        engine = await _seed(session)
        await engine.claim(user_id, ctx=ctx, event_date=D)
        selected = await engine.select_choice(user_id, D, "tea", ctx=ctx)

        redeemed = await engine.redeem_voucher(selected.vouchers[0].id, ctx=RequestContext.service(now=at_noon(D)))
        assert redeemed["status"] == "redeemed"
        assert redeemed["voucher"]["status"] == "redeemed"

        with pytest.raises(CalendarConflictError) as excinfo:
            await engine.select_choice(user_id, D, "coffee", ctx=ctx)
        assert excinfo.value.code == "choice_locked"

        with pytest.raises(CalendarConflictError):
            await engine.reset_choice(user_id, D, ctx=ctx)

        claim = (await session.execute(select(CalendarClaim).where(CalendarClaim.user_id == user_id))).scalar_one()
        assert claim.payload["choice"]["key"] == "tea"
        assert await _choice_vouchers(session, user_id) == ["tea"]


@pytest.mark.asyncio
async def test_reset_choice_removes_rewards_then_noops(session_factory) -> None:
    user_id = uuid4()
    ctx = member_ctx(user_id, D)
    async with session_factory() as session:
        engine = await _seed(session)
        await engine.claim(user_id, ctx=ctx, event_date=D)
        await engine.select_choice(user_id, D, "coffee", ctx=ctx)

        reset = await engine.reset_choice(user_id, D, ctx=ctx)
        assert reset.status == "reset"
        assert (reset.removed.vouchers, reset.removed.entries) == (1, 2)
        assert "choice" not in reset.claim.payload

        noop = await engine.reset_choice(user_id, D, ctx=ctx)
        assert noop.status == "noop"

        assert await _choice_vouchers(session, user_id) == []


@pytest.mark.asyncio
async def test_choice_requires_claim_and_known_option(session_factory) -> None:
    user_id = uuid4()
    ctx = member_ctx(user_id, D)
    async with session_factory() as session:
        engine = await _seed(session)

        with pytest.raises(CalendarValidationError) as excinfo:
            await engine.select_choice(user_id, D, "coffee", ctx=ctx)
        assert excinfo.value.code == "requires_claim"

        await engine.claim(user_id, ctx=ctx, event_date=D)
        with pytest.raises(CalendarValidationError) as excinfo:
            await engine.select_choice(user_id, D, "juice", ctx=ctx)
        assert excinfo.value.code == "invalid_choice"


@pytest.mark.asyncio
async def test_legacy_string_choice_is_recognised(session_factory) -> None:
    user_id = uuid4()
    ctx = member_ctx(user_id, D)
    async with session_factory() as session:
        engine = await _seed(session)
        outcome = await engine.claim(user_id, ctx=ctx, event_date=D, payload={"choice": "coffee", "source": "app"})
        assert outcome.claim.payload == {"source": "app"}

        outcome.claim.payload = {"source": "app", "choice": "coffee"}
        await session.commit()

        unchanged = await engine.select_choice(user_id, D, "coffee", ctx=ctx)
        assert unchanged.status == "unchanged"
