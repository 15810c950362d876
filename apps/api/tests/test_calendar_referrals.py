from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from campaign_api.models.calendar import CalendarEventLog, CalendarRaffleEntry
from campaign_api.models.referral import Referral, ReferralStatus
from campaign_api.observability.calendar import get_calendar_store
from campaign_api.services.calendar import (
    CalendarEngine,
    EventCatalog,
    ReferralCompleted,
    ReferralEventHub,
    ReferralMultiplierListener,
    StaticFeatureFlag,
    register_calendar_listeners,
)
from campaign_api.services.calendar.issuer import RewardIssuer
from campaign_api.services.referrals import ReferralActivityService

from conftest import RAFFLE_ID, member_ctx, seed_event, seed_raffle


D = date(2025, 12, 19)
COMPLETED_AT = datetime(2025, 12, 19, 15, tzinfo=timezone.utc)


def _hub() -> ReferralEventHub:
    hub = ReferralEventHub()
    register_calendar_listeners(hub)
    return hub


@pytest.mark.asyncio
async def test_referrals_accumulate_entries_on_multiplier_day(session_factory) -> None:
    user_id = uuid4()
    async with session_factory() as session:
        await seed_raffle(session)
        await seed_event(
            session,
            D,
            {"base_rewards": {"raffle_entries": [{"raffle_id": RAFFLE_ID, "count": 3, "source": "creator_jackpot"}]}},
        )
        await EventCatalog(session).define_referral_multiplier(D, 2.0, raffle_id=RAFFLE_ID)
        await session.commit()

        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))
        await engine.claim(user_id, ctx=member_ctx(user_id, D), event_date=D)
        assert await RewardIssuer(session).entry_totals(user_id) == {RAFFLE_ID: 3}

        referrals = ReferralActivityService(session, hub=_hub())
        for _ in range(2):
            referral = await referrals.create_referral(user_id, invitee_user_id=uuid4())
            await referrals.complete_referral(referral.id, completed_at=COMPLETED_AT)

        assert await RewardIssuer(session).entry_totals(user_id) == {RAFFLE_ID: 7}

        rows = (
            await session.execute(
                select(CalendarRaffleEntry).where(CalendarRaffleEntry.source == "referral_multiplier")
            )
        ).scalars().all()
        assert [row.count for row in rows] == [4]

        bonuses = (
            await session.execute(select(CalendarEventLog).where(CalendarEventLog.event_type == "referral_bonus"))
        ).scalars().all()
        assert len(bonuses) == 2

    assert get_calendar_store().snapshot().referral_bonuses == 2


@pytest.mark.asyncio
async def test_completion_publishes_only_on_first_transition(session_factory) -> None:
    user_id = uuid4()
    async with session_factory() as session:
        await seed_raffle(session)
        await EventCatalog(session).define_referral_multiplier(D, 1.2)
        await session.commit()

        referrals = ReferralActivityService(session, hub=_hub())
        referral = await referrals.create_referral(user_id)
        await referrals.complete_referral(referral.id, completed_at=COMPLETED_AT)
        again = await referrals.complete_referral(referral.id, completed_at=COMPLETED_AT)

        assert again.status == ReferralStatus.COMPLETED
        # ceil(1.2) entries, granted once
        assert await RewardIssuer(session).entry_totals(user_id) == {RAFFLE_ID: 2}


@pytest.mark.asyncio
async def test_listener_skips_days_without_multiplier_or_raffle(session_factory) -> None:
    user_id = uuid4()
    listener = ReferralMultiplierListener()
    async with session_factory() as session:
        no_multiplier = await listener(
            session,
            ReferralCompleted(referral_id=uuid4(), referrer_user_id=user_id, completed_at=COMPLETED_AT),
        )
        assert no_multiplier is None

        await EventCatalog(session).define_referral_multiplier(D, 3, raffle_id="retired_raffle")
        unknown_raffle = await listener(
            session,
            ReferralCompleted(referral_id=uuid4(), referrer_user_id=user_id, completed_at=COMPLETED_AT),
        )
        assert unknown_raffle is None
        assert await RewardIssuer(session).entry_totals(user_id) == {}


@pytest.mark.asyncio
async def test_failing_subscriber_rolls_back_completion(session_factory) -> None:
    user_id = uuid4()
    hub = ReferralEventHub()

    async def broken_handler(session, event):
        raise RuntimeError("subscriber failed")

    hub.subscribe(broken_handler)
    async with session_factory() as session:
        referrals = ReferralActivityService(session, hub=hub)
        referral = await referrals.create_referral(user_id)
        referral_id = referral.id
        with pytest.raises(RuntimeError):
            await referrals.complete_referral(referral_id, completed_at=COMPLETED_AT)

    async with session_factory() as session:
        stored = await session.get(Referral, referral_id)
        assert stored.status == ReferralStatus.PENDING
        assert stored.completed_at is None


@pytest.mark.asyncio
async def test_cancelled_referral_cannot_complete(session_factory) -> None:
    async with session_factory() as session:
        referral = Referral(referrer_user_id=uuid4(), status=ReferralStatus.CANCELLED)
        session.add(referral)
        await session.commit()

        with pytest.raises(ValueError):
            await ReferralActivityService(session).complete_referral(referral.id)


def test_register_calendar_listeners_is_idempotent() -> None:
    hub = ReferralEventHub()
    first = register_calendar_listeners(hub)
    second = register_calendar_listeners(hub)

    assert first is second
    assert hub.handlers == (first,)
