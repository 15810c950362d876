import hashlib
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from campaign_api.models.calendar import CalendarRaffle, CalendarRaffleStatus
from campaign_api.services.calendar import (
    CalendarAuthorizationError,
    CalendarConflictError,
    CalendarEngine,
    CalendarNotFoundError,
    CalendarValidationError,
    EventCatalog,
    ReferralCompleted,
    ReferralMultiplierListener,
    RequestContext,
    StaticFeatureFlag,
    audit_hash,
    derive_seed,
    rank_entrants,
)
from campaign_api.services.calendar.issuer import RewardIssuer

from conftest import RAFFLE_ID, member_ctx, seed_raffle


D = date(2025, 12, 20)
SEED = "btc-block-875000"


def test_rank_entrants_is_deterministic() -> None:
    weights = {str(uuid4()): float(count) for count in (1, 3, 5, 2, 8, 4)}

    first = rank_entrants(weights, SEED, RAFFLE_ID, 3)
    second = rank_entrants(dict(reversed(list(weights.items()))), SEED, RAFFLE_ID, 3)

    assert first == second
    assert len(first) == 3
    assert len(set(first)) == 3


def test_rank_entrants_depends_on_seed_and_skips_zero_weight() -> None:
    weights = {f"user-{index:03d}": 1.0 for index in range(50)}
    weights["user-zero"] = 0.0

    rankings = {tuple(rank_entrants(weights, f"seed-{n}", RAFFLE_ID, 5)) for n in range(5)}

    assert len(rankings) > 1
    assert all("user-zero" not in ranking for ranking in rankings)
    assert rank_entrants(weights, SEED, RAFFLE_ID, 5) != rank_entrants(weights, SEED, "other_raffle", 5)


def test_seed_and_audit_hash_derivation() -> None:
    expected_seed = int(hashlib.sha256(f"{SEED}:{RAFFLE_ID}".encode()).hexdigest()[:16], 16)
    assert derive_seed(SEED, RAFFLE_ID) == expected_seed
    assert audit_hash(SEED, "u1", 1) == hashlib.sha256(f"{SEED}:u1:1".encode()).hexdigest()


async def _add_entries(session, counts: dict) -> None:
    issuer = RewardIssuer(session)
    for user_id, count in counts.items():
        await issuer.add_entries(user_id, D, raffle_id=RAFFLE_ID, count=count, source="claim_base")


@pytest.mark.asyncio
async def test_draw_records_winners_and_verifies(session_factory) -> None:
    users = [uuid4() for _ in range(4)]
    counts = dict(zip(users, (1, 4, 2, 6)))
    service = RequestContext.service()
    async with session_factory() as session:
        await seed_raffle(session, winners_count=2)
        await _add_entries(session, counts)
        await session.commit()
        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))

        outcome = await engine.draw_raffle(RAFFLE_ID, ctx=service, seed=SEED)

        expected = rank_entrants({str(user): float(count) for user, count in counts.items()}, SEED, RAFFLE_ID, 2)
        assert outcome.status == "drawn"
        assert outcome.seed == SEED
        assert [winner["user_id"] for winner in outcome.winners] == expected
        assert [winner["position"] for winner in outcome.winners] == [1, 2]
        for winner in outcome.winners:
            assert winner["audit_hash"] == audit_hash(SEED, winner["user_id"], winner["position"])

        raffle = await session.get(CalendarRaffle, RAFFLE_ID)
        assert raffle.status == CalendarRaffleStatus.DRAWN
        assert raffle.draw_seed == SEED

        verification = await engine.verify_draw(RAFFLE_ID)
        assert verification.matches is True
        assert verification.hashes_valid is True

        with pytest.raises(CalendarConflictError) as excinfo:
            await engine.draw_raffle(RAFFLE_ID, ctx=service, seed="another-seed")
        assert excinfo.value.code == "raffle_already_drawn"
        assert excinfo.value.details["seed"] == SEED


@pytest.mark.asyncio
async def test_draw_generates_seed_when_missing(session_factory) -> None:
    async with session_factory() as session:
        await seed_raffle(session)
        await _add_entries(session, {uuid4(): 1})
        await session.commit()
        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))

        outcome = await engine.draw_raffle(RAFFLE_ID, ctx=RequestContext.service())

    assert len(outcome.seed) == 32
    assert len(outcome.winners) == 1


@pytest.mark.asyncio
async def test_draw_rejections(session_factory) -> None:
    member = uuid4()
    async with session_factory() as session:
        await seed_raffle(session)
        await session.commit()
        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))

        with pytest.raises(CalendarAuthorizationError) as excinfo:
            await engine.draw_raffle(RAFFLE_ID, ctx=member_ctx(member), seed=SEED)
        assert excinfo.value.code == "calendar_admin_only"

        with pytest.raises(CalendarNotFoundError):
            await engine.draw_raffle("missing", ctx=RequestContext.service(), seed=SEED)

        with pytest.raises(CalendarValidationError) as excinfo:
            await engine.draw_raffle(RAFFLE_ID, ctx=RequestContext.service(), seed=SEED)
        assert excinfo.value.code == "raffle_no_entries"

        with pytest.raises(CalendarValidationError) as excinfo:
            await engine.verify_draw(RAFFLE_ID)
        assert excinfo.value.code == "raffle_not_drawn"

        raffle = await session.get(CalendarRaffle, RAFFLE_ID, populate_existing=True)
        assert raffle.status == CalendarRaffleStatus.OPEN


@pytest.mark.asyncio
async def test_entry_controls_scale_and_exclude(session_factory) -> None:
    excluded_user = uuid4()
    boosted_user = uuid4()
    async with session_factory() as session:
        await seed_raffle(session)
        await _add_entries(session, {excluded_user: 50, boosted_user: 2})
        catalog = EventCatalog(session)
        await catalog.set_entry_control(RAFFLE_ID, excluded_user, excluded=True, reason="fraud review")
        await catalog.set_entry_control(RAFFLE_ID, boosted_user, weight_multiplier=1.5)
        await session.commit()
        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))

        outcome = await engine.draw_raffle(RAFFLE_ID, ctx=RequestContext.service(), seed=SEED)

    assert [winner["user_id"] for winner in outcome.winners] == [str(boosted_user)]


@pytest.mark.asyncio
async def test_all_entrants_excluded_counts_as_no_entries(session_factory) -> None:
    user_id = uuid4()
    async with session_factory() as session:
        await seed_raffle(session)
        await _add_entries(session, {user_id: 3})
        await EventCatalog(session).set_entry_control(RAFFLE_ID, user_id, excluded=True)
        await session.commit()
        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))

        with pytest.raises(CalendarValidationError) as excinfo:
            await engine.draw_raffle(RAFFLE_ID, ctx=RequestContext.service(), seed=SEED)

    assert excinfo.value.code == "raffle_no_entries"


@pytest.mark.asyncio
async def test_verification_uses_draw_snapshot_and_drawn_raffle_accepts_no_entries(session_factory) -> None:
    users = [uuid4() for _ in range(20)]
    counts = {user: index % 4 + 1 for index, user in enumerate(users)}
    async with session_factory() as session:
        await seed_raffle(session, winners_count=3)
        await _add_entries(session, counts)
        await EventCatalog(session).define_referral_multiplier(D, 2.0, raffle_id=RAFFLE_ID)
        await session.commit()
        engine = CalendarEngine(session, feature_flag=StaticFeatureFlag(True))

        await engine.draw_raffle(RAFFLE_ID, ctx=RequestContext.service(), seed="pub")

        listener = ReferralMultiplierListener()
        for user in users:
            granted = await listener(
                session,
                ReferralCompleted(
                    referral_id=uuid4(),
                    referrer_user_id=user,
                    completed_at=datetime(2025, 12, 20, 15, tzinfo=timezone.utc),
                ),
            )
            assert granted is None
        issuer = RewardIssuer(session)
        late = await issuer.add_entries(users[0], D, raffle_id=RAFFLE_ID, count=50, source="claim_base")
        assert late is None
        assert await issuer.entry_totals(users[0]) == {RAFFLE_ID: counts[users[0]]}
        await session.commit()

        verification = await engine.verify_draw(RAFFLE_ID)

    assert verification.matches is True
    assert verification.hashes_valid is True
    assert verification.entrants == 20
    assert verification.total_weight == float(sum(counts.values()))
