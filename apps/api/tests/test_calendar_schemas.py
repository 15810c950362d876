from datetime import date
from decimal import Decimal

import pytest

from campaign_api.schemas.calendar import EventRewardConfig, RaffleEntryGrant, RewardSet, VoucherGrant
from campaign_api.services.calendar import CalendarNotFoundError, CalendarValidationError, EventCatalog
from campaign_api.services.calendar.catalog import parse_event_config

from conftest import RAFFLE_ID, seed_raffle


def test_document_form_normalizes_into_grants() -> None:
    rewards = RewardSet.model_validate(
        {
            "vouchers": [{"type": "discount", "amount": "5.50", "scope": None}],
            "raffle_entries": [{"raffle_id": RAFFLE_ID, "count": 0}],
        }
    )

    (voucher,) = rewards.vouchers
    (entry,) = rewards.raffle_entries
    assert isinstance(voucher, VoucherGrant)
    assert voucher.voucher_type == "discount"
    assert voucher.scope == "global"
    assert voucher.amount == Decimal("5.50")
    assert isinstance(entry, RaffleEntryGrant)
    assert entry.count == 1


def test_reward_set_dumps_document_shape() -> None:
    rewards = RewardSet.model_validate({"vouchers": [{"type": "coffee", "scope": "cafe"}]})

    assert rewards.model_dump(mode="json") == {
        "vouchers": [{"voucher_type": "coffee", "scope": "cafe", "amount": None, "metadata": {}}],
        "raffle_entries": [],
    }
    assert RewardSet.model_validate(rewards.model_dump(mode="json")) == rewards


def test_config_rejects_duplicate_choice_keys() -> None:
    with pytest.raises(CalendarValidationError) as excinfo:
        parse_event_config({"choices": [{"key": "a"}, {"key": "a"}]})

    assert excinfo.value.code == "invalid_event_config"


def test_config_defaults_are_empty() -> None:
    config = EventRewardConfig.model_validate({})

    assert config.base_rewards.is_empty
    assert config.raffle is None
    assert config.choice("missing") is None


@pytest.mark.asyncio
async def test_event_definition_validates_references_and_window(session_factory) -> None:
    day = date(2025, 12, 8)
    async with session_factory() as session:
        catalog = EventCatalog(session)

        with pytest.raises(CalendarValidationError) as excinfo:
            await catalog.define_event(
                day,
                slug="day-8",
                config={"base_rewards": {"raffle_entries": [{"raffle_id": RAFFLE_ID}]}},
            )
        assert excinfo.value.code == "unknown_raffle"

        await seed_raffle(session)
        event = await catalog.define_event(
            day,
            slug="day-8",
            config={"base_rewards": {"raffle_entries": [{"raffle_id": RAFFLE_ID, "count": 2}]}},
            published=True,
        )
        assert event.config.base_rewards.raffle_entries[0].count == 2
        assert event.record.config["base_rewards"]["raffle_entries"] == [
            {"raffle_id": RAFFLE_ID, "count": 2, "metadata": {}}
        ]

        with pytest.raises(CalendarValidationError) as excinfo:
            await catalog.define_event(
                day,
                slug="day-8",
                claim_window_start=event.record.claim_window_end,
                claim_window_end=event.record.claim_window_start,
            )
        assert excinfo.value.code == "invalid_claim_window"


@pytest.mark.asyncio
async def test_publication_toggle_gates_event_access(session_factory) -> None:
    day = date(2025, 12, 9)
    async with session_factory() as session:
        catalog = EventCatalog(session)
        await catalog.define_event(day, slug="day-9")

        with pytest.raises(CalendarValidationError) as excinfo:
            await catalog.require_published(day)
        assert excinfo.value.code == "event_unavailable"

        await catalog.set_published(day, True)
        event = await catalog.require_published(day)
        assert event.record.slug == "day-9"

        with pytest.raises(CalendarNotFoundError):
            await catalog.set_published(date(2025, 12, 10), True)
