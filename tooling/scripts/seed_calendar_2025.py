"""Seed the December 2025 daily calendar campaign.

Creates the ``mega_25`` raffle, one published event per day from December 1
through December 25, the December 12 spin wheel, and the referral multiplier
days. Re-running the script updates the existing rows in place.

Example::
    python tooling/scripts/seed_calendar_2025.py --enable

Use ``--dry-run`` to validate every event document without persisting it.
"""

# meta: script: calendar-seed-2025

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import sys
from pathlib import Path
from typing import Any

from loguru import logger


RAFFLE_ID = "mega_25"
CAMPAIGN_START = dt.date(2025, 12, 1)
CAMPAIGN_DAYS = 25
MULTIPLIER_DAYS = (dt.date(2025, 12, 4), dt.date(2025, 12, 19))


def _entries(count: int, source: str = "claim_base") -> dict[str, Any]:
    return {"raffle_id": RAFFLE_ID, "count": count, "source": source}


def _percent_off(scope: str, amount: int, **metadata: Any) -> dict[str, Any]:
    return {"voucher_type": "percent_off", "scope": scope, "amount": amount, "metadata": metadata}


DAY_CONFIGS: dict[int, dict[str, Any]] = {
    1: {
        "types": ["D", "X"],
        "config": {
            "base_rewards": {"raffle_entries": [_entries(1)]},
            "choices": [
                {
                    "key": "lane_entertainment",
                    "title": "Entertainment Lane",
                    "rewards": {"vouchers": [_percent_off("entertainment_lane", 10)]},
                },
                {
                    "key": "lane_productivity",
                    "title": "Productivity Lane",
                    "rewards": {"vouchers": [_percent_off("productivity_lane", 10)]},
                },
                {
                    "key": "lane_ai",
                    "title": "AI Lane",
                    "rewards": {"vouchers": [_percent_off("ai_lane", 10)]},
                },
            ],
        },
    },
    2: {
        "types": ["D"],
        "config": {
            "choices": [
                {
                    "key": "ai_perplexity",
                    "title": "Perplexity Pro Boost",
                    "rewards": {"vouchers": [_percent_off("Perplexity Pro", 15, term_months=12)]},
                },
                {
                    "key": "ai_google",
                    "title": "Google AI Pro Boost",
                    "rewards": {"vouchers": [_percent_off("Google AI Pro", 15, term_months=12)]},
                },
            ],
        },
    },
    3: {
        "types": ["F"],
        "config": {
            "base_rewards": {
                "vouchers": [
                    {
                        "voucher_type": "free_months",
                        "scope": "Duolingo Super",
                        "amount": 3,
                        "metadata": {"paid_months_required": 9},
                    }
                ]
            },
        },
    },
    4: {"types": ["R"], "config": {"referral_bonus": {"description": "Referrals count 2x today"}}},
    7: {
        "types": ["S"],
        "config": {"raffle": {"entries_on_claim": 2, "raffle_id": RAFFLE_ID}},
    },
    12: {"types": ["W"], "config": {"base_rewards": {"raffle_entries": [_entries(1)]}}},
    15: {
        "types": ["U"],
        "config": {
            "base_rewards": {"vouchers": [_percent_off("global", 10)]},
            "conditional_upgrades": [
                {
                    "target": {"voucher_type": "percent_off", "scope": "global"},
                    "condition": {"referrals_today_gte": 1},
                    "replace": {"amount": 25},
                }
            ],
        },
    },
    19: {
        "types": ["R", "J"],
        "config": {"base_rewards": {"raffle_entries": [_entries(3, "creator_jackpot")]}},
    },
    25: {
        "types": ["J"],
        "config": {"base_rewards": {"raffle_entries": [_entries(5, "christmas_day")]}},
    },
}

SPIN_WHEEL_DAY = dt.date(2025, 12, 12)
SPIN_WHEEL_ITEMS = [
    {"label": "Extra raffle entry", "weight": 40, "payload": {"raffle_entries": [_entries(1, "spin")]}},
    {"label": "5% off anything", "weight": 30, "payload": {"vouchers": [_percent_off("global", 5)]}},
    {"label": "Three raffle entries", "weight": 20, "payload": {"raffle_entries": [_entries(3, "spin")]}},
    {"label": "20% off anything", "weight": 10, "payload": {"vouchers": [_percent_off("global", 20)]}},
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the December 2025 calendar campaign")
    parser.add_argument(
        "--winners",
        type=int,
        default=3,
        help="Number of winners drawn for the campaign raffle.",
    )
    parser.add_argument(
        "--enable",
        action="store_true",
        help="Switch the calendar feature flag on after seeding.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and stage every row, then roll the transaction back.",
    )
    return parser.parse_args()


def _day_definition(day: dt.date) -> dict[str, Any]:
    definition = DAY_CONFIGS.get(day.day)
    if definition is None:
        return {"types": ["E"], "config": {"base_rewards": {"raffle_entries": [_entries(1)]}}}
    return definition


async def _run(winners: int, enable: bool, dry_run: bool) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from campaign_api.db.session import async_session  # type: ignore import-position
    from campaign_api.services.calendar import (  # type: ignore import-position
        EventCatalog,
        StoredFeatureFlag,
    )

    async with async_session() as session:
        catalog = EventCatalog(session)
        await catalog.define_raffle(
            RAFFLE_ID,
            name="Mega Christmas Raffle",
            start_at=dt.datetime(2025, 12, 1, tzinfo=dt.timezone.utc),
            end_at=dt.datetime(2025, 12, 25, 23, 59, 59, tzinfo=dt.timezone.utc),
            draw_at=dt.datetime(2025, 12, 26, 12, tzinfo=dt.timezone.utc),
            winners_count=winners,
            rules={"entry_sources": ["claim_base", "spin", "referral_multiplier", "creator_jackpot"]},
        )

        events = 0
        for offset in range(CAMPAIGN_DAYS):
            day = CAMPAIGN_START + dt.timedelta(days=offset)
            definition = _day_definition(day)
            await catalog.define_event(
                day,
                slug=f"dec-{day.day:02d}",
                config=definition["config"],
                types=definition["types"],
                published=True,
            )
            events += 1

        await catalog.define_spin_wheel(SPIN_WHEEL_DAY, SPIN_WHEEL_ITEMS)
        for day in MULTIPLIER_DAYS:
            await catalog.define_referral_multiplier(
                day,
                2.0,
                raffle_id=RAFFLE_ID,
                notes="Referrals count double",
            )

        if enable:
            await StoredFeatureFlag(session).set_enabled(True, metadata={"seeded_by": "seed_calendar_2025"})

        if dry_run:
            await session.rollback()
        else:
            await session.commit()

        return {"events": events, "multipliers": len(MULTIPLIER_DAYS), "spin_wheels": 1}


def main() -> int:
    args = parse_args()
    if args.winners <= 0:
        logger.error("Winner count must be positive", winners=args.winners)
        return 1

    summary = asyncio.run(_run(args.winners, args.enable, args.dry_run))
    logger.success(
        "Calendar campaign seeded",
        dry_run=args.dry_run,
        enabled=args.enable,
        events=summary["events"],
        multipliers=summary["multipliers"],
        spin_wheels=summary["spin_wheels"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
