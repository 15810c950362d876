"""Referral activity lookups and the completion subscription hub."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.core.settings import settings
from campaign_api.models.calendar import CalendarRaffle, CalendarRaffleStatus
from campaign_api.models.referral import Referral, ReferralStatus
from campaign_api.observability.calendar import get_calendar_store
from .audit import CalendarAuditLog
from .catalog import RAFFLE_ENTRIES_TARGET, EventCatalog, as_utc, utc_midnight
from .issuer import EntryGrantRecord, RewardIssuer
from .metrics import MetricsAggregator, MetricsDelta

REFERRAL_MULTIPLIER_SOURCE = "referral_multiplier"


class ReferralActivity(Protocol):
    """Read-only view of referral completions."""

    async def completed_on(self, user_id: UUID, day: date) -> int:
        ...


class SqlReferralActivity:
    """Counts completed referrals whose UTC completion date matches ``day``."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def completed_on(self, user_id: UUID, day: date) -> int:
        start = utc_midnight(day)
        stmt = select(func.count(Referral.id)).where(
            Referral.referrer_user_id == user_id,
            Referral.status == ReferralStatus.COMPLETED,
            Referral.completed_at >= start,
            Referral.completed_at < start + timedelta(days=1),
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)


@dataclass(frozen=True)
class ReferralCompleted:
    """Published once, when a referral first transitions to completed."""

    referral_id: UUID
    referrer_user_id: UUID
    completed_at: datetime
    invitee_user_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def completion_date(self) -> date:
        return as_utc(self.completed_at).date()


ReferralHandler = Callable[[AsyncSession, ReferralCompleted], Awaitable[Any]]


class ReferralEventHub:
    """In-process fan-out of referral completions.

    Handlers run sequentially inside the publisher's transaction, so a failing
    handler aborts the completion that triggered it.
    """

    def __init__(self) -> None:
        self._handlers: list[ReferralHandler] = []

    def subscribe(self, handler: ReferralHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: ReferralHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def handlers(self) -> tuple[ReferralHandler, ...]:
        return tuple(self._handlers)

    async def publish(self, session: AsyncSession, event: ReferralCompleted) -> list[Any]:
        results = []
        for handler in list(self._handlers):
            results.append(await handler(session, event))
        return results


class ReferralMultiplierListener:
    """Grants bonus raffle entries on days with a referral multiplier."""

    def __init__(self, *, default_raffle_id: str | None = None) -> None:
        self._default_raffle_id = default_raffle_id

    async def __call__(self, session: AsyncSession, event: ReferralCompleted) -> EntryGrantRecord | None:
        event_date = event.completion_date
        multiplier = await EventCatalog(session).get_referral_multiplier(
            event_date, applies_to=RAFFLE_ENTRIES_TARGET
        )
        if multiplier is None:
            return None

        raffle_id = (multiplier.metadata_json or {}).get("raffle_id") or (
            self._default_raffle_id or settings.calendar_default_raffle_id
        )
        raffle = await session.get(CalendarRaffle, raffle_id, populate_existing=True)
        if raffle is None:
            logger.warning(
                "Referral multiplier references unknown raffle",
                raffle_id=raffle_id,
                event_date=str(event_date),
                referral_id=str(event.referral_id),
            )
            return None
        if raffle.status == CalendarRaffleStatus.DRAWN:
            logger.warning(
                "Referral multiplier skipped for drawn raffle",
                raffle_id=raffle_id,
                event_date=str(event_date),
                referral_id=str(event.referral_id),
            )
            return None

        count = max(1, math.ceil(multiplier.multiplier))
        granted = await RewardIssuer(session).add_entries(
            event.referrer_user_id,
            event_date,
            raffle_id=raffle_id,
            count=count,
            source=REFERRAL_MULTIPLIER_SOURCE,
            metadata={"referral_id": str(event.referral_id)},
        )
        await CalendarAuditLog(session).record(
            "referral_bonus",
            user_id=event.referrer_user_id,
            event_date=event_date,
            payload={
                "referral_id": str(event.referral_id),
                "raffle_id": raffle_id,
                "count": count,
                "multiplier": str(multiplier.multiplier),
            },
        )
        await MetricsAggregator(session).apply(event_date, MetricsDelta(raffle_entries=count))
        get_calendar_store().record_referral_bonus()
        logger.info(
            "Referral multiplier entries granted",
            user_id=str(event.referrer_user_id),
            referral_id=str(event.referral_id),
            raffle_id=raffle_id,
            count=count,
        )
        return granted


_HUB = ReferralEventHub()


def get_referral_hub() -> ReferralEventHub:
    return _HUB


def register_calendar_listeners(hub: ReferralEventHub) -> ReferralMultiplierListener:
    for handler in hub.handlers:
        if isinstance(handler, ReferralMultiplierListener):
            return handler
    listener = ReferralMultiplierListener()
    hub.subscribe(listener)
    return listener


__all__ = [
    "REFERRAL_MULTIPLIER_SOURCE",
    "get_referral_hub",
    "register_calendar_listeners",
    "ReferralActivity",
    "ReferralCompleted",
    "ReferralEventHub",
    "ReferralHandler",
    "ReferralMultiplierListener",
    "SqlReferralActivity",
]
