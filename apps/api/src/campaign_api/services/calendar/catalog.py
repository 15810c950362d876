"""Catalog of calendar events, wheels, multipliers and raffles."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Iterable
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.core.settings import settings
from campaign_api.models.calendar import (
    CalendarEvent,
    CalendarRaffle,
    CalendarRaffleEntryControl,
    CalendarRaffleStatus,
    CalendarReferralMultiplier,
    CalendarSpinWheel,
)
from campaign_api.schemas.calendar import EventRewardConfig, SpinWheelDefinition
from .errors import CalendarNotFoundError, CalendarValidationError

RAFFLE_ENTRIES_TARGET = "raffle_entries"

_CONFIG_CACHE_LIMIT = 256
_config_cache: dict[tuple[date, str], EventRewardConfig] = {}
_config_cache_lock = Lock()


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def validate_timezone_offset(offset_minutes: int | None) -> int:
    offset = int(offset_minutes or 0)
    limit = settings.calendar_max_timezone_offset_minutes
    if abs(offset) > limit:
        raise CalendarValidationError(
            "invalid_timezone_offset",
            "Timezone offset is out of range",
            details={"offset_minutes": offset, "limit": limit},
        )
    return offset


def local_today(now: datetime, offset_minutes: int) -> date:
    """The caller's calendar date given their offset east of UTC."""

    return (as_utc(now) + timedelta(minutes=offset_minutes)).date()


def local_claim_window(event: CalendarEvent, offset_minutes: int) -> tuple[datetime, datetime]:
    """Shift the event's UTC window so it opens at the caller's local midnight."""

    shift = timedelta(minutes=offset_minutes)
    return as_utc(event.claim_window_start) - shift, as_utc(event.claim_window_end) - shift


def ensure_within_window(event: CalendarEvent, now: datetime, offset_minutes: int) -> None:
    window_start, window_end = local_claim_window(event, offset_minutes)
    current = as_utc(now)
    if not (window_start <= current < window_end):
        raise CalendarValidationError(
            "outside_window",
            "Event is outside of the claim window",
            details={
                "window_start": window_start.isoformat(),
                "window_end": window_end.isoformat(),
                "now": current.isoformat(),
            },
        )


def parse_event_config(raw: Any) -> EventRewardConfig:
    if isinstance(raw, EventRewardConfig):
        return raw
    try:
        return EventRewardConfig.model_validate(raw or {})
    except ValidationError as exc:
        raise CalendarValidationError(
            "invalid_event_config",
            "Event reward configuration is invalid",
            details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc


def _cached_config(event: CalendarEvent) -> EventRewardConfig:
    digest = hashlib.sha256(json.dumps(event.config or {}, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    cache_key = (event.event_date, digest)
    with _config_cache_lock:
        cached = _config_cache.get(cache_key)
    if cached is not None:
        return cached
    parsed = parse_event_config(event.config)
    with _config_cache_lock:
        if len(_config_cache) >= _CONFIG_CACHE_LIMIT:
            _config_cache.clear()
        _config_cache[cache_key] = parsed
    return parsed


def reset_config_cache() -> None:
    with _config_cache_lock:
        _config_cache.clear()


@dataclass(frozen=True)
class CatalogEvent:
    """A stored event paired with its validated reward configuration."""

    record: CalendarEvent
    config: EventRewardConfig

    @property
    def event_date(self) -> date:
        return self.record.event_date


@dataclass(frozen=True)
class SpinWheelConfig:
    record: CalendarSpinWheel
    definition: SpinWheelDefinition


class EventCatalog:
    """Reads and administers campaign configuration."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def define_event(
        self,
        event_date: date,
        *,
        slug: str,
        config: dict[str, Any] | EventRewardConfig | None = None,
        types: Iterable[str] | None = None,
        published: bool = False,
        claim_window_start: datetime | None = None,
        claim_window_end: datetime | None = None,
    ) -> CatalogEvent:
        parsed = parse_event_config(config)
        await self._ensure_raffles_exist(parsed)
        window_start = as_utc(claim_window_start) if claim_window_start else utc_midnight(event_date)
        window_end = as_utc(claim_window_end) if claim_window_end else window_start + timedelta(days=1)
        if window_end <= window_start:
            raise CalendarValidationError("invalid_claim_window", "Claim window must end after it starts")

        document = parsed.model_dump(mode="json", exclude_none=True)

        record = await self._event_record(event_date)
        if record is None:
            record = CalendarEvent(event_date=event_date)
            self._db.add(record)
        record.slug = slug
        record.types = list(types or [])
        record.config = document
        record.claim_window_start = window_start
        record.claim_window_end = window_end
        record.published = published
        await self._db.flush()
        await self._db.refresh(record)
        logger.info("Calendar event defined", event_date=str(event_date), slug=slug, published=published)
        return CatalogEvent(record=record, config=parsed)

    async def set_published(self, event_date: date, published: bool) -> CalendarEvent:
        record = await self._event_record(event_date)
        if record is None:
            raise CalendarNotFoundError("event_not_found", "Calendar event not found")
        record.published = published
        await self._db.flush()
        logger.info("Calendar event publication changed", event_date=str(event_date), published=published)
        return record

    async def get_event(self, event_date: date) -> CatalogEvent | None:
        record = await self._event_record(event_date)
        if record is None:
            return None
        return CatalogEvent(record=record, config=_cached_config(record))

    async def require_published(self, event_date: date) -> CatalogEvent:
        event = await self.get_event(event_date)
        if event is None or not event.record.published:
            raise CalendarValidationError(
                "event_unavailable",
                "Event is not available",
                details={"event_date": event_date.isoformat()},
            )
        return event

    async def list_events(self, *, published_only: bool = True) -> list[CalendarEvent]:
        stmt = select(CalendarEvent).order_by(CalendarEvent.event_date.asc())
        if published_only:
            stmt = stmt.where(CalendarEvent.published.is_(True))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def define_spin_wheel(self, event_date: date, items: list[dict[str, Any]]) -> SpinWheelConfig:
        try:
            definition = SpinWheelDefinition.model_validate({"items": items})
        except ValidationError as exc:
            raise CalendarValidationError(
                "invalid_spin_wheel",
                "Spin wheel definition is invalid",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc
        stored_items = [item.model_dump(mode="json") for item in definition.items]

        result = await self._db.execute(select(CalendarSpinWheel).where(CalendarSpinWheel.event_date == event_date))
        record = result.scalar_one_or_none()
        if record is None:
            record = CalendarSpinWheel(event_date=event_date)
            self._db.add(record)
        record.items = stored_items
        await self._db.flush()
        logger.info("Calendar spin wheel defined", event_date=str(event_date), items=len(stored_items))
        return SpinWheelConfig(record=record, definition=definition)

    async def get_spin_wheel(self, event_date: date) -> SpinWheelConfig | None:
        result = await self._db.execute(select(CalendarSpinWheel).where(CalendarSpinWheel.event_date == event_date))
        record = result.scalar_one_or_none()
        if record is None or not record.items:
            return None
        return SpinWheelConfig(record=record, definition=SpinWheelDefinition.model_validate({"items": record.items}))

    async def define_referral_multiplier(
        self,
        event_date: date,
        multiplier: Decimal | float,
        *,
        applies_to: str = RAFFLE_ENTRIES_TARGET,
        raffle_id: str | None = None,
        notes: str | None = None,
    ) -> CalendarReferralMultiplier:
        value = Decimal(str(multiplier))
        if value <= 0:
            raise CalendarValidationError("invalid_multiplier", "Multiplier must be positive")
        stmt = select(CalendarReferralMultiplier).where(
            CalendarReferralMultiplier.event_date == event_date,
            CalendarReferralMultiplier.applies_to == applies_to,
        )
        record = (await self._db.execute(stmt)).scalar_one_or_none()
        if record is None:
            record = CalendarReferralMultiplier(event_date=event_date, applies_to=applies_to)
            self._db.add(record)
        record.multiplier = value
        record.notes = notes
        record.metadata_json = {"raffle_id": raffle_id} if raffle_id else {}
        await self._db.flush()
        logger.info(
            "Calendar referral multiplier defined",
            event_date=str(event_date),
            applies_to=applies_to,
            multiplier=str(value),
        )
        return record

    async def get_referral_multiplier(
        self,
        event_date: date,
        *,
        applies_to: str = RAFFLE_ENTRIES_TARGET,
    ) -> CalendarReferralMultiplier | None:
        stmt = select(CalendarReferralMultiplier).where(
            CalendarReferralMultiplier.event_date == event_date,
            CalendarReferralMultiplier.applies_to == applies_to,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def define_raffle(
        self,
        raffle_id: str,
        *,
        name: str,
        start_at: datetime,
        end_at: datetime,
        draw_at: datetime,
        winners_count: int = 1,
        status: CalendarRaffleStatus = CalendarRaffleStatus.OPEN,
        rules: dict[str, Any] | None = None,
    ) -> CalendarRaffle:
        if winners_count < 1:
            raise CalendarValidationError("invalid_winners_count", "Raffle needs at least one winner")
        record = await self._db.get(CalendarRaffle, raffle_id)
        if record is not None and record.status == CalendarRaffleStatus.DRAWN:
            raise CalendarValidationError("raffle_already_drawn", "Drawn raffles cannot be redefined")
        if record is None:
            record = CalendarRaffle(id=raffle_id)
            self._db.add(record)
        record.name = name
        record.start_at = as_utc(start_at)
        record.end_at = as_utc(end_at)
        record.draw_at = as_utc(draw_at)
        record.rules = {**(rules or {}), "winners_count": winners_count}
        record.status = status
        await self._db.flush()
        logger.info("Calendar raffle defined", raffle_id=raffle_id, winners_count=winners_count)
        return record

    async def set_entry_control(
        self,
        raffle_id: str,
        user_id: UUID,
        *,
        weight_multiplier: Decimal | float = 1,
        excluded: bool = False,
        reason: str | None = None,
    ) -> CalendarRaffleEntryControl:
        if await self._db.get(CalendarRaffle, raffle_id) is None:
            raise CalendarNotFoundError("raffle_not_found", "Raffle not found")
        weight = Decimal(str(weight_multiplier))
        if weight < 0:
            raise CalendarValidationError("invalid_weight_multiplier", "Weight multiplier cannot be negative")
        stmt = select(CalendarRaffleEntryControl).where(
            CalendarRaffleEntryControl.raffle_id == raffle_id,
            CalendarRaffleEntryControl.user_id == user_id,
        )
        record = (await self._db.execute(stmt)).scalar_one_or_none()
        if record is None:
            record = CalendarRaffleEntryControl(raffle_id=raffle_id, user_id=user_id)
            self._db.add(record)
        record.weight_multiplier = weight
        record.excluded = excluded
        record.reason = reason
        await self._db.flush()
        logger.info(
            "Calendar raffle entry control updated",
            raffle_id=raffle_id,
            user_id=str(user_id),
            weight_multiplier=str(weight),
            excluded=excluded,
        )
        return record

    async def _event_record(self, event_date: date) -> CalendarEvent | None:
        result = await self._db.execute(select(CalendarEvent).where(CalendarEvent.event_date == event_date))
        return result.scalar_one_or_none()

    async def _ensure_raffles_exist(self, config: EventRewardConfig) -> None:
        raffle_ids: set[str] = set()
        reward_sets = [config.base_rewards]
        reward_sets.extend(milestone.rewards for milestone in config.streak.milestones)
        reward_sets.extend(choice.rewards for choice in config.choices)
        for reward_set in reward_sets:
            raffle_ids.update(grant.raffle_id for grant in reward_set.raffle_entries)
        if config.raffle and config.raffle.raffle_id:
            raffle_ids.add(config.raffle.raffle_id)
        for raffle_id in sorted(raffle_ids):
            if await self._db.get(CalendarRaffle, raffle_id) is None:
                raise CalendarValidationError(
                    "unknown_raffle",
                    "Event references a raffle that does not exist",
                    details={"raffle_id": raffle_id},
                )


__all__ = [
    "CatalogEvent",
    "EventCatalog",
    "RAFFLE_ENTRIES_TARGET",
    "SpinWheelConfig",
    "as_utc",
    "ensure_within_window",
    "local_claim_window",
    "local_today",
    "parse_event_config",
    "reset_config_cache",
    "utc_midnight",
    "validate_timezone_offset",
]
