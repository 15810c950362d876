"""Weighted daily spin wheel."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.db.dialect import dialect_insert
from campaign_api.models.calendar import CalendarSpinResult, CalendarVoucher
from .audit import CalendarAuditLog
from .catalog import EventCatalog
from .claims import require_claim
from .errors import CalendarValidationError
from .issuer import EntryGrantRecord, RewardIssuer, voucher_payload
from .metrics import MetricsAggregator
from .policy import RequestContext

SPIN_SOURCE = "spin"


def select_weighted_index(weights: Sequence[float], r: float) -> int:
    """Inverse-CDF pick over normalized weights for ``r`` in [0, 1).

    Items with non-positive weight are never chosen. Falls back to the first
    positive item when rounding keeps every cumulative bound below ``r``.
    """

    total = sum(weight for weight in weights if weight > 0)
    if total <= 0:
        raise ValueError("At least one weight must be positive")
    cumulative = 0.0
    first_positive = None
    for index, weight in enumerate(weights):
        if weight <= 0:
            continue
        if first_positive is None:
            first_positive = index
        cumulative += weight / total
        if cumulative >= r:
            return index
    return first_positive


def spin_result_payload(result: CalendarSpinResult) -> dict[str, Any]:
    return {
        "id": str(result.id),
        "event_date": result.event_date.isoformat(),
        "item_index": result.item_index,
        "item": dict(result.item_payload or {}),
        "spun_at": result.spun_at.isoformat() if result.spun_at else None,
    }


@dataclass
class SpinOutcome:
    status: str
    result: CalendarSpinResult
    vouchers: list[CalendarVoucher] = field(default_factory=list)
    raffle_entries: list[EntryGrantRecord] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "result": spin_result_payload(self.result),
            "vouchers": [voucher_payload(voucher) for voucher in self.vouchers],
            "raffle_entries": [entry.as_dict() for entry in self.raffle_entries],
        }


class SpinService:
    """One spin per user and day; rewards are issued exactly once."""

    def __init__(self, session: AsyncSession, *, rng: random.Random | None = None) -> None:
        self._db = session
        self._rng = rng or random.SystemRandom()
        self._catalog = EventCatalog(session)
        self._issuer = RewardIssuer(session)
        self._audit = CalendarAuditLog(session)
        self._metrics = MetricsAggregator(session)

    async def spin(self, user_id: UUID, event_date: date, *, ctx: RequestContext) -> SpinOutcome:
        await self._catalog.require_published(event_date)
        await require_claim(self._db, user_id, event_date)

        existing = await self._existing_result(user_id, event_date)
        if existing is not None:
            return await self._duplicate(existing, ctx)

        wheel = await self._catalog.get_spin_wheel(event_date)
        if wheel is None:
            raise CalendarValidationError(
                "spin_unavailable",
                "No spin wheel is configured for this day",
                details={"event_date": event_date.isoformat()},
            )

        items = wheel.definition.items
        index = select_weighted_index([item.weight for item in items], self._rng.random())
        item = items[index]
        stmt = (
            dialect_insert(self._db, CalendarSpinResult)
            .values(
                user_id=user_id,
                event_date=event_date,
                wheel_id=wheel.record.id,
                item_index=index,
                item_payload=item.model_dump(mode="json"),
                spun_at=ctx.current_time(),
            )
            .on_conflict_do_nothing(index_elements=[CalendarSpinResult.user_id, CalendarSpinResult.event_date])
            .returning(CalendarSpinResult)
        )
        result = (await self._db.execute(stmt)).scalar_one_or_none()
        if result is None:
            existing = await self._existing_result(user_id, event_date)
            return await self._duplicate(existing, ctx)

        granted = await self._issuer.issue_reward_set(user_id, event_date, item.payload, source=SPIN_SOURCE)
        await self._audit.record(
            "spin",
            user_id=user_id,
            event_date=event_date,
            ctx=ctx,
            payload={
                "item_index": index,
                "label": item.label,
                "vouchers": len(granted.vouchers),
                "entries": granted.entries_added,
            },
        )
        await self._metrics.apply(event_date, granted.metrics_delta())
        logger.info(
            "Calendar spin recorded",
            user_id=str(user_id),
            event_date=str(event_date),
            item_index=index,
            label=item.label,
        )
        return SpinOutcome(status="spun", result=result, vouchers=granted.vouchers, raffle_entries=granted.entries)

    async def _existing_result(self, user_id: UUID, event_date: date) -> CalendarSpinResult | None:
        stmt = select(CalendarSpinResult).where(
            CalendarSpinResult.user_id == user_id,
            CalendarSpinResult.event_date == event_date,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _duplicate(self, existing: CalendarSpinResult, ctx: RequestContext) -> SpinOutcome:
        await self._audit.record(
            "spin_duplicate",
            user_id=existing.user_id,
            event_date=existing.event_date,
            ctx=ctx,
            payload={"item_index": existing.item_index},
        )
        return SpinOutcome(status="duplicate", result=existing)


__all__ = ["SPIN_SOURCE", "SpinOutcome", "SpinService", "select_weighted_index", "spin_result_payload"]
