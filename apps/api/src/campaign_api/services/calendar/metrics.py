from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date

from loguru import logger
from sqlalchemy import case, func
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.db.dialect import dialect_insert
from campaign_api.models.calendar import CalendarMetricsDaily


@dataclass(slots=True)
class MetricsDelta:
    """Signed counter changes produced by one operation."""

    claims: int = 0
    vouchers_issued: int = 0
    vouchers_redeemed: int = 0
    raffle_entries: int = 0
    streak_7: int = 0
    streak_15: int = 0

    def __add__(self, other: "MetricsDelta") -> "MetricsDelta":
        return MetricsDelta(
            **{
                field.name: getattr(self, field.name) + getattr(other, field.name)
                for field in fields(self)
            }
        )

    @property
    def is_zero(self) -> bool:
        return all(getattr(self, field.name) == 0 for field in fields(self))


_COLUMN_FOR_FIELD = {
    "claims": "claims_count",
    "vouchers_issued": "vouchers_issued",
    "vouchers_redeemed": "vouchers_redeemed",
    "raffle_entries": "raffle_entries_added",
    "streak_7": "streak_7_count",
    "streak_15": "streak_15_count",
}


class MetricsAggregator:
    """Atomic per-day counters; values never drop below zero."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def apply(self, metric_date: date, delta: MetricsDelta) -> None:
        if delta.is_zero:
            return

        initial = {
            column: max(getattr(delta, field_name), 0)
            for field_name, column in _COLUMN_FOR_FIELD.items()
        }
        updates = {}
        for field_name, column in _COLUMN_FOR_FIELD.items():
            change = getattr(delta, field_name)
            if change == 0:
                continue
            current = getattr(CalendarMetricsDaily, column)
            updates[column] = case((current + change < 0, 0), else_=current + change)
        updates["updated_at"] = func.now()

        stmt = (
            dialect_insert(self._db, CalendarMetricsDaily)
            .values(metric_date=metric_date, **initial)
            .on_conflict_do_update(index_elements=[CalendarMetricsDaily.metric_date], set_=updates)
        )
        await self._db.execute(stmt)
        logger.debug("Applied calendar metrics delta", metric_date=str(metric_date), delta=str(delta))

    async def get(self, metric_date: date) -> CalendarMetricsDaily | None:
        return await self._db.get(CalendarMetricsDaily, metric_date, populate_existing=True)


__all__ = ["MetricsAggregator", "MetricsDelta"]
