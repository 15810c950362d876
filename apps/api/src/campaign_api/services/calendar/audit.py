from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.models.calendar import CalendarEventLog
from .policy import RequestContext


class CalendarAuditLog:
    """Append-only log of every calendar call, including no-op outcomes."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def record(
        self,
        event_type: str,
        *,
        user_id: UUID | None,
        event_date: date | None,
        ctx: RequestContext | None = None,
        payload: dict[str, Any] | None = None,
    ) -> CalendarEventLog:
        entry = CalendarEventLog(
            event_type=event_type,
            user_id=user_id,
            event_date=event_date,
            ip_address=ctx.ip_address if ctx else None,
            user_agent=ctx.user_agent if ctx else None,
            payload=payload or {},
        )
        self._db.add(entry)
        await self._db.flush()
        return entry

    async def list_entries(
        self,
        *,
        user_id: UUID | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[CalendarEventLog]:
        stmt = select(CalendarEventLog).order_by(CalendarEventLog.created_at.asc())
        if user_id is not None:
            stmt = stmt.where(CalendarEventLog.user_id == user_id)
        if event_type is not None:
            stmt = stmt.where(CalendarEventLog.event_type == event_type)
        result = await self._db.execute(stmt.limit(limit))
        return list(result.scalars().all())


__all__ = ["CalendarAuditLog"]
