"""Process-wide policy capabilities injected into the calendar engine.

The feature switch and the "may this caller act as user X" check belong to
the platform, not to the engine. They are passed in as small protocol
objects so engine logic can be exercised without a live identity system.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.core.settings import settings
from campaign_api.models.calendar import CalendarSetting
from .errors import CalendarAuthorizationError


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Who is calling and from where."""

    actor_user_id: UUID | None = None
    is_service: bool = False
    ip_address: str | None = None
    user_agent: str | None = None
    now: datetime | None = None

    def current_time(self) -> datetime:
        if self.now is None:
            return datetime.now(timezone.utc)
        if self.now.tzinfo is None:
            return self.now.replace(tzinfo=timezone.utc)
        return self.now

    @classmethod
    def service(cls, *, now: datetime | None = None) -> "RequestContext":
        return cls(is_service=True, now=now)


class FeatureFlag(Protocol):
    """Global on/off switch for the campaign."""

    async def is_enabled(self) -> bool:
        ...


class Authorizer(Protocol):
    """Decides whether a request context may act on behalf of a user."""

    async def ensure_can_act(self, ctx: RequestContext, user_id: UUID) -> None:
        ...


@dataclass(slots=True)
class StaticFeatureFlag:
    enabled: bool = True

    async def is_enabled(self) -> bool:
        return self.enabled


class StoredFeatureFlag:
    """Reads the switch from ``calendar_settings``, falling back to settings."""

    def __init__(self, session: AsyncSession, *, key: str | None = None) -> None:
        self._session = session
        self._key = key or settings.calendar_feature_key

    async def is_enabled(self) -> bool:
        record = await self._session.get(CalendarSetting, self._key)
        if record is None:
            return bool(settings.calendar_enabled)
        return bool(record.enabled)

    async def set_enabled(self, enabled: bool, *, metadata: dict | None = None) -> CalendarSetting:
        record = await self._session.get(CalendarSetting, self._key)
        if record is None:
            record = CalendarSetting(key=self._key, enabled=enabled, metadata_json=metadata or {})
            self._session.add(record)
        else:
            record.enabled = enabled
            if metadata is not None:
                record.metadata_json = {**(record.metadata_json or {}), **metadata}
        await self._session.flush()
        logger.info("Calendar feature flag updated", key=self._key, enabled=enabled)
        return record


class SessionAuthorizer:
    """Service callers may act for anyone; members only for themselves."""

    async def ensure_can_act(self, ctx: RequestContext, user_id: UUID) -> None:
        if ctx.is_service:
            return
        if ctx.actor_user_id is None:
            raise CalendarAuthorizationError("calendar_auth_required", "Authentication required")
        if ctx.actor_user_id != user_id:
            raise CalendarAuthorizationError(
                "calendar_user_mismatch",
                "Caller may not act on behalf of this user",
            )


def require_service_role(ctx: RequestContext) -> None:
    if not ctx.is_service:
        raise CalendarAuthorizationError("calendar_admin_only", "Operation requires service role")


async def ensure_feature_enabled(flag: FeatureFlag) -> None:
    if not await flag.is_enabled():
        raise CalendarAuthorizationError("calendar_disabled", "Calendar campaign is not enabled")


__all__ = [
    "Authorizer",
    "FeatureFlag",
    "RequestContext",
    "SessionAuthorizer",
    "StaticFeatureFlag",
    "StoredFeatureFlag",
    "ensure_feature_enabled",
    "require_service_role",
]
