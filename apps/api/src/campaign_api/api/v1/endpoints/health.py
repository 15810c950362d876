from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.db.session import get_session
from campaign_api.observability.calendar import get_calendar_store
from campaign_api.services.calendar import StoredFeatureFlag


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    calendar: Dict[str, Any]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(session: AsyncSession = Depends(get_session)) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        components["database"] = ComponentStatus(
            status="error",
            detail=f"Database unreachable ({error.__class__.__name__})",
            last_error_at=datetime.now(timezone.utc).isoformat(),
        )
        return ReadinessPayload(status="error", components=components, calendar=get_calendar_store().snapshot().as_dict())
    components["database"] = ComponentStatus(status="ready")

    if await StoredFeatureFlag(session).is_enabled():
        components["calendar"] = ComponentStatus(status="ready", detail="Calendar campaign enabled")
    else:
        components["calendar"] = ComponentStatus(status="disabled", detail="Calendar campaign disabled")
        status = "degraded"

    return ReadinessPayload(status=status, components=components, calendar=get_calendar_store().snapshot().as_dict())
