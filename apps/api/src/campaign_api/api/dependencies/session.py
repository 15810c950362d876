"""Session-aware dependencies for member calendar APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Header, HTTPException, Request, status

from campaign_api.services.calendar import RequestContext


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
) -> UUID:
    """Resolve the authenticated user id from forwarded session headers."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "calendar_auth_required", "message": "Missing session user context"},
        )

    try:
        return UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_session_user", "message": "Invalid session user identifier"},
        ) from error


async def timezone_offset_header(
    timezone_offset: str | None = Header(None, alias="X-Timezone-Offset"),
) -> int | None:
    """Caller's UTC offset in minutes east of UTC, when forwarded."""

    if timezone_offset is None or timezone_offset.strip() == "":
        return None
    try:
        return int(timezone_offset)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_timezone_offset", "message": "X-Timezone-Offset must be an integer"},
        ) from error


def member_context(request: Request, user_id: UUID) -> RequestContext:
    return RequestContext(
        actor_user_id=user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def service_context(request: Request) -> RequestContext:
    return RequestContext(
        is_service=True,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
