from fastapi import Header, HTTPException, status

from campaign_api.core.settings import settings


async def require_calendar_admin_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.calendar_admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "calendar_admin_disabled", "message": "Calendar admin API key is not configured"},
        )

    if x_api_key != settings.calendar_admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_api_key", "message": "Invalid API key"},
        )
