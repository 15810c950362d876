import pytest
from httpx import ASGITransport, AsyncClient

from campaign_api.app import APP_VERSION
from campaign_api.services.calendar import StoredFeatureFlag


@pytest.mark.asyncio
async def test_healthz_reports_version(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["version"] == APP_VERSION


@pytest.mark.asyncio
async def test_readyz_is_degraded_until_calendar_enabled(app_with_db) -> None:
    app, session_factory = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        before = await client.get("/api/v1/readyz")

        async with session_factory() as session:
            await StoredFeatureFlag(session).set_enabled(True)
            await session.commit()

        after = await client.get("/api/v1/readyz")

    assert before.status_code == 200
    payload = before.json()
    assert payload["status"] == "degraded"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["calendar"]["status"] == "disabled"
    assert set(payload["calendar"]) == {"outcomes", "errors", "referral_bonuses"}

    assert after.json()["status"] == "ready"
    assert after.json()["components"]["calendar"]["status"] == "ready"
