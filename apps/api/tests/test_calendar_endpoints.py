from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from campaign_api.core.settings import settings
from campaign_api.services.calendar import EventCatalog, StoredFeatureFlag

from conftest import RAFFLE_ID, seed_raffle


ADMIN_KEY = "calendar-admin-secret"

EVENT_CONFIG = {
    "base_rewards": {
        "vouchers": [{"type": "discount", "scope": "global", "amount": "10"}],
        "raffle_entries": [{"raffle_id": RAFFLE_ID, "count": 3}],
    },
    "choices": [
        {"key": "coffee", "title": "Free coffee", "rewards": {"vouchers": [{"type": "coffee", "scope": "cafe"}]}},
    ],
    "conditional_upgrades": [
        {"target": {"type": "discount"}, "condition": {"referrals_today_gte": 1}, "replace": {"amount": "25"}},
    ],
}


async def _seed_open_day(session_factory, *, enabled: bool = True):
    now = datetime.now(timezone.utc)
    day = now.date()
    async with session_factory() as session:
        await seed_raffle(session)
        catalog = EventCatalog(session)
        await catalog.define_event(
            day,
            slug="today",
            config=EVENT_CONFIG,
            published=True,
            claim_window_start=now - timedelta(days=1),
            claim_window_end=now + timedelta(days=1),
        )
        await catalog.define_spin_wheel(
            day,
            [{"label": "Entries", "weight": 1, "payload": {"raffle_entries": [{"raffle_id": RAFFLE_ID, "count": 1}]}}],
        )
        await StoredFeatureFlag(session).set_enabled(enabled)
        await session.commit()
    return day


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_member_calendar_flow(app_with_db) -> None:
    app, session_factory = app_with_db
    day = await _seed_open_day(session_factory)
    user_id = str(uuid4())
    headers = {"X-Session-User": user_id}

    async with _client(app) as client:
        claim = await client.post(
            "/api/v1/calendar/claims",
            json={"eventDate": day.isoformat(), "payload": {"device": "web"}},
            headers=headers,
        )
        duplicate = await client.post("/api/v1/calendar/claims", json={"eventDate": day.isoformat()}, headers=headers)
        choice = await client.post(
            "/api/v1/calendar/choices",
            json={"eventDate": day.isoformat(), "choiceKey": "coffee"},
            headers=headers,
        )
        spin = await client.post("/api/v1/calendar/spins", json={"eventDate": day.isoformat()}, headers=headers)
        upgrade = await client.post(
            "/api/v1/calendar/upgrades/evaluate",
            json={"eventDate": day.isoformat()},
            headers=headers,
        )
        overview = await client.get("/api/v1/calendar/me", headers=headers)

    assert claim.status_code == 200
    body = claim.json()
    assert body["status"] == "claimed"
    assert body["streak"] == {"current": 1, "max": 1}
    assert body["vouchers"][0]["voucherType"] == "discount"
    assert body["vouchers"][0]["amount"] == 10.0
    assert body["raffleEntries"][0] == {
        "raffleId": RAFFLE_ID,
        "source": "claim_base",
        "eventDate": day.isoformat(),
        "count": 3,
        "total": 3,
    }
    assert body["claim"]["payload"] == {"device": "web"}

    assert duplicate.status_code == 200
    assert duplicate.json()["status"] == "duplicate"

    assert choice.status_code == 200
    assert choice.json()["status"] == "recorded"
    assert choice.json()["vouchers"][0]["source"] == "choice"

    assert spin.status_code == 200
    assert spin.json()["status"] == "spun"
    assert spin.json()["result"]["itemIndex"] == 0

    assert upgrade.status_code == 200
    assert upgrade.json() == {"status": "processed", "referralsToday": 0, "upgrades": []}

    assert overview.status_code == 200
    summary = overview.json()
    assert summary["userId"] == user_id
    assert summary["lastClaimedDate"] == day.isoformat()
    assert len(summary["claims"]) == 1
    assert sorted(voucher["voucherType"] for voucher in summary["vouchers"]) == ["coffee", "discount"]
    assert summary["raffleEntries"] == {RAFFLE_ID: 4}


@pytest.mark.asyncio
async def test_member_error_mapping(app_with_db) -> None:
    app, session_factory = app_with_db
    day = await _seed_open_day(session_factory)
    headers = {"X-Session-User": str(uuid4())}

    async with _client(app) as client:
        missing_session = await client.post("/api/v1/calendar/claims", json={})
        bad_session = await client.post("/api/v1/calendar/claims", json={}, headers={"X-Session-User": "nope"})
        bad_offset = await client.post(
            "/api/v1/calendar/claims",
            json={},
            headers={**headers, "X-Timezone-Offset": "east"},
        )
        out_of_range = await client.post(
            "/api/v1/calendar/claims",
            json={"eventDate": day.isoformat(), "timezoneOffsetMinutes": 2000},
            headers=headers,
        )
        unknown_day = await client.post(
            "/api/v1/calendar/claims",
            json={"eventDate": (day + timedelta(days=30)).isoformat()},
            headers=headers,
        )
        unclaimed_choice = await client.post(
            "/api/v1/calendar/choices",
            json={"eventDate": day.isoformat(), "choiceKey": "coffee"},
            headers=headers,
        )

    assert missing_session.status_code == 401
    assert missing_session.json()["detail"]["code"] == "calendar_auth_required"
    assert bad_session.status_code == 400
    assert bad_offset.status_code == 400
    assert bad_offset.json()["detail"]["code"] == "invalid_timezone_offset"
    assert out_of_range.status_code == 400
    assert out_of_range.json()["detail"]["code"] == "invalid_timezone_offset"
    assert unknown_day.status_code == 400
    assert unknown_day.json()["detail"]["code"] == "event_unavailable"
    assert unclaimed_choice.status_code == 400
    assert unclaimed_choice.json()["detail"]["code"] == "requires_claim"


@pytest.mark.asyncio
async def test_disabled_campaign_is_forbidden(app_with_db) -> None:
    app, session_factory = app_with_db
    day = await _seed_open_day(session_factory, enabled=False)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/calendar/claims",
            json={"eventDate": day.isoformat()},
            headers={"X-Session-User": str(uuid4())},
        )

    assert response.status_code == 403
    assert response.json()["detail"] == {"code": "calendar_disabled", "message": "Calendar campaign is not enabled"}


@pytest.mark.asyncio
async def test_admin_draw_verify_and_redeem(app_with_db, monkeypatch) -> None:
    app, session_factory = app_with_db
    day = await _seed_open_day(session_factory)
    user_id = str(uuid4())

    async with _client(app) as client:
        claim = await client.post(
            "/api/v1/calendar/claims",
            json={"eventDate": day.isoformat()},
            headers={"X-Session-User": user_id},
        )
        voucher_id = claim.json()["vouchers"][0]["id"]

        monkeypatch.setattr(settings, "calendar_admin_api_key", "")
        disabled = await client.post(f"/api/v1/calendar/raffles/{RAFFLE_ID}/draw", json={"seed": "s"})

        monkeypatch.setattr(settings, "calendar_admin_api_key", ADMIN_KEY)
        wrong_key = await client.post(
            f"/api/v1/calendar/raffles/{RAFFLE_ID}/draw",
            json={"seed": "s"},
            headers={"X-API-Key": "wrong"},
        )
        admin = {"X-API-Key": ADMIN_KEY}
        draw = await client.post(f"/api/v1/calendar/raffles/{RAFFLE_ID}/draw", json={"seed": "public-seed"}, headers=admin)
        redraw = await client.post(f"/api/v1/calendar/raffles/{RAFFLE_ID}/draw", json={"seed": "other"}, headers=admin)
        missing = await client.post("/api/v1/calendar/raffles/unknown/draw", json={"seed": "s"}, headers=admin)
        verification = await client.get(f"/api/v1/calendar/raffles/{RAFFLE_ID}/verification")

        redeem = await client.post(f"/api/v1/calendar/vouchers/{voucher_id}/redeem", headers=admin)
        redeem_again = await client.post(f"/api/v1/calendar/vouchers/{voucher_id}/redeem", headers=admin)
        redeem_missing = await client.post(f"/api/v1/calendar/vouchers/{uuid4()}/redeem", headers=admin)

    assert disabled.status_code == 403
    assert wrong_key.status_code == 401

    assert draw.status_code == 200
    drawn = draw.json()
    assert drawn["status"] == "drawn"
    assert drawn["seed"] == "public-seed"
    assert [winner["userId"] for winner in drawn["winners"]] == [user_id]

    assert redraw.status_code == 409
    assert redraw.json()["detail"]["code"] == "raffle_already_drawn"
    assert missing.status_code == 404

    assert verification.status_code == 200
    assert verification.json()["matches"] is True
    assert verification.json()["hashesValid"] is True

    assert redeem.status_code == 200
    assert redeem.json()["voucher"]["status"] == "redeemed"
    assert redeem_again.status_code == 409
    assert redeem_again.json()["detail"]["code"] == "voucher_not_redeemable"
    assert redeem_missing.status_code == 404
