"""Tests for provider connection endpoints.

Exercises the full app with providers replaced by in-process fakes and
the database by a temporary SQLite file.
"""

from datetime import date

import pytest
from sqlalchemy import select

from app.models.database import DailyHealthRecord
from app.services.fitbit import FitbitClient, FitbitOAuth
from app.services.registry import Provider
from app.services.token_store import TokenStore, ensure_user

HEADERS = {"X-User-Id": "user-1"}


async def _state(api_client, provider="fitbit"):
    resp = await api_client.get(f"/api/{provider}/connect-url", headers=HEADERS)
    assert resp.status_code == 200
    return resp.json()["state"]


@pytest.mark.asyncio
class TestConnectUrl:

    async def test_requires_user(self, api_client):
        resp = await api_client.get("/api/fitbit/connect-url")
        assert resp.status_code == 401

    async def test_unknown_provider(self, api_client):
        resp = await api_client.get("/api/strava/connect-url", headers=HEADERS)
        assert resp.status_code == 404

    async def test_returns_signed_state(self, api_client):
        resp = await api_client.get("/api/fitbit/connect-url", headers=HEADERS)

        data = resp.json()
        assert data["auth_url"].startswith("https://provider.example.com/oauth2/authorize?")
        assert "state=" in data["auth_url"]
        assert data["state"] != "user-1"
        assert data["manual_code_required"] is False

    async def test_manual_mode_flagged(self, api_client):
        resp = await api_client.get("/api/healthplanet/connect-url", headers=HEADERS)
        assert resp.json()["manual_code_required"] is True

    async def test_unconfigured_provider_is_config_error(self, api_client, providers):
        providers["fitbit"] = Provider(
            name="fitbit",
            oauth=FitbitOAuth(None, None),
            client=FitbitClient(),
            redirect_uri="http://testserver/api/fitbit/callback",
        )
        resp = await api_client.get("/api/fitbit/connect-url", headers=HEADERS)

        assert resp.status_code == 500
        assert resp.json()["error_type"] == "CONFIG_ERROR"


@pytest.mark.asyncio
class TestCallback:

    async def test_connects_and_redirects(self, api_client, fake_oauth, async_session):
        state = await _state(api_client)

        resp = await api_client.get("/api/fitbit/callback", params={"code": "auth-code", "state": state})

        assert resp.status_code == 302
        assert resp.headers["location"] == "/settings?success=fitbit_connected"
        assert fake_oauth.exchange_calls == ["auth-code"]
        credential = await TokenStore(async_session).get("user-1", "fitbit")
        assert credential.access_token == "access-new"
        assert credential.refresh_token == "refresh-new"

    async def test_state_is_single_use(self, api_client, fake_oauth):
        state = await _state(api_client)
        await api_client.get("/api/fitbit/callback", params={"code": "code-1", "state": state})

        resp = await api_client.get("/api/fitbit/callback", params={"code": "code-2", "state": state})

        assert resp.headers["location"] == "/settings?error=invalid_state"
        assert fake_oauth.exchange_calls == ["code-1"]

    async def test_provider_error(self, api_client):
        resp = await api_client.get("/api/fitbit/callback", params={"error": "access_denied"})
        assert resp.headers["location"] == "/settings?error=fitbit_auth_failed"

    async def test_missing_code(self, api_client):
        resp = await api_client.get("/api/fitbit/callback", params={"state": "x"})
        assert resp.headers["location"] == "/settings?error=missing_code"

    async def test_forged_state(self, api_client, fake_oauth):
        resp = await api_client.get("/api/fitbit/callback", params={"code": "c", "state": "user-1"})

        assert resp.headers["location"] == "/settings?error=invalid_state"
        assert fake_oauth.exchange_calls == []

    async def test_state_for_other_user(self, api_client):
        state = await _state(api_client)
        resp = await api_client.get(
            "/api/fitbit/callback",
            params={"code": "c", "state": state},
            headers={"X-User-Id": "someone-else"},
        )
        assert resp.headers["location"] == "/settings?error=invalid_state"


@pytest.mark.asyncio
class TestManualCode:

    async def test_code_accepted_once(self, api_client, healthplanet_oauth):
        resp = await api_client.post(
            "/api/healthplanet/manual-code",
            json={"code": " code-123 ", "state": await _state(api_client, "healthplanet")},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = await api_client.post(
            "/api/healthplanet/manual-code",
            json={"code": "code-123", "state": await _state(api_client, "healthplanet")},
            headers=HEADERS,
        )

        assert resp.status_code == 422
        assert "already been used" in resp.json()["error"]
        assert resp.json()["error_type"] == "VALIDATION_ERROR"
        assert healthplanet_oauth.exchange_calls == ["code-123"]

    async def test_state_from_other_provider_rejected(self, api_client, healthplanet_oauth):
        resp = await api_client.post(
            "/api/healthplanet/manual-code",
            json={"code": "code-1", "state": await _state(api_client, "fitbit")},
            headers=HEADERS,
        )
        assert resp.status_code == 422
        assert healthplanet_oauth.exchange_calls == []

    async def test_blank_code_rejected(self, api_client):
        resp = await api_client.post(
            "/api/healthplanet/manual-code",
            json={"code": "   ", "state": "s"},
            headers=HEADERS,
        )
        assert resp.status_code == 422
        assert resp.json()["error_type"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
class TestStatusAndDisconnect:

    async def test_not_connected(self, api_client):
        resp = await api_client.get("/api/fitbit/status", headers=HEADERS)

        assert resp.status_code == 200
        data = resp.json()
        assert data["connected"] is False
        assert data["configured"] is True
        assert data["summary"] is None

    async def test_connected_with_summary(self, api_client, connected_user, async_session):
        await ensure_user(async_session, connected_user)
        async_session.add(DailyHealthRecord(user_id=connected_user, date=date.today(), steps=9000, sleep_hours=7.0))
        await async_session.commit()

        resp = await api_client.get("/api/fitbit/status", headers=HEADERS)

        data = resp.json()
        assert data["connected"] is True
        assert data["token_expired"] is False
        assert data["summary"]["days_with_data"] == 1
        assert data["summary"]["averages"]["steps"] == 9000

    async def test_disconnect_keeps_records(self, api_client, connected_user, async_session):
        await ensure_user(async_session, connected_user)
        async_session.add(DailyHealthRecord(user_id=connected_user, date=date(2024, 3, 1), steps=5))
        await async_session.commit()

        resp = await api_client.post("/api/fitbit/disconnect", headers=HEADERS)

        assert resp.json()["success"] is True
        assert await TokenStore(async_session).get(connected_user, "fitbit") is None
        assert (await async_session.execute(select(DailyHealthRecord))).scalars().all() != []

        resp = await api_client.post("/api/fitbit/disconnect", headers=HEADERS)
        assert resp.json()["success"] is False
