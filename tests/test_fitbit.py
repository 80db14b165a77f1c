"""Tests for the Fitbit OAuth and data clients against a mocked transport."""

import base64
from datetime import date, datetime
from urllib.parse import parse_qs

import httpx
import pytest

from app.services.errors import ConfigError, ErrorType, SyncError
from app.services.fitbit import FitbitClient, FitbitOAuth


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFitbitAuthorizeUrl:

    def test_contains_client_scope_and_state(self):
        oauth = FitbitOAuth("abc", "secret")
        url = httpx.URL(oauth.authorize_url("signed-state", "http://localhost:8000/api/fitbit/callback"))

        assert url.host == "www.fitbit.com"
        assert url.params["client_id"] == "abc"
        assert url.params["response_type"] == "code"
        assert url.params["state"] == "signed-state"
        assert url.params["scope"] == "activity heartrate profile sleep weight"
        assert url.params["redirect_uri"] == "http://localhost:8000/api/fitbit/callback"

    def test_unconfigured_raises_config_error(self):
        with pytest.raises(ConfigError):
            FitbitOAuth(None, None).authorize_url("s", "http://x")


@pytest.mark.asyncio
class TestFitbitTokenRequests:

    async def test_exchange_code_uses_basic_auth(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={
                "access_token": "at", "refresh_token": "rt", "expires_in": 28800,
            })

        oauth = FitbitOAuth("abc", "secret", http_client=_mock_client(handler))
        grant = await oauth.exchange_code("the-code", "http://x/callback")

        assert grant.access_token == "at"
        assert grant.refresh_token == "rt"
        assert grant.expires_at(datetime(2024, 1, 1)) == datetime(2024, 1, 1, 8, 0)
        assert seen["auth"] == "Basic " + base64.b64encode(b"abc:secret").decode()
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["the-code"]
        assert "client_secret" not in seen["form"]

    async def test_rejected_refresh_is_unauthorized(self):
        def handler(request):
            return httpx.Response(400, json={"errors": [{"errorType": "invalid_grant"}]})

        oauth = FitbitOAuth("abc", "secret", http_client=_mock_client(handler))
        with pytest.raises(SyncError) as exc_info:
            await oauth.refresh("stale")
        assert exc_info.value.error_type == ErrorType.UNAUTHORIZED

    async def test_missing_expires_in_uses_default(self):
        def handler(request):
            return httpx.Response(200, json={"access_token": "at", "refresh_token": "rt"})

        grant = await FitbitOAuth("abc", "secret", http_client=_mock_client(handler)).refresh("rt0")
        assert grant.expires_in == 28800


@pytest.mark.asyncio
class TestFitbitClient:

    async def test_fetch_activity(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/1/user/-/activities/date/2024-03-01.json"
            assert request.headers["Authorization"] == "Bearer token-1"
            return httpx.Response(200, json={"summary": {
                "steps": 9000, "caloriesOut": 2200, "veryActiveMinutes": 10, "fairlyActiveMinutes": 5,
                "distances": [{"activity": "total", "distance": 6.5}],
            }})

        client = FitbitClient(http_client=_mock_client(handler))
        fields = await client.fetch_category("activity", "token-1", date(2024, 3, 1))
        assert fields == {"steps": 9000, "calories_burned": 2200, "distance_km": 6.5, "active_minutes": 15}

    async def test_fetch_sleep_path(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/1/user/-/sleep/date/2024-03-01.json"
            return httpx.Response(200, json={"sleep": [{}], "summary": {"totalMinutesAsleep": 480}})

        fields = await FitbitClient(http_client=_mock_client(handler)).fetch_sleep("t", date(2024, 3, 1))
        assert fields == {"sleep_hours": 8.0}

    async def test_rate_limit_is_classified(self):
        def handler(request):
            return httpx.Response(429, text="Too Many Requests", headers={"Fitbit-Rate-Limit-Reset": "120"})

        client = FitbitClient(http_client=_mock_client(handler))
        with pytest.raises(SyncError) as exc_info:
            await client.fetch_heart_rate("t", date(2024, 3, 1))
        assert exc_info.value.error_type == ErrorType.RATE_LIMITED
        assert exc_info.value.retry_after == 120.0

    async def test_network_failure_is_classified(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = FitbitClient(http_client=_mock_client(handler))
        with pytest.raises(SyncError) as exc_info:
            await client.fetch_sleep("t", date(2024, 3, 1))
        assert exc_info.value.error_type == ErrorType.NETWORK_ERROR

    async def test_unknown_category(self):
        with pytest.raises(ValueError):
            await FitbitClient().fetch_category("nutrition", "t", date(2024, 3, 1))
