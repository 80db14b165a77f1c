"""Fitbit Web API client."""

import base64
import logging
from datetime import date
from typing import Any

from app.services import parsers
from app.services.oauth import OAuthClient
from app.services.provider import ProviderClient

logger = logging.getLogger(__name__)


class FitbitOAuth(OAuthClient):
    """Fitbit OAuth 2.0; client credentials go in an HTTP Basic header."""

    name = "fitbit"
    authorize_endpoint = "https://www.fitbit.com/oauth2/authorize"
    token_endpoint = "https://api.fitbit.com/oauth2/token"
    scope = "activity heartrate profile sleep weight"
    default_expires_in = 28800

    def _token_request_auth(self) -> tuple[dict[str, str], dict[str, str]]:
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        return {"Authorization": f"Basic {basic}"}, {"client_id": self.client_id}


class FitbitClient(ProviderClient):
    """Fetches one day of activity, heart rate and sleep data."""

    name = "fitbit"
    base_url = "https://api.fitbit.com/1"
    categories = ("activity", "heart_rate", "sleep")

    async def fetch_activity(self, access_token: str, target_date: date) -> dict[str, Any]:
        """Steps, calories, distance and active minutes."""
        date_str = target_date.isoformat()
        raw = await self._get_json(
            f"/user/-/activities/date/{date_str}.json",
            access_token,
            context=f"Fitbit activity {date_str}",
        )
        return parsers.parse_fitbit_activity(raw)

    async def fetch_heart_rate(self, access_token: str, target_date: date) -> dict[str, Any]:
        date_str = target_date.isoformat()
        raw = await self._get_json(
            f"/user/-/activities/heart/date/{date_str}/1d.json",
            access_token,
            context=f"Fitbit heart rate {date_str}",
        )
        return parsers.parse_fitbit_heart_rate(raw)

    async def fetch_sleep(self, access_token: str, target_date: date) -> dict[str, Any]:
        date_str = target_date.isoformat()
        raw = await self._get_json(
            f"/user/-/sleep/date/{date_str}.json",
            access_token,
            context=f"Fitbit sleep {date_str}",
        )
        return parsers.parse_fitbit_sleep(raw)
