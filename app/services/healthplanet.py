"""HealthPlanet (Tanita) API client.

The innerscan endpoint only answers date ranges of up to three months, so
body composition is fetched per range and split into days afterwards.
"""

import logging
from datetime import date, timedelta
from typing import Any

from app.services import parsers
from app.services.oauth import OAuthClient
from app.services.provider import ProviderClient

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 90

# Redirect target HealthPlanet offers to apps without a public callback URL
MANUAL_REDIRECT_URI = "https://www.healthplanet.jp/success.html"


def clamp_date_range(from_date: date, to_date: date) -> tuple[date, date]:
    """Cap a range to the most recent 90-day window ending at to_date."""
    if to_date - from_date > timedelta(days=MAX_RANGE_DAYS):
        adjusted = to_date - timedelta(days=MAX_RANGE_DAYS)
        logger.info(f"Date range exceeds {MAX_RANGE_DAYS} days. Adjusted from {from_date} to {adjusted}")
        return adjusted, to_date
    return from_date, to_date


def format_boundary(day: date, end_of_day: bool = False) -> str:
    """Format a date as yyyyMMddHHmmss at the start or end of the day."""
    return day.strftime("%Y%m%d") + ("235959" if end_of_day else "000000")


class HealthPlanetOAuth(OAuthClient):
    """HealthPlanet OAuth 2.0; client credentials go in the form body."""

    name = "healthplanet"
    authorize_endpoint = "https://www.healthplanet.jp/oauth/auth"
    token_endpoint = "https://www.healthplanet.jp/oauth/token"
    scope = "innerscan"
    default_expires_in = 2592000


class HealthPlanetClient(ProviderClient):
    """Fetches body composition measurements."""

    name = "healthplanet"
    base_url = "https://www.healthplanet.jp"
    categories = ("body_composition",)
    supports_ranges = True

    def _auth(self, access_token: str) -> tuple[dict[str, str], dict[str, str]]:
        # HealthPlanet takes the token as a query parameter
        return {}, {"access_token": access_token}

    async def fetch_range(
        self,
        access_token: str,
        from_date: date,
        to_date: date,
    ) -> dict[date, dict[str, Any]]:
        """Fetch measurements between two dates (inclusive), keyed by day."""
        start, end = clamp_date_range(from_date, to_date)
        raw = await self._get_json(
            "/status/innerscan.json",
            access_token,
            params={
                "date": "1",  # filter by measurement date rather than registration date
                "from": format_boundary(start),
                "to": format_boundary(end, end_of_day=True),
                "tag": ",".join(parsers.HEALTHPLANET_TAGS),
            },
            context=f"HealthPlanet innerscan {start}..{end}",
        )
        return parsers.parse_healthplanet_innerscan(raw)

    async def fetch_body_composition(self, access_token: str, target_date: date) -> dict[str, Any]:
        """Single-day view of the ranged endpoint; no measurement gives all-None fields."""
        by_date = await self.fetch_range(access_token, target_date, target_date)
        return by_date.get(target_date, parsers.empty_fields("body_composition"))
