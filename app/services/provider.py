"""Base class for provider REST clients."""

import logging
from datetime import date
from typing import Any, Optional

import httpx

from app.services.errors import ErrorType, SyncError, error_from_exception, error_from_response

logger = logging.getLogger(__name__)


class ProviderClient:
    """
    Async client for one provider's data API.

    Subclasses list their data categories and implement one
    `fetch_<category>(access_token, target_date)` coroutine per category,
    each returning the normalized record fields for that category.
    """

    name = ""
    base_url = ""
    categories: tuple[str, ...] = ()
    supports_ranges = False

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=30.0)
        return self.client

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    def _auth(self, access_token: str) -> tuple[dict[str, str], dict[str, str]]:
        """Return (headers, query params) that authenticate a request."""
        return {"Authorization": f"Bearer {access_token}"}, {}

    async def _get_json(
        self,
        path: str,
        access_token: str,
        params: Optional[dict[str, str]] = None,
        context: str = "",
    ) -> Any:
        """GET a JSON resource, raising a classified SyncError on any failure."""
        context = context or f"{self.name} {path}"
        headers, auth_params = self._auth(access_token)
        client = await self._get_client()

        try:
            response = await client.get(
                f"{self.base_url}{path}",
                params={**(params or {}), **auth_params},
                headers={"Accept": "application/json", **headers},
            )
        except httpx.TransportError as e:
            raise error_from_exception(e, context) from e

        if not response.is_success:
            logger.warning(f"{context} returned HTTP {response.status_code}")
            raise error_from_response(response, context)

        try:
            return response.json()
        except ValueError as e:
            raise SyncError(
                ErrorType.CLIENT_ERROR,
                f"{context}: response was not JSON",
                status_code=response.status_code,
                body=response.text[:500],
            ) from e

    async def fetch_category(self, category: str, access_token: str, target_date: date) -> dict[str, Any]:
        if category not in self.categories:
            raise ValueError(f"{self.name} has no data category {category!r}")
        fetch = getattr(self, f"fetch_{category}")
        return await fetch(access_token, target_date)

    async def fetch_range(self, access_token: str, from_date: date, to_date: date) -> dict[date, dict[str, Any]]:
        """Fetch a date range in one call, keyed by day. Only for providers with supports_ranges."""
        raise NotImplementedError(f"{self.name} does not support ranged fetches")
