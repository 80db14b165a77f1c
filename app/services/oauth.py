"""OAuth 2.0 authorization-code flow shared by the providers."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
from itsdangerous import BadData, URLSafeSerializer

from app.services.errors import (
    ConfigError,
    ErrorType,
    InvalidRequestError,
    SyncError,
    error_from_exception,
    error_from_response,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenGrant:
    """Token endpoint response."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.expires_in)


class OAuthClient:
    """Base OAuth client; subclasses set endpoints and how client credentials are sent."""

    name = ""
    authorize_endpoint = ""
    token_endpoint = ""
    scope = ""
    default_expires_in = 3600

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.configured:
            raise ConfigError(f"{self.name} client credentials are not configured")

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=30.0)
        return self.client

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    def authorize_url(self, state: str, redirect_uri: str) -> str:
        self._require_configured()
        url = httpx.URL(self.authorize_endpoint, params={
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.scope,
            "state": state,
        })
        return str(url)

    def _token_request_auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return (headers, extra form fields) carrying the client credentials."""
        return {}, {"client_id": self.client_id, "client_secret": self.client_secret}

    async def _token_request(self, form: dict[str, str], context: str) -> TokenGrant:
        self._require_configured()
        headers, extra = self._token_request_auth()
        headers = {"Accept": "application/json", **headers}
        client = await self._get_client()

        try:
            response = await client.post(self.token_endpoint, data={**form, **extra}, headers=headers)
        except httpx.TransportError as e:
            raise error_from_exception(e, context) from e

        if not response.is_success:
            error = error_from_response(response, context)
            logger.error(f"{context} failed: HTTP {response.status_code}")
            raise error

        try:
            payload = response.json()
        except ValueError as e:
            raise SyncError(ErrorType.CLIENT_ERROR, f"{context}: response was not JSON",
                            status_code=response.status_code, body=response.text[:500]) from e

        if not payload.get("access_token"):
            raise SyncError(ErrorType.CLIENT_ERROR, f"{context}: no access token in response",
                            status_code=response.status_code)

        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=int(payload.get("expires_in") or self.default_expires_in),
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for the initial token pair."""
        logger.info(f"{self.name}: exchanging authorization code")
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            f"{self.name} token exchange",
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new token pair.

        A rejected refresh token (HTTP 400/401) is reported as UNAUTHORIZED:
        the user has to connect the provider again.
        """
        logger.info(f"{self.name}: refreshing access token")
        try:
            return await self._token_request(
                {"grant_type": "refresh_token", "refresh_token": refresh_token},
                f"{self.name} token refresh",
            )
        except SyncError as e:
            if e.error_type == ErrorType.CLIENT_ERROR and e.status_code in (400, 401):
                e.error_type = ErrorType.UNAUTHORIZED
            raise


class InvalidStateError(InvalidRequestError):
    """OAuth state failed verification; reason is a short code for redirect query flags."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class OAuthState:
    user_id: str
    provider: str
    issued_at: datetime
    nonce: str
    manual: bool = False


class OAuthStateSigner:
    """Signs and verifies the OAuth state parameter."""

    def __init__(
        self,
        secret: str,
        ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.serializer = URLSafeSerializer(secret, salt="oauth-state")
        self.ttl = ttl
        self.clock = clock

    def issue(self, user_id: str, provider: str, manual: bool = False) -> str:
        return self.serializer.dumps({
            "user_id": user_id,
            "provider": provider,
            "issued_at": self.clock().isoformat(),
            "nonce": secrets.token_urlsafe(12),
            "manual": manual,
        })

    def verify(self, state: str, provider: str, user_id: Optional[str] = None) -> OAuthState:
        try:
            data = self.serializer.loads(state)
            parsed = OAuthState(
                user_id=str(data["user_id"]),
                provider=data["provider"],
                issued_at=datetime.fromisoformat(data["issued_at"]),
                nonce=data["nonce"],
                manual=bool(data.get("manual", False)),
            )
        except (BadData, KeyError, TypeError, ValueError) as e:
            raise InvalidStateError("invalid_state", "Invalid state format") from e

        if parsed.provider != provider:
            raise InvalidStateError("invalid_state", "State was issued for another provider")
        if user_id is not None and parsed.user_id != user_id:
            raise InvalidStateError("invalid_state", "Invalid state - user mismatch")
        if self.clock() - parsed.issued_at > self.ttl:
            raise InvalidStateError("expired_state", "State expired")
        return parsed
