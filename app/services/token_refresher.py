"""Keeps provider access tokens usable before each data call."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from app.services.oauth import OAuthClient
from app.services.token_store import Credential, TokenStore

logger = logging.getLogger(__name__)


class TokenRefresher:
    """Refreshes a credential when it is expired or about to expire."""

    def __init__(
        self,
        oauth: OAuthClient,
        store: TokenStore,
        margin: timedelta = timedelta(minutes=60),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.oauth = oauth
        self.store = store
        self.margin = margin
        self.clock = clock

    def needs_refresh(self, credential: Credential, now: datetime) -> bool:
        if credential.is_expired(now):
            return True
        return credential.expires_at - now < self.margin

    async def ensure_valid(self, credential: Credential) -> Credential:
        """Return a credential that is safe to use, refreshing it only when needed."""
        now = self.clock()
        if not self.needs_refresh(credential, now):
            return credential

        remaining = credential.expires_at - now
        logger.info(
            f"{credential.provider} token for user {credential.user_id} "
            f"{'expired' if remaining <= timedelta(0) else f'expires in {remaining}'}, refreshing"
        )
        return await self.refresh(credential)

    async def refresh(self, credential: Credential) -> Credential:
        """
        Exchange the refresh token and persist the new pair.

        The provider's returned pair is written as-is: providers invalidate a
        refresh token once used, so a racing refresh with a stale token fails
        at the provider instead of overwriting a newer pair here.
        """
        try:
            grant = await self.oauth.refresh(credential.refresh_token)
        except Exception as e:
            logger.error(f"{credential.provider} token refresh failed for user {credential.user_id}: {e}")
            raise

        refreshed = credential.with_tokens(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expires_at=grant.expires_at(self.clock()),
        )
        return await self.store.upsert(refreshed)
