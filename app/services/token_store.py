"""Persistence for per-user provider OAuth credentials."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import ProviderCredential, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """OAuth access/refresh token pair plus expiry for one user/provider pair."""

    user_id: str
    provider: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    updated_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def with_tokens(self, access_token: str, refresh_token: str, expires_at: datetime) -> "Credential":
        return replace(self, access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)


def _to_credential(row: ProviderCredential) -> Credential:
    return Credential(
        user_id=row.user_id,
        provider=row.provider,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        updated_at=row.updated_at,
        last_synced_at=row.last_synced_at,
    )


async def ensure_user(session: AsyncSession, user_id: str) -> None:
    """Insert the users row for an external identity if it is not there yet."""
    stmt = insert(User).values(id=user_id, created_at=datetime.utcnow()).on_conflict_do_nothing(
        index_elements=["id"]
    )
    await session.execute(stmt)


class TokenStore:
    """CRUD for credentials keyed by (user_id, provider)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str, provider: str) -> Optional[Credential]:
        result = await self.session.execute(
            select(ProviderCredential).where(
                ProviderCredential.user_id == user_id,
                ProviderCredential.provider == provider,
            ).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_credential(row) if row else None

    async def upsert(self, credential: Credential) -> Credential:
        """
        Insert or overwrite the credential in a single statement.

        Concurrent writers for the same user resolve to whichever row write
        lands last; token fields are never mixed between writers.
        """
        now = datetime.utcnow()
        await ensure_user(self.session, credential.user_id)

        stmt = insert(ProviderCredential).values(
            user_id=credential.user_id,
            provider=credential.provider,
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "provider"],
            set_={
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.commit()

        logger.info(f"Stored {credential.provider} credential for user {credential.user_id} "
                    f"(expires {credential.expires_at.isoformat()})")
        return replace(credential, updated_at=now)

    async def delete(self, user_id: str, provider: str) -> bool:
        """Delete the credential. Returns False when there was nothing to delete."""
        result = await self.session.execute(
            delete(ProviderCredential).where(
                ProviderCredential.user_id == user_id,
                ProviderCredential.provider == provider,
            )
        )
        await self.session.commit()
        return result.rowcount > 0

    async def mark_synced(self, user_id: str, provider: str, when: datetime) -> None:
        await self.session.execute(
            update(ProviderCredential)
            .where(
                ProviderCredential.user_id == user_id,
                ProviderCredential.provider == provider,
            )
            .values(last_synced_at=when)
        )
        await self.session.commit()

    async def list_user_ids(self, provider: str) -> list[str]:
        result = await self.session.execute(
            select(ProviderCredential.user_id)
            .where(ProviderCredential.provider == provider)
            .order_by(ProviderCredential.user_id)
        )
        return list(result.scalars().all())
