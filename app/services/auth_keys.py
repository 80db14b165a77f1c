"""Single-use guard for OAuth state nonces and manually entered codes.

Kept in the database rather than process memory so the guard holds across
workers and restarts.
"""

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import UsedAuthKey
from app.services.errors import InvalidRequestError

logger = logging.getLogger(__name__)


class AuthKeyAlreadyUsedError(InvalidRequestError):
    def __init__(self, kind: str):
        super().__init__(f"This {kind} has already been used. Please request a new one.")
        self.kind = kind


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class UsedAuthKeyStore:
    """Marks keys as consumed; a second consume within the TTL fails."""

    def __init__(
        self,
        session: AsyncSession,
        ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session = session
        self.ttl = ttl
        self.clock = clock

    async def consume(self, kind: str, provider: str, user_id: str, value: str) -> None:
        now = self.clock()
        key_hash = _hash(f"{user_id}:{value}")

        result = await self.session.execute(
            select(UsedAuthKey).where(
                UsedAuthKey.kind == kind,
                UsedAuthKey.provider == provider,
                UsedAuthKey.key_hash == key_hash,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            if now - existing.used_at <= self.ttl:
                logger.warning(f"Rejected reused {provider} {kind} for user {user_id}")
                raise AuthKeyAlreadyUsedError(kind)
            # Expired entry that has not been purged yet
            existing.used_at = now
            existing.user_id = user_id
            await self.session.commit()
            return

        self.session.add(UsedAuthKey(
            kind=kind,
            provider=provider,
            user_id=user_id,
            key_hash=key_hash,
            used_at=now,
        ))
        try:
            await self.session.commit()
        except IntegrityError as e:
            # Another request consumed the same key between our select and insert
            await self.session.rollback()
            raise AuthKeyAlreadyUsedError(kind) from e

    async def purge_expired(self) -> int:
        cutoff = self.clock() - self.ttl
        result = await self.session.execute(
            delete(UsedAuthKey).where(UsedAuthKey.used_at < cutoff)
        )
        await self.session.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired auth keys")
        return result.rowcount
