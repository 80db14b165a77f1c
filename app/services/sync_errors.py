"""Durable log of failed sync attempts."""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.sync_error import SyncErrorRecord
from app.services.errors import ErrorType

logger = logging.getLogger(__name__)


class SyncErrorLog:
    """Append-only error log with list and purge."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = datetime.utcnow):
        self.session = session
        self.clock = clock

    async def record(
        self,
        user_id: str,
        provider: str,
        target_date: date,
        error_type: ErrorType | str,
        message: str,
        category: Optional[str] = None,
        retry_count: int = 0,
    ) -> None:
        """Append one error record. Never raises; a failed write is only logged."""
        error_type = error_type.value if isinstance(error_type, ErrorType) else str(error_type)
        try:
            self.session.add(SyncErrorRecord(
                user_id=user_id,
                provider=provider,
                date=target_date,
                category=category,
                error_type=error_type,
                error_message=message,
                retry_count=retry_count,
                occurred_at=self.clock(),
            ))
            await self.session.commit()
        except Exception as e:
            logger.error(f"Failed to record sync error for {user_id} {target_date} ({error_type}): {e}")
            try:
                await self.session.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback after failed error record also failed: {rollback_error}")

    async def list(
        self,
        user_id: str,
        since_days: int = 7,
        provider: Optional[str] = None,
    ) -> list[SyncErrorRecord]:
        """Errors from the last since_days days, newest first."""
        cutoff = self.clock() - timedelta(days=since_days)
        stmt = select(SyncErrorRecord).where(
            SyncErrorRecord.user_id == user_id,
            SyncErrorRecord.occurred_at >= cutoff,
        )
        if provider is not None:
            stmt = stmt.where(SyncErrorRecord.provider == provider)
        stmt = stmt.order_by(desc(SyncErrorRecord.occurred_at), desc(SyncErrorRecord.id))

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def purge(
        self,
        user_id: str,
        older_than_days: int = 30,
        provider: Optional[str] = None,
    ) -> int:
        """Delete errors older than older_than_days. Returns the number removed."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        stmt = delete(SyncErrorRecord).where(
            SyncErrorRecord.user_id == user_id,
            SyncErrorRecord.occurred_at < cutoff,
        )
        if provider is not None:
            stmt = stmt.where(SyncErrorRecord.provider == provider)

        result = await self.session.execute(stmt)
        await self.session.commit()
        logger.info(f"Purged {result.rowcount} sync errors older than {older_than_days} days for {user_id}")
        return result.rowcount
