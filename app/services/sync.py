"""Sync orchestration - coordinates token validation, data fetching and storage."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.models.database import DailyHealthRecord
from app.services import parsers
from app.services.errors import ErrorType, SyncError
from app.services.healthplanet import clamp_date_range
from app.services.registry import Provider
from app.services.retry import RetryPolicy, call_with_retry
from app.services.sync_errors import SyncErrorLog
from app.services.token_refresher import TokenRefresher
from app.services.token_store import Credential, TokenStore, ensure_user

logger = logging.getLogger(__name__)

RECORD_FIELDS = tuple(f for fields in parsers.CATEGORY_FIELDS.values() for f in fields)


class SyncStage(str, Enum):
    START = "START"
    TOKEN_VALIDATED = "TOKEN_VALIDATED"
    DATA_FETCHED = "DATA_FETCHED"
    FETCH_FAILED = "FETCH_FAILED"
    PERSISTED = "PERSISTED"
    PERSIST_FAILED = "PERSIST_FAILED"
    DONE = "DONE"


@dataclass(frozen=True)
class SyncConfig:
    """Tunables for single-day and batch sync."""

    refresh_margin: timedelta = timedelta(minutes=60)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    category_delay: float = 1.5
    success_delay: float = 1.0
    failure_delay: float = 2.0
    error_delay: float = 3.0
    max_consecutive_failures: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncConfig":
        return cls(
            refresh_margin=timedelta(minutes=settings.token_refresh_margin_minutes),
            retry=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                rate_limit_default_wait=settings.rate_limit_default_wait_seconds,
                rate_limit_max_wait=settings.rate_limit_max_wait_seconds,
            ),
            category_delay=settings.category_delay_seconds,
            success_delay=settings.batch_success_delay_seconds,
            failure_delay=settings.batch_failure_delay_seconds,
            error_delay=settings.batch_error_delay_seconds,
            max_consecutive_failures=settings.max_consecutive_failures,
        )


@dataclass
class CategoryOutcome:
    category: str
    success: bool
    error_type: Optional[ErrorType] = None
    message: Optional[str] = None
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error_type": self.error_type.value if self.error_type else None,
            "error": self.message,
            "attempts": self.attempts,
        }


@dataclass
class DaySyncResult:
    """Outcome of one single-day sync."""

    user_id: str
    provider: str
    date: date
    success: bool = False
    fields: dict[str, Any] = field(default_factory=dict)
    record: Optional[dict[str, Any]] = None
    categories: dict[str, CategoryOutcome] = field(default_factory=dict)
    stages: list[SyncStage] = field(default_factory=list)
    error_type: Optional[ErrorType] = None
    error_message: Optional[str] = None
    retry_after: Optional[float] = None

    def fail(self, error_type: ErrorType, message: str, retry_after: Optional[float] = None):
        self.success = False
        self.error_type = error_type
        self.error_message = message
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "provider": self.provider,
            "success": self.success,
            "record": self.record,
            "categories": {name: outcome.to_dict() for name, outcome in self.categories.items()},
            "stages": [stage.value for stage in self.stages],
            "error_type": self.error_type.value if self.error_type else None,
            "error": self.error_message,
        }


@dataclass
class RangeSyncResult:
    """Outcome of a ranged import for providers that answer date ranges."""

    user_id: str
    provider: str
    from_date: date
    to_date: date
    effective_from: Optional[date] = None
    success: bool = False
    results: list[dict[str, Any]] = field(default_factory=list)
    error_type: Optional[ErrorType] = None
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        succeeded = sum(1 for r in self.results if r["success"])
        return {
            "provider": self.provider,
            "success": self.success,
            "from_date": self.from_date.isoformat(),
            "to_date": self.to_date.isoformat(),
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "total_records": len(self.results),
            "successful_syncs": succeeded,
            "failed_syncs": len(self.results) - succeeded,
            "results": self.results,
            "error_type": self.error_type.value if self.error_type else None,
            "error": self.error_message,
        }


def _record_to_dict(row: DailyHealthRecord) -> dict[str, Any]:
    data = {"date": row.date.isoformat()}
    for name in RECORD_FIELDS:
        data[name] = getattr(row, name)
    data["synced_at"] = row.synced_at.isoformat() if row.synced_at else None
    return data


def _pick_day_error(outcomes: list[CategoryOutcome]) -> CategoryOutcome:
    """Report the failure that tells the user the most: auth first, then rate limits."""
    for error_type in (ErrorType.UNAUTHORIZED, ErrorType.RATE_LIMITED):
        for outcome in outcomes:
            if outcome.error_type == error_type:
                return outcome
    return outcomes[0]


class SyncService:
    """Produces one DailyHealthRecord per user per date for a provider."""

    def __init__(
        self,
        provider: Provider,
        config: Optional[SyncConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.provider = provider
        self.config = config or SyncConfig()
        self.sleep = sleep
        self.clock = clock

    def _refresher(self, store: TokenStore) -> TokenRefresher:
        return TokenRefresher(self.provider.oauth, store, self.config.refresh_margin, self.clock)

    async def _fetch_with_refresh(
        self,
        refresher: TokenRefresher,
        credential: Credential,
        fetch: Callable[[str], Awaitable[Any]],
        context: str,
        allow_refresh: bool,
    ) -> tuple[Any, Credential, bool]:
        """
        Run fetch(access_token) under the retry policy.

        A 401 gets one forced refresh and one more try. Returns the value, the
        credential in use afterwards and whether a refresh was spent.
        """
        attempts = 0
        refreshed = False
        while True:
            try:
                value = await call_with_retry(
                    lambda: fetch(credential.access_token),
                    self.config.retry,
                    sleep=self.sleep,
                    context=context,
                )
                return value, credential, refreshed
            except SyncError as e:
                attempts += e.attempts
                if e.error_type == ErrorType.UNAUTHORIZED and allow_refresh and not refreshed:
                    logger.warning(f"{context}: access token rejected, forcing a refresh")
                    refreshed = True
                    try:
                        credential = await refresher.refresh(credential)
                    except SyncError as refresh_error:
                        refresh_error.attempts = attempts
                        refresh_error.token_refreshed = True
                        raise
                    continue
                e.attempts = attempts
                e.token_refreshed = refreshed
                raise

    async def _upsert_record(
        self,
        session: AsyncSession,
        user_id: str,
        target_date: date,
        values: dict[str, Any],
    ) -> None:
        """Insert or overwrite the given columns of the (user, date) row in one statement."""
        now = self.clock()
        await ensure_user(session, user_id)

        stmt = insert(DailyHealthRecord).values(
            user_id=user_id,
            date=target_date,
            synced_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "date"],
            set_={name: stmt.excluded[name] for name in (*values.keys(), "synced_at")},
        )
        await session.execute(stmt)

    async def _load_record(self, session: AsyncSession, user_id: str, target_date: date) -> Optional[dict]:
        result = await session.execute(
            select(DailyHealthRecord).where(
                DailyHealthRecord.user_id == user_id,
                DailyHealthRecord.date == target_date,
            ).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _record_to_dict(row) if row else None

    async def sync_day(self, session: AsyncSession, user_id: str, target_date: date) -> DaySyncResult:
        """
        Sync one provider's data for one user and date.

        Categories are fetched independently; the day succeeds if at least one
        category succeeded and the record was saved. Columns of failed
        categories keep whatever value they had before.
        """
        provider = self.provider.name
        date_str = target_date.isoformat()
        logger.info(f"Syncing {provider} data for user {user_id} on {date_str}")

        result = DaySyncResult(user_id=user_id, provider=provider, date=target_date)
        result.stages.append(SyncStage.START)
        store = TokenStore(session)
        error_log = SyncErrorLog(session, self.clock)
        refresher = self._refresher(store)

        credential = await store.get(user_id, provider)
        if credential is None:
            result.fail(ErrorType.UNAUTHORIZED, f"{provider} account is not connected")
            result.stages.append(SyncStage.DONE)
            return result

        try:
            credential = await refresher.ensure_valid(credential)
        except SyncError as e:
            result.fail(e.error_type, f"Token refresh failed: {e.message}", e.retry_after)
            await error_log.record(user_id, provider, target_date, e.error_type, e.message,
                                   category="token", retry_count=e.attempts - 1)
            result.stages.append(SyncStage.DONE)
            return result
        result.stages.append(SyncStage.TOKEN_VALIDATED)

        refresh_spent = False
        fields: dict[str, Any] = {}
        for index, category in enumerate(self.provider.client.categories):
            if index > 0 and self.config.category_delay > 0:
                await self.sleep(self.config.category_delay)

            context = f"{provider} {category} {date_str}"
            try:
                values, credential, refreshed = await self._fetch_with_refresh(
                    refresher,
                    credential,
                    lambda token, c=category: self.provider.client.fetch_category(c, token, target_date),
                    context,
                    allow_refresh=not refresh_spent,
                )
                refresh_spent = refresh_spent or refreshed
            except SyncError as e:
                refresh_spent = refresh_spent or e.token_refreshed
                logger.error(f"{context} failed: {e.message}")
                result.categories[category] = CategoryOutcome(
                    category, False, e.error_type, e.message, e.attempts,
                )
                if e.error_type == ErrorType.RATE_LIMITED:
                    result.retry_after = max(result.retry_after or 0, e.retry_after or 0) or None
                continue

            fields.update(values)
            result.categories[category] = CategoryOutcome(category, True)

        failed = [o for o in result.categories.values() if not o.success]
        if len(failed) == len(result.categories):
            result.stages.append(SyncStage.FETCH_FAILED)
            worst = _pick_day_error(failed)
            result.fail(worst.error_type, f"All data categories failed: {worst.message}", result.retry_after)
            await self._record_category_errors(error_log, result, failed)
            result.stages.append(SyncStage.DONE)
            return result
        result.stages.append(SyncStage.DATA_FETCHED)
        result.fields = fields

        try:
            await self._upsert_record(session, user_id, target_date, fields)
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save {provider} record for {user_id} on {date_str}: {e}")
            await session.rollback()
            result.stages.append(SyncStage.PERSIST_FAILED)
            result.fail(ErrorType.SERVER_ERROR, f"Failed to save record: {e}")
            await error_log.record(user_id, provider, target_date, ErrorType.SERVER_ERROR,
                                   str(e), category="persist")
            await self._record_category_errors(error_log, result, failed)
            result.stages.append(SyncStage.DONE)
            return result
        result.stages.append(SyncStage.PERSISTED)

        result.success = True
        result.record = await self._load_record(session, user_id, target_date)
        await self._record_category_errors(error_log, result, failed)
        await store.mark_synced(user_id, provider, self.clock())

        logger.info(
            f"{provider} sync completed for {user_id} on {date_str}: "
            f"{len(result.categories) - len(failed)}/{len(result.categories)} categories"
            + (f" (failed: {[o.category for o in failed]})" if failed else "")
        )
        result.stages.append(SyncStage.DONE)
        return result

    async def _record_category_errors(
        self,
        error_log: SyncErrorLog,
        result: DaySyncResult,
        failed: list[CategoryOutcome],
    ) -> None:
        for outcome in failed:
            await error_log.record(
                result.user_id,
                result.provider,
                result.date,
                outcome.error_type,
                outcome.message or "",
                category=outcome.category,
                retry_count=max(outcome.attempts - 1, 0),
            )

    async def sync_range(
        self,
        session: AsyncSession,
        user_id: str,
        from_date: date,
        to_date: date,
    ) -> RangeSyncResult:
        """
        Import a date range with a single provider request.

        Each returned day is upserted and committed on its own, so days saved
        before a failure stay saved.
        """
        provider = self.provider.name
        if not self.provider.supports_ranges:
            raise ValueError(f"{provider} does not support ranged sync")

        result = RangeSyncResult(user_id=user_id, provider=provider, from_date=from_date, to_date=to_date)
        store = TokenStore(session)
        error_log = SyncErrorLog(session, self.clock)
        refresher = self._refresher(store)

        credential = await store.get(user_id, provider)
        if credential is None:
            result.error_type = ErrorType.UNAUTHORIZED
            result.error_message = f"{provider} account is not connected"
            return result

        context = f"{provider} range {from_date}..{to_date}"
        try:
            credential = await refresher.ensure_valid(credential)
            by_date, credential, _ = await self._fetch_with_refresh(
                refresher,
                credential,
                lambda token: self.provider.client.fetch_range(token, from_date, to_date),
                context,
                allow_refresh=True,
            )
        except SyncError as e:
            logger.error(f"{context} failed: {e.message}")
            result.error_type = e.error_type
            result.error_message = e.message
            await error_log.record(user_id, provider, to_date, e.error_type, e.message,
                                   category="range", retry_count=e.attempts - 1)
            return result

        result.effective_from = clamp_date_range(from_date, to_date)[0]

        for day in sorted(by_date):
            values = by_date[day]
            try:
                await self._upsert_record(session, user_id, day, values)
                await session.commit()
                result.results.append({"date": day.isoformat(), "success": True, "data": values})
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to save {provider} record for {user_id} on {day}: {e}")
                result.results.append({"date": day.isoformat(), "success": False, "error": str(e)})
                await error_log.record(user_id, provider, day, ErrorType.SERVER_ERROR, str(e), category="persist")

        result.success = all(r["success"] for r in result.results)
        if result.results and any(r["success"] for r in result.results):
            await store.mark_synced(user_id, provider, self.clock())
        logger.info(f"{context}: saved {sum(r['success'] for r in result.results)} of {len(result.results)} days")
        return result
