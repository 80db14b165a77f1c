"""Sequential multi-date sync with progress events and a failure circuit breaker."""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.errors import ErrorType, InvalidRequestError, SyncError
from app.services.sync import DaySyncResult, SyncConfig, SyncService

logger = logging.getLogger(__name__)

StopCheck = Callable[[], Union[bool, Awaitable[bool]]]


def build_dates(
    days: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    today: Optional[date] = None,
    max_days: int = 365,
) -> list[date]:
    """
    Expand a batch request into an explicit list of dates, newest first.

    Either `days` consecutive dates ending at `start_date` (yesterday when
    omitted), or the inclusive range `start_date`..`end_date`.
    """
    today = today or date.today()

    if end_date is not None:
        if start_date is None:
            raise InvalidRequestError("start_date is required when end_date is given")
        if end_date < start_date:
            raise InvalidRequestError("end_date must not be before start_date")
        count = (end_date - start_date).days + 1
        if count > max_days:
            raise InvalidRequestError(f"Date range is limited to {max_days} days, got {count}")
        return [end_date - timedelta(days=i) for i in range(count)]

    if days is None:
        raise InvalidRequestError("Provide either days or start_date and end_date")
    if not 1 <= days <= max_days:
        raise InvalidRequestError(f"days must be between 1 and {max_days}")

    anchor = start_date or today - timedelta(days=1)
    return [anchor - timedelta(days=i) for i in range(days)]


@dataclass
class DateOutcome:
    date: date
    success: bool
    error_type: Optional[ErrorType] = None
    error: Optional[str] = None
    retry_after: Optional[float] = None
    record: Optional[dict[str, Any]] = None

    @classmethod
    def from_day_result(cls, result: DaySyncResult) -> "DateOutcome":
        return cls(
            date=result.date,
            success=result.success,
            error_type=result.error_type,
            error=result.error_message,
            retry_after=result.retry_after,
            record=result.record,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"date": self.date.isoformat(), "success": self.success}
        if self.success:
            data["record"] = self.record
        else:
            data["error_type"] = self.error_type.value if self.error_type else None
            data["error"] = self.error
        return data


@dataclass
class BatchSyncResult:
    """Summary of one batch invocation."""

    user_id: str
    provider: str
    total_requested: int
    outcomes: list[DateOutcome] = field(default_factory=list)
    stopped_early: bool = False
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    @property
    def success(self) -> bool:
        return self.succeeded > 0 or self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "success": self.success,
            "total_requested": self.total_requested,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "stopped_early": self.stopped_early,
            "cancelled": self.cancelled,
            "results": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class ProgressEvent:
    """One step of a running batch, in the order it happened."""

    type: str  # start | progress | date_complete | rate_limit | complete | error
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    current_date: Optional[date] = None
    outcome: Optional[DateOutcome] = None
    wait_seconds: Optional[float] = None
    message: Optional[str] = None
    result: Optional[BatchSyncResult] = None

    @property
    def progress(self) -> int:
        return round(self.processed / self.total * 100) if self.total else 100

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "total_days": self.total,
            "processed_days": self.processed,
            "successful_syncs": self.succeeded,
            "failed_syncs": self.failed,
            "remaining_days": self.total - self.processed,
            "progress": self.progress,
            "current_date": self.current_date.isoformat() if self.current_date else None,
        }
        if self.outcome is not None:
            data["result"] = self.outcome.to_dict()
        if self.wait_seconds is not None:
            data["wait_seconds"] = self.wait_seconds
        if self.message:
            data["message"] = self.message
        if self.result is not None:
            data["summary"] = self.result.to_dict()
        return data

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict())}\n\n"


class BatchSynchronizer:
    """
    Drives SyncService over a list of dates, one date at a time.

    Each date gets its own database session. After a success the next date
    waits a short delay, after a failure a longer one. A run of consecutive
    failures stops the batch early.
    """

    def __init__(
        self,
        sync_service: SyncService,
        session_factory: async_sessionmaker[AsyncSession],
        config: Optional[SyncConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.sync_service = sync_service
        self.session_factory = session_factory
        self.config = config or sync_service.config
        self.sleep = sleep

    @property
    def provider(self) -> str:
        return self.sync_service.provider.name

    async def _should_stop(self, should_stop: Optional[StopCheck]) -> bool:
        if should_stop is None:
            return False
        value = should_stop()
        if inspect.isawaitable(value):
            value = await value
        return bool(value)

    async def _sync_one(self, user_id: str, day: date) -> tuple[DateOutcome, bool]:
        """Returns the outcome and whether it came from an unexpected exception."""
        try:
            async with self.session_factory() as session:
                day_result = await self.sync_service.sync_day(session, user_id, day)
            return DateOutcome.from_day_result(day_result), False
        except SyncError as e:
            logger.error(f"{self.provider} sync for {user_id} on {day} failed: {e.message}")
            return DateOutcome(day, False, e.error_type, e.message, e.retry_after), False
        except Exception as e:
            logger.error(f"Unexpected error syncing {self.provider} for {user_id} on {day}: {e}")
            return DateOutcome(day, False, ErrorType.SERVER_ERROR, str(e)), True

    async def events(
        self,
        user_id: str,
        dates: list[date],
        should_stop: Optional[StopCheck] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Run the batch, yielding progress events. Cancellation is checked between dates."""
        result = BatchSyncResult(user_id=user_id, provider=self.provider, total_requested=len(dates))

        def event(kind: str, **kwargs) -> ProgressEvent:
            return ProgressEvent(
                type=kind,
                total=len(dates),
                processed=result.processed,
                succeeded=result.succeeded,
                failed=result.failed,
                **kwargs,
            )

        logger.info(f"Starting {self.provider} batch sync for {user_id}: {len(dates)} dates")
        yield event("start")

        try:
            consecutive_failures = 0
            for index, day in enumerate(dates):
                if await self._should_stop(should_stop):
                    logger.info(f"{self.provider} batch sync for {user_id} cancelled before {day}")
                    result.cancelled = True
                    break

                yield event("progress", current_date=day)

                outcome, unexpected = await self._sync_one(user_id, day)
                result.outcomes.append(outcome)
                yield event("date_complete", current_date=day, outcome=outcome)

                if outcome.success:
                    consecutive_failures = 0
                    delay = self.config.success_delay
                else:
                    consecutive_failures += 1
                    if consecutive_failures >= self.config.max_consecutive_failures:
                        if index < len(dates) - 1:
                            logger.warning(
                                f"{self.provider} batch sync for {user_id} stopped after "
                                f"{consecutive_failures} consecutive failures"
                            )
                            result.stopped_early = True
                        break

                    delay = self.config.error_delay if unexpected else self.config.failure_delay
                    if outcome.error_type == ErrorType.RATE_LIMITED:
                        wait = outcome.retry_after or self.config.retry.rate_limit_default_wait
                        delay = max(delay, min(wait, self.config.retry.rate_limit_max_wait))
                        yield event(
                            "rate_limit",
                            current_date=day,
                            wait_seconds=delay,
                            message=f"Rate limited by {self.provider}, waiting {delay:.0f}s",
                        )

                if index < len(dates) - 1 and delay > 0:
                    await self.sleep(delay)
        except Exception as e:
            logger.error(f"{self.provider} batch sync for {user_id} aborted: {e}")
            yield event("error", message=str(e), result=result)
            return

        logger.info(
            f"{self.provider} batch sync for {user_id} finished: "
            f"{result.succeeded} succeeded, {result.failed} failed of {result.total_requested}"
        )
        yield event("complete", result=result)

    async def run(
        self,
        user_id: str,
        dates: list[date],
        should_stop: Optional[StopCheck] = None,
    ) -> BatchSyncResult:
        """Run the batch to completion and return the summary."""
        async for progress in self.events(user_id, dates, should_stop):
            if progress.type == "error":
                raise SyncError(ErrorType.SERVER_ERROR, progress.message or "Batch sync failed")
            if progress.type == "complete":
                return progress.result
        raise SyncError(ErrorType.SERVER_ERROR, "Batch sync ended without a result")
