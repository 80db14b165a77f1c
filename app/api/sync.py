"""Sync API endpoints."""

import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_current_user_id, get_healthplanet, get_provider, get_sync_config
from app.api.errors import ERROR_RESPONSES, error_response
from app.core.config import Settings, get_settings
from app.core.database import get_db, get_session_factory
from app.schemas.responses import (
    BatchSyncRequest,
    BatchSyncResponse,
    DaySyncResponse,
    RangeSyncResponse,
    SyncRangeRequest,
    SyncRequest,
)
from app.services.batch import BatchSynchronizer, build_dates
from app.services.errors import ErrorType, InvalidRequestError, SyncError
from app.services.registry import Provider
from app.services.sync import SyncConfig, SyncService
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sync"], responses=ERROR_RESPONSES)


async def _require_connected(db: AsyncSession, user_id: str, provider: Provider) -> None:
    if await TokenStore(db).get(user_id, provider.name) is None:
        raise SyncError(ErrorType.UNAUTHORIZED, f"{provider.name} account is not connected")


@router.post("/{provider}/sync", response_model=DaySyncResponse)
async def sync_day(
    request: SyncRequest | None = None,
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    config: SyncConfig = Depends(get_sync_config),
    db: AsyncSession = Depends(get_db),
):
    """Sync one date (yesterday when omitted)."""
    target_date = (request.date if request else None) or date.today() - timedelta(days=1)

    result = await SyncService(provider, config).sync_day(db, user_id, target_date)
    if not result.success:
        return error_response(result.error_type, result.error_message, result.retry_after)
    return result.to_dict()


@router.post("/{provider}/batch-sync", response_model=BatchSyncResponse)
async def batch_sync(
    body: BatchSyncRequest,
    request: Request,
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    config: SyncConfig = Depends(get_sync_config),
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Sync a list of dates one after another, newest first.

    With `stream` the response is a text/event-stream of progress events;
    closing the connection cancels the remaining dates.
    """
    dates = build_dates(
        days=body.days,
        start_date=body.start_date,
        end_date=body.end_date,
        max_days=settings.max_batch_days,
    )
    async with session_factory() as session:
        await _require_connected(session, user_id, provider)

    synchronizer = BatchSynchronizer(SyncService(provider, config), session_factory, config)

    if body.stream:
        async def event_stream():
            async for event in synchronizer.events(user_id, dates, should_stop=request.is_disconnected):
                yield event.to_sse()

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    result = await synchronizer.run(user_id, dates, should_stop=request.is_disconnected)
    return result.to_dict()


@router.post("/healthplanet/sync-range", response_model=RangeSyncResponse)
async def sync_range(
    request: SyncRangeRequest | None = None,
    provider: Provider = Depends(get_healthplanet),
    user_id: str = Depends(get_current_user_id),
    config: SyncConfig = Depends(get_sync_config),
    db: AsyncSession = Depends(get_db),
):
    """Import HealthPlanet measurements for a range (last 30 days by default)."""
    today = date.today()
    to_date = (request.to_date if request else None) or today
    from_date = (request.from_date if request else None) or to_date - timedelta(days=30)

    if from_date > to_date:
        raise InvalidRequestError("from_date must not be after to_date")
    if to_date > today:
        raise InvalidRequestError("to_date cannot be in the future")

    result = await SyncService(provider, config).sync_range(db, user_id, from_date, to_date)
    if result.error_type is not None:
        return error_response(result.error_type, result.error_message)
    return result.to_dict()
