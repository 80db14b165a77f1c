"""Sync error log endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_provider
from app.api.errors import ERROR_RESPONSES
from app.core.database import get_db
from app.schemas.responses import (
    PurgeSyncErrorsRequest,
    PurgeSyncErrorsResponse,
    SyncErrorListResponse,
    SyncErrorResponse,
)
from app.services.registry import Provider
from app.services.sync_errors import SyncErrorLog

router = APIRouter(prefix="/api", tags=["sync-errors"], responses=ERROR_RESPONSES)


@router.get("/{provider}/sync-errors", response_model=SyncErrorListResponse)
async def list_sync_errors(
    days: int = Query(default=7, ge=1, le=365),
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Errors from the last `days` days, newest first."""
    records = await SyncErrorLog(db).list(user_id, since_days=days, provider=provider.name)
    errors = [SyncErrorResponse.model_validate(r) for r in records]
    return SyncErrorListResponse(errors=errors, total=len(errors), days=days)


@router.delete("/{provider}/sync-errors", response_model=PurgeSyncErrorsResponse)
async def purge_sync_errors(
    request: PurgeSyncErrorsRequest | None = None,
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Delete errors older than `days` days (30 by default)."""
    days = request.days if request else 30
    deleted = await SyncErrorLog(db).purge(user_id, older_than_days=days, provider=provider.name)
    return PurgeSyncErrorsResponse(deleted=deleted, days=days)
