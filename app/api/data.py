"""Read-back of synced daily records."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_provider
from app.api.errors import ERROR_RESPONSES
from app.core.database import get_db
from app.schemas.responses import DailyRecordsResponse
from app.services.errors import InvalidRequestError
from app.services.registry import Provider
from app.services.summary import provider_records

router = APIRouter(prefix="/api", tags=["data"], responses=ERROR_RESPONSES)


@router.get("/{provider}/data", response_model=DailyRecordsResponse)
async def get_records(
    from_date: date = Query(..., description="Start date (inclusive)"),
    to_date: date = Query(..., description="End date (inclusive)"),
    provider: Provider = Depends(get_provider),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Stored records for the provider's columns, newest first."""
    if from_date > to_date:
        raise InvalidRequestError("from_date must not be after to_date")

    records = await provider_records(db, user_id, provider.client.categories, from_date, to_date)
    return DailyRecordsResponse(
        provider=provider.name,
        from_date=from_date,
        to_date=to_date,
        total=len(records),
        data=records,
    )
