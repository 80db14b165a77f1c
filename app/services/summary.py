"""Per-provider reads and aggregates over stored daily records."""

from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import DailyHealthRecord
from app.services.parsers import CATEGORY_FIELDS


def fields_for(categories: tuple[str, ...]) -> list[str]:
    return [name for category in categories for name in CATEGORY_FIELDS[category]]


async def provider_summary(
    session: AsyncSession,
    user_id: str,
    categories: tuple[str, ...],
    days: int = 30,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """
    Summarize the columns a provider owns over the last `days` days.

    A day counts as having data when any of those columns is set. Averages
    ignore missing values.
    """
    today = today or date.today()
    since = today - timedelta(days=days)
    fields = fields_for(categories)
    columns = [getattr(DailyHealthRecord, name) for name in fields]

    stmt = select(
        func.count(DailyHealthRecord.id),
        func.max(DailyHealthRecord.date),
        *[func.avg(column) for column in columns],
    ).where(
        DailyHealthRecord.user_id == user_id,
        DailyHealthRecord.date >= since,
        or_(*[column.isnot(None) for column in columns]),
    )
    row = (await session.execute(stmt)).one()

    days_with_data, latest = row[0], row[1]
    averages = {
        name: round(value, 2) if value is not None else None
        for name, value in zip(fields, row[2:])
    }
    return {
        "days": days,
        "days_with_data": days_with_data,
        "latest_date": latest.isoformat() if latest else None,
        "averages": averages,
    }


async def provider_records(
    session: AsyncSession,
    user_id: str,
    categories: tuple[str, ...],
    from_date: date,
    to_date: date,
) -> list[dict[str, Any]]:
    """Stored days in [from_date, to_date] that carry any of the provider's columns, newest first."""
    fields = fields_for(categories)
    columns = [getattr(DailyHealthRecord, name) for name in fields]

    result = await session.execute(
        select(DailyHealthRecord)
        .where(
            DailyHealthRecord.user_id == user_id,
            DailyHealthRecord.date >= from_date,
            DailyHealthRecord.date <= to_date,
            or_(*[column.isnot(None) for column in columns]),
        )
        .order_by(DailyHealthRecord.date.desc())
    )

    records = []
    for row in result.scalars():
        record = {"date": row.date.isoformat()}
        record.update({name: getattr(row, name) for name in fields})
        record["synced_at"] = row.synced_at.isoformat() if row.synced_at else None
        records.append(record)
    return records
