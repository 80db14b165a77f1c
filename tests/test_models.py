"""Tests for table constraints."""

from datetime import date, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.models.database import DailyHealthRecord, UsedAuthKey, User
from app.models.sync_error import SyncErrorRecord


@pytest.mark.asyncio
class TestDailyHealthRecord:

    async def test_one_row_per_user_and_date(self, async_session):
        async_session.add(User(id="user-1"))
        async_session.add(DailyHealthRecord(user_id="user-1", date=date(2024, 3, 1), steps=100))
        await async_session.commit()

        async_session.add(DailyHealthRecord(user_id="user-1", date=date(2024, 3, 1), steps=200))
        with pytest.raises(IntegrityError):
            await async_session.commit()
        await async_session.rollback()

    async def test_requires_existing_user(self, async_session):
        async_session.add(DailyHealthRecord(user_id="ghost", date=date(2024, 3, 1)))
        with pytest.raises(IntegrityError):
            await async_session.commit()
        await async_session.rollback()

    async def test_unreported_fields_default_to_none(self, async_session):
        async_session.add(User(id="user-1"))
        record = DailyHealthRecord(user_id="user-1", date=date(2024, 3, 1), weight=70.2)
        async_session.add(record)
        await async_session.commit()

        assert record.steps is None
        assert record.weight == 70.2
        assert record.synced_at is not None

    async def test_user_and_records_flushed_together(self, async_session):
        async_session.add(User(
            id="user-1",
            daily_records=[
                DailyHealthRecord(date=date(2024, 3, 1), steps=100),
                DailyHealthRecord(date=date(2024, 3, 2), steps=200),
            ],
        ))
        await async_session.commit()

        result = await async_session.execute(select(DailyHealthRecord.user_id, DailyHealthRecord.steps))
        assert sorted(result.all()) == [("user-1", 100), ("user-1", 200)]


@pytest.mark.asyncio
class TestSyncErrorRecord:

    async def test_duplicates_allowed(self, async_session):
        for _ in range(2):
            async_session.add(SyncErrorRecord(
                user_id="user-1",
                provider="fitbit",
                date=date(2024, 3, 1),
                category="sleep",
                error_type="SERVER_ERROR",
                error_message="HTTP 503",
                retry_count=2,
                occurred_at=datetime(2024, 3, 2, 6, 0),
            ))
        await async_session.commit()


@pytest.mark.asyncio
class TestUsedAuthKey:

    async def test_key_unique_per_kind_and_provider(self, async_session):
        async_session.add(UsedAuthKey(kind="code", provider="healthplanet", user_id="u", key_hash="abc"))
        async_session.add(UsedAuthKey(kind="state", provider="healthplanet", user_id="u", key_hash="abc"))
        await async_session.commit()

        async_session.add(UsedAuthKey(kind="code", provider="healthplanet", user_id="u", key_hash="abc"))
        with pytest.raises(IntegrityError):
            await async_session.commit()
        await async_session.rollback()
