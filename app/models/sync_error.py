"""Sync error model for failed sync attempts."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Date, DateTime, Text

from app.core.database import Base


class SyncErrorRecord(Base):
    """Append-only log of terminal sync failures."""

    __tablename__ = "sync_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    category = Column(String, nullable=True)  # "token", "activity", "sleep", ...
    error_type = Column(String, nullable=False)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
