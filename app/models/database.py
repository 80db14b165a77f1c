from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    Float,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.core.database import Base


class User(Base):
    """Opaque identity issued by the external auth layer.

    Only exists so credentials and daily records cascade when a user is removed.
    """

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    credentials = relationship(
        "ProviderCredential", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    daily_records = relationship(
        "DailyHealthRecord", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class ProviderCredential(Base):
    """OAuth credential for one user and one provider."""

    __tablename__ = "provider_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String, nullable=False)  # "fitbit", "healthplanet"
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    last_synced_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="credentials")

    __table_args__ = (UniqueConstraint("user_id", "provider", name="uix_credential_user_provider"),)


class DailyHealthRecord(Base):
    """One merged row of provider data per user per calendar date.

    Fitbit owns the activity, heart rate and sleep columns; HealthPlanet owns
    the body composition columns.
    """

    __tablename__ = "daily_health_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)

    # Activity
    steps = Column(Integer, nullable=True)
    calories_burned = Column(Integer, nullable=True)
    distance_km = Column(Float, nullable=True)
    active_minutes = Column(Integer, nullable=True)

    # Sleep and heart rate
    sleep_hours = Column(Float, nullable=True)
    resting_heart_rate = Column(Integer, nullable=True)

    # Body composition
    weight = Column(Float, nullable=True)
    body_fat_percent = Column(Float, nullable=True)
    muscle_mass = Column(Float, nullable=True)
    bone_mass = Column(Float, nullable=True)
    visceral_fat = Column(Float, nullable=True)

    synced_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="daily_records")

    __table_args__ = (UniqueConstraint("user_id", "date", name="uix_daily_record_user_date"),)


class UsedAuthKey(Base):
    """Single-use OAuth state nonces and manually entered authorization codes."""

    __tablename__ = "used_auth_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False)  # "state", "code"
    provider = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    key_hash = Column(String, nullable=False)
    used_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (UniqueConstraint("kind", "provider", "key_hash", name="uix_auth_key"),)
