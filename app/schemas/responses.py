"""Pydantic request and response models for API endpoints."""

import datetime as dt
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any


class ErrorResponse(BaseModel):
    """Body of every classified failure."""
    error: str
    error_type: str


class ConnectUrlResponse(BaseModel):
    auth_url: str
    state: str
    manual_code_required: bool


class ManualCodeRequest(BaseModel):
    """Authorization code copied by the user from the provider's success page."""
    code: str = Field(min_length=1)
    state: str = Field(min_length=1)

    @field_validator("code", "state")
    @classmethod
    def strip_value(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ConnectResponse(BaseModel):
    success: bool
    provider: str
    expires_at: datetime


class SyncRequest(BaseModel):
    date: dt.date | None = None


class BatchSyncRequest(BaseModel):
    days: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    stream: bool = False

    @field_validator("days")
    @classmethod
    def validate_days(cls, v):
        if v is not None and (v < 1 or v > 365):
            raise ValueError("days must be between 1 and 365")
        return v

    @model_validator(mode="after")
    def require_days_or_range(self):
        if self.days is None and (self.start_date is None or self.end_date is None):
            raise ValueError("Provide either days or both start_date and end_date")
        return self


class SyncRangeRequest(BaseModel):
    from_date: date | None = None
    to_date: date | None = None


class CategoryResultResponse(BaseModel):
    success: bool
    error_type: str | None = None
    error: str | None = None
    attempts: int = 1


class DaySyncResponse(BaseModel):
    """Result of a single-day sync."""
    date: str
    provider: str
    success: bool
    record: dict[str, Any] | None
    categories: dict[str, CategoryResultResponse]
    stages: list[str]
    error_type: str | None = None
    error: str | None = None


class BatchSyncResponse(BaseModel):
    provider: str
    success: bool
    total_requested: int
    processed: int
    succeeded: int
    failed: int
    stopped_early: bool
    cancelled: bool
    results: list[dict[str, Any]]


class RangeSyncResponse(BaseModel):
    provider: str
    success: bool
    from_date: str
    to_date: str
    effective_from: str | None
    total_records: int
    successful_syncs: int
    failed_syncs: int
    results: list[dict[str, Any]]
    error_type: str | None = None
    error: str | None = None


class DailyRecordsResponse(BaseModel):
    """Stored daily records for one provider and date range."""
    provider: str
    from_date: date
    to_date: date
    total: int
    data: list[dict[str, Any]]


class ProviderSummary(BaseModel):
    days: int
    days_with_data: int
    latest_date: str | None
    averages: dict[str, float | None]


class StatusResponse(BaseModel):
    """Connection status for one provider."""
    provider: str
    configured: bool
    connected: bool
    token_expired: bool | None = None
    expires_at: datetime | None = None
    last_sync: datetime | None = None
    token_updated_at: datetime | None = None
    summary: ProviderSummary | None = None


class DisconnectResponse(BaseModel):
    success: bool
    provider: str
    message: str


class SyncErrorResponse(BaseModel):
    """One logged sync failure."""
    id: int
    provider: str
    date: date
    category: str | None
    error_type: str
    error_message: str | None
    retry_count: int
    occurred_at: datetime

    class Config:
        from_attributes = True


class SyncErrorListResponse(BaseModel):
    errors: list[SyncErrorResponse]
    total: int
    days: int


class PurgeSyncErrorsRequest(BaseModel):
    days: int = Field(default=30, ge=0, le=3650)


class PurgeSyncErrorsResponse(BaseModel):
    deleted: int
    days: int
