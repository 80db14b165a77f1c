# Database models
from app.models.database import (
    User,
    ProviderCredential,
    DailyHealthRecord,
    UsedAuthKey,
)
from app.models.sync_error import SyncErrorRecord

__all__ = [
    "User",
    "ProviderCredential",
    "DailyHealthRecord",
    "UsedAuthKey",
    "SyncErrorRecord",
]
