from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_providers
from app.core.config import get_settings
from app.services.registry import Provider

router = APIRouter(prefix="/api", tags=["config"])


class HealthResponse(BaseModel):
    status: str
    version: str


class ProviderConfig(BaseModel):
    configured: bool
    redirect_uri: str
    manual_code: bool


class ConfigResponse(BaseModel):
    db_path: str
    app_base_url: str
    tz: str
    scheduler_enabled: bool
    sync_hour: int
    sync_minute: int
    max_batch_days: int
    max_consecutive_failures: int
    providers: dict[str, ProviderConfig]
    debug: bool


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version="0.1.0")


@router.get("/config", response_model=ConfigResponse)
async def get_config(providers: dict[str, Provider] = Depends(get_providers)) -> ConfigResponse:
    """Get current configuration (excluding secrets)."""
    settings = get_settings()
    return ConfigResponse(
        db_path=settings.db_path,
        app_base_url=settings.app_base_url,
        tz=settings.tz,
        scheduler_enabled=settings.scheduler_enabled,
        sync_hour=settings.sync_hour,
        sync_minute=settings.sync_minute,
        max_batch_days=settings.max_batch_days,
        max_consecutive_failures=settings.max_consecutive_failures,
        providers={
            name: ProviderConfig(
                configured=provider.oauth.configured,
                redirect_uri=provider.redirect_uri,
                manual_code=provider.manual_code,
            )
            for name, provider in providers.items()
        },
        debug=settings.debug,
    )
