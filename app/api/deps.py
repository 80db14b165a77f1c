"""Shared FastAPI dependencies."""

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from app.core.config import Settings, get_settings
from app.services.oauth import OAuthStateSigner
from app.services.registry import PROVIDER_NAMES, Provider, build_providers
from app.services.sync import SyncConfig


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity set by the authentication layer in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


async def get_optional_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id or None


@lru_cache()
def get_providers() -> dict[str, Provider]:
    """Provider clients are shared across requests so their HTTP pools are reused."""
    return build_providers(get_settings())


def get_provider(provider: str, providers: dict[str, Provider] = Depends(get_providers)) -> Provider:
    if provider not in PROVIDER_NAMES or provider not in providers:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    return providers[provider]


def get_healthplanet(providers: dict[str, Provider] = Depends(get_providers)) -> Provider:
    return providers["healthplanet"]


def get_state_signer(settings: Settings = Depends(get_settings)) -> OAuthStateSigner:
    return OAuthStateSigner(settings.state_secret, timedelta(minutes=settings.oauth_state_ttl_minutes))


def get_sync_config(settings: Settings = Depends(get_settings)) -> SyncConfig:
    return SyncConfig.from_settings(settings)
