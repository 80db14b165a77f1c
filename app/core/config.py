from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    db_path: str = "/data/health_sync.db"

    # Public URL of this service, used for OAuth redirect URIs
    app_base_url: str = "http://localhost:8000"
    result_page_path: str = "/settings"

    # OAuth state signing
    state_secret: str = "change-me"
    oauth_state_ttl_minutes: int = 10

    # Fitbit credentials
    fitbit_client_id: str | None = None
    fitbit_client_secret: str | None = None

    # HealthPlanet credentials
    healthplanet_client_id: str | None = None
    healthplanet_client_secret: str | None = None
    healthplanet_redirect_uri: str | None = None
    healthplanet_manual_code: bool = False

    # Sync tuning
    token_refresh_margin_minutes: int = 60
    max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    rate_limit_default_wait_seconds: float = 60.0
    rate_limit_max_wait_seconds: float = 300.0
    category_delay_seconds: float = 1.5
    batch_success_delay_seconds: float = 1.0
    batch_failure_delay_seconds: float = 2.0
    batch_error_delay_seconds: float = 3.0
    max_consecutive_failures: int = 3
    max_batch_days: int = 365

    # Optional settings
    tz: str = "Asia/Tokyo"
    scheduler_enabled: bool = True
    sync_hour: int = 6
    sync_minute: int = 0
    log_level: str = "INFO"
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
