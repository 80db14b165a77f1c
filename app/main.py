from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.api import config, connect, data, sync, sync_errors
from app.api.deps import get_providers
from app.api.errors import register_exception_handlers
from app.core.config import get_settings
from app.core.database import init_db
from app.core.logging import configure_logging
from app.services.scheduler import start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    settings = get_settings()
    # Startup
    configure_logging(settings.log_level)
    await init_db()
    if settings.scheduler_enabled:
        start_scheduler()
    yield
    # Shutdown
    stop_scheduler()
    for provider in get_providers().values():
        await provider.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Health Sync",
        description="Syncs Fitbit and HealthPlanet data into daily health records",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    app.include_router(config.router)
    app.include_router(connect.router)
    app.include_router(sync.router)
    app.include_router(sync_errors.router)
    app.include_router(data.router)
    return app


app = create_app()
