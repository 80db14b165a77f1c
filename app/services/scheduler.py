"""APScheduler setup for the daily provider sync and auth-key cleanup."""

import logging
from datetime import date, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.database import async_session_maker
from app.services.auth_keys import UsedAuthKeyStore
from app.services.registry import Provider, build_providers
from app.services.sync import SyncConfig, SyncService
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sync_all_users(
    providers: dict[str, Provider],
    session_factory: async_sessionmaker[AsyncSession],
    config: SyncConfig,
    target_date: Optional[date] = None,
) -> dict[str, dict[str, bool]]:
    """
    Sync one date for every connected user of every configured provider.

    Returns {provider: {user_id: success}}. One user's failure never stops
    the others.
    """
    target_date = target_date or date.today() - timedelta(days=1)
    results: dict[str, dict[str, bool]] = {}

    for name, provider in providers.items():
        if not provider.oauth.configured:
            logger.info(f"Skipping scheduled {name} sync: provider is not configured")
            continue

        async with session_factory() as session:
            user_ids = await TokenStore(session).list_user_ids(name)

        service = SyncService(provider, config)
        results[name] = {}
        for user_id in user_ids:
            try:
                async with session_factory() as session:
                    day_result = await service.sync_day(session, user_id, target_date)
                results[name][user_id] = day_result.success
            except Exception as e:
                logger.error(f"Scheduled {name} sync failed for {user_id}: {e}")
                results[name][user_id] = False

        succeeded = sum(results[name].values())
        logger.info(f"Scheduled {name} sync for {target_date}: {succeeded}/{len(user_ids)} users succeeded")

    return results


async def run_scheduled_sync():
    """Run the daily sync job."""
    settings = get_settings()
    logger.info("Starting scheduled sync job")

    providers = build_providers(settings)
    try:
        await sync_all_users(providers, async_session_maker, SyncConfig.from_settings(settings))
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}")
    finally:
        for provider in providers.values():
            await provider.close()


async def purge_auth_keys():
    """Drop single-use auth keys whose TTL has passed."""
    settings = get_settings()
    async with async_session_maker() as session:
        store = UsedAuthKeyStore(session, timedelta(minutes=settings.oauth_state_ttl_minutes))
        try:
            await store.purge_expired()
        except Exception as e:
            logger.error(f"Auth key purge failed: {e}")


def start_scheduler():
    """Start the APScheduler."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already started")
        return

    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone=settings.tz)

    scheduler.add_job(
        run_scheduled_sync,
        CronTrigger(hour=settings.sync_hour, minute=settings.sync_minute, timezone=settings.tz),
        id="daily_sync",
        name="Daily Fitbit and HealthPlanet sync",
        replace_existing=True
    )
    scheduler.add_job(
        purge_auth_keys,
        IntervalTrigger(minutes=settings.oauth_state_ttl_minutes),
        id="purge_auth_keys",
        name="Purge expired OAuth states and codes",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - daily sync at {settings.sync_hour}:{settings.sync_minute:02d} {settings.tz}")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
