"""Shared test fixtures for the health sync test suite."""

from datetime import date, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from app.api.deps import get_providers, get_sync_config
from app.core.database import Base, enable_sqlite_foreign_keys, get_db, get_session_factory
from app.main import create_app
# Import all models so their metadata is registered on Base
import app.models  # noqa: F401
from app.services.errors import ErrorType, SyncError
from app.services.healthplanet import MANUAL_REDIRECT_URI
from app.services.oauth import OAuthClient, TokenGrant
from app.services.parsers import empty_fields
from app.services.provider import ProviderClient
from app.services.registry import Provider
from app.services.retry import RetryPolicy
from app.services.sync import SyncConfig
from app.services.token_store import Credential, TokenStore

USER_ID = "user-1"

FITBIT_VALUES = {
    "activity": {"steps": 8000, "calories_burned": 2100, "distance_km": 6.2, "active_minutes": 45},
    "heart_rate": {"resting_heart_rate": 58},
    "sleep": {"sleep_hours": 7.5},
}


@pytest_asyncio.fixture
async def engine(tmp_path):
    """
    File-backed SQLite engine so several sessions can share one database.

    Creates all tables before the test, drops them after. Each test gets
    a clean database.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def async_session(session_factory):
    async with session_factory() as session:
        yield session


class FakeOAuth(OAuthClient):
    """OAuth client that never leaves the process."""

    name = "fitbit"
    authorize_endpoint = "https://provider.example.com/oauth2/authorize"
    scope = "activity sleep"

    def __init__(self):
        super().__init__("client-id", "client-secret")
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[str] = []
        self.refresh_error: SyncError | None = None

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        n = len(self.refresh_calls)
        return TokenGrant(f"access-refreshed-{n}", f"refresh-refreshed-{n}", 28800)

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        self.exchange_calls.append(code)
        return TokenGrant("access-new", "refresh-new", 28800)


class FakeFitbitClient(ProviderClient):
    """
    Scriptable data client.

    `responses[category]` is either a dict of fields or a callable
    (access_token, target_date) returning fields or raising.
    """

    name = "fitbit"
    categories = ("activity", "heart_rate", "sleep")

    def __init__(self):
        super().__init__()
        self.responses: dict = {}
        self.calls: list[tuple[str, str, date]] = []
        self.failing: set[date] = set()
        self.failure = (ErrorType.CLIENT_ERROR, None)

    def fail_on(self, dates, error_type=ErrorType.CLIENT_ERROR, retry_after=None):
        """Make every category fail on the given dates."""
        self.failing = set(dates)
        self.failure = (error_type, retry_after)

    async def fetch_category(self, category, access_token, target_date):
        self.calls.append((category, access_token, target_date))
        if target_date in self.failing:
            error_type, retry_after = self.failure
            raise SyncError(error_type, f"HTTP error on {target_date}", retry_after=retry_after)
        response = self.responses.get(category, FITBIT_VALUES[category])
        if callable(response):
            return response(access_token, target_date)
        return dict(response)


@pytest.fixture
def fake_oauth():
    return FakeOAuth()


@pytest.fixture
def fake_client():
    return FakeFitbitClient()


@pytest.fixture
def fake_provider(fake_oauth, fake_client):
    return Provider(
        name="fitbit",
        oauth=fake_oauth,
        client=fake_client,
        redirect_uri="http://testserver/api/fitbit/callback",
    )


@pytest.fixture
def sleeps():
    """Delays requested by the code under test, in order."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def sync_config():
    return SyncConfig(retry=RetryPolicy(jitter=0.0))


@pytest_asyncio.fixture
async def connected_user(async_session):
    """USER_ID with a Fitbit credential that is valid for another 8 hours."""
    await TokenStore(async_session).upsert(Credential(
        user_id=USER_ID,
        provider="fitbit",
        access_token="access-initial",
        refresh_token="refresh-initial",
        expires_at=datetime.utcnow() + timedelta(hours=8),
    ))
    return USER_ID


class FakeHealthPlanetClient(ProviderClient):
    """Ranged body composition client returning `by_date`."""

    name = "healthplanet"
    categories = ("body_composition",)
    supports_ranges = True

    def __init__(self):
        super().__init__()
        self.by_date: dict = {}
        self.requested: list[tuple[date, date]] = []

    async def fetch_range(self, access_token, from_date, to_date):
        self.requested.append((from_date, to_date))
        return {day: dict(values) for day, values in self.by_date.items()}

    async def fetch_body_composition(self, access_token, target_date):
        return dict(self.by_date.get(target_date, empty_fields("body_composition")))


@pytest.fixture
def healthplanet_oauth():
    oauth = FakeOAuth()
    oauth.name = "healthplanet"
    return oauth


@pytest.fixture
def healthplanet_provider(healthplanet_oauth):
    return Provider(
        name="healthplanet",
        oauth=healthplanet_oauth,
        client=FakeHealthPlanetClient(),
        redirect_uri=MANUAL_REDIRECT_URI,
        manual_code=True,
    )


@pytest.fixture
def providers(fake_provider, healthplanet_provider):
    return {"fitbit": fake_provider, "healthplanet": healthplanet_provider}


@pytest.fixture
def api_sync_config():
    """No waiting anywhere so API tests run at full speed."""
    return SyncConfig(
        retry=RetryPolicy(base_delay=0.0, jitter=0.0),
        category_delay=0.0,
        success_delay=0.0,
        failure_delay=0.0,
        error_delay=0.0,
    )


def _make_test_app(session_factory, providers, config):
    """Full application with the database, providers and tuning swapped for test doubles."""
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_providers] = lambda: providers
    app.dependency_overrides[get_sync_config] = lambda: config
    return app


@pytest_asyncio.fixture
async def api_client(session_factory, providers, api_sync_config):
    app = _make_test_app(session_factory, providers, api_sync_config)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
