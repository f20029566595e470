import os

# before app.core.config builds its module-level settings
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import httpx

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
from app.models import Base
from app.core.config import Settings
from app.services.factory import build_sync_components
from app.services.http_client import SyncHttpClient
from app.services.storage import SqlAlchemySyncStore

from fixtures_seed import API_URL, AUTH_URL, GEO_URL, WEBHOOK_URL, FakeClock, FakeUpstream


def _test_db_url() -> str:
    # real Postgres when provided, otherwise an in-memory SQLite shared by every session
    return os.getenv("DATABASE_URL_TEST") or "sqlite+aiosqlite://"


@pytest.fixture
async def async_engine():
    url = _test_db_url()
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_async_engine(url, **kwargs)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def store(session_factory):
    return SqlAlchemySyncStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
async def http(upstream):
    client = SyncHttpClient(timeout_seconds=5, transport=upstream.transport())
    yield client
    await client.aclose()


def make_settings(**overrides) -> Settings:
    values = dict(
        mls_api_url=API_URL,
        mls_auth_url=AUTH_URL,
        mls_client_id="client",
        mls_client_secret="secret",
        mls_username="sync-bot",
        mls_password="hunter2",
        mls_page_size=2,
        geocoding_url=GEO_URL,
        geocoding_api_key="geo-key",
        webhook_url=WEBHOOK_URL,
        telemetry_enabled=False,
        scheduler_enabled=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
async def build_components(session_factory, upstream, clock):
    """
    Factory fixture: build_components(**settings_overrides) -> SyncComponents
    wired to the fake upstream, the test database and the fake clock.
    """
    built = []

    def _build(**overrides):
        components = build_sync_components(
            make_settings(**overrides),
            session_factory,
            clock=clock,
            transport=upstream.transport(),
        )
        built.append(components)
        return components

    yield _build

    for components in built:
        await components.aclose()


@pytest.fixture
async def components(build_components):
    return build_components()


@pytest.fixture
async def client(components):
    """
    HTTP client against the API with the test scheduler installed on app.state
    (ASGITransport does not run the lifespan).
    """
    from app.main import app

    app.state.scheduler = components.scheduler

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    del app.state.scheduler
