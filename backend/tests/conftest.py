import os

# Settings are read at import time; point them at test values first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["LIVE_UPDATES_ENABLED"] = "true"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from models import Base, Meter, MeterKind, get_session
from services.meter_registry import MeterRegistry
from services.phase_map import PhaseMapRegistry

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


class FakeRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def make_meter(session_factory):
    async def _make(name: str = "Meter", kind: MeterKind = MeterKind.ENERGY) -> Meter:
        async with session_factory() as s:
            meter = await MeterRegistry(s).create(name, kind)
            await s.commit()
            await s.refresh(meter)
            return meter
    return _make


@pytest.fixture
def three_phase(session_factory, make_meter):
    """Parent meter with auto-provisioned A/B/C children: (parent, [childA, childB, childC])."""
    async def _make(name: str = "Building 3F"):
        parent = await make_meter(name, MeterKind.ENERGY_3PH)
        async with session_factory() as s:
            children = await PhaseMapRegistry(s).auto_provision(parent.id)
            await s.commit()
        return parent, children
    return _make


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis):
    from main import app

    async def _override_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    app.state.redis = fake_redis
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.redis = None
