"""Shared fixtures: a throwaway SQLite database per test, fake Redis, fake outbound HTTP."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SWEEPER_ENABLED", "false")

import pytest
import fakeredis.aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from wa_checkpoints.db import models  # noqa: F401
from wa_checkpoints.db.base import Base
from wa_checkpoints.db.models import InstanceStatus
from wa_checkpoints.db.session import get_db
from wa_checkpoints.main import app
from wa_checkpoints.services import evolution_api, instance_pool, locks, n8n
from wa_checkpoints.services.delivery import DeliveryResult
from wa_checkpoints.services.stats import stats


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    r = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(locks, "r", r)
    return r


@pytest.fixture(autouse=True)
def reset_stats():
    stats.reset()
    yield
    stats.reset()


class Recorder:
    """Stands in for an outbound call; records arguments and returns a preset result."""

    def __init__(self, success: bool = True):
        self.calls = []
        self.success = success

    async def __call__(self, *args, **kwargs):
        self.calls.append(args)
        if self.success:
            return DeliveryResult(success=True, status_code=200)
        return DeliveryResult(success=False, error="HTTP 502: Bad Gateway")


@pytest.fixture
def n8n_events(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(n8n, "send_event", recorder)
    return recorder


@pytest.fixture
def sent_messages(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(evolution_api, "send_text_message", recorder)
    return recorder


@pytest.fixture
def seed_pool(session_factory):
    """Register instances (name, max, status) in the default flow's pool."""

    async def seed(*instances, flow: str = "fluxo_principal"):
        async with session_factory() as session:
            names = []
            for name, max_conversations, status in instances:
                await instance_pool.register_instance(
                    session, name, f"{name}-key", max_conversations, status
                )
                names.append(name)
            await instance_pool.set_flow_pool(session, flow, names)
            await session.commit()

    return seed


@pytest.fixture
async def one_instance(seed_pool):
    await seed_pool(("inst-A", 5, InstanceStatus.online))


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
