"""Fixtures de test / Test fixtures."""

import random
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import room_registry.models  # noqa: F401
from room_registry.api.deps import get_engine
from room_registry.database import Base, build_engine, get_db
from room_registry.main import app
from room_registry.rate_limit import limiter
from room_registry.services.registry_engine import RegistryEngine


class FakeClock:
    """Horloge pilotable / Controllable clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedRandom(random.Random):
    """randint rejoue une liste de codes / randint replays a list of codes."""

    def __init__(self, codes):
        super().__init__(1234)
        self._codes = iter(codes)

    def randint(self, a, b):
        return next(self._codes)


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 11, 25, 8, 0, 0))


@pytest.fixture
def registry(session_factory, clock):
    return RegistryEngine(session_factory, clock=clock)


@pytest.fixture
async def client(registry, session_factory):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_engine] = lambda: registry
    app.dependency_overrides[get_db] = _get_db
    limiter.enabled = False
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    limiter.enabled = True
