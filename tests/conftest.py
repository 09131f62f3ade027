"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- PostgreSQL → SQLite (aiosqlite in memory for the API, a file per test for
  worker code, because the execution engine opens sessions from several threads)
- Redis → fakeredis (async client for the API, sync client for workers)
- HTTP server → httpx.AsyncClient with ASGI transport (no network)
- Providers → ScriptedProvider below, which answers from a script
"""

import threading
import uuid
from typing import Optional

import fakeredis
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import sessionmaker
from fakeredis.aioredis import FakeRedis

from models.base import Base
from models.query import Query
from api.main import create_app
from api.dependencies import get_db, get_redis
from providers.base import AsyncProvider, CollectRequest, ProviderAnswer, ProviderSpec
from providers.errors import HardProviderError, TransientProviderError

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ── API fixtures ────────────────────────────────────────────────


@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine):
    factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    r = FakeRedis()
    yield r
    await r.flushall()


@pytest_asyncio.fixture
async def client(async_session, fake_redis):
    """
    Test HTTP client that talks directly to the FastAPI app.

    dependency_overrides swaps the real get_db / get_redis for the test
    versions; ASGITransport sends requests to the app in-process.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ── Worker fixtures ─────────────────────────────────────────────


@pytest.fixture
def session_factory(tmp_path):
    """Sync sessionmaker on a file-backed SQLite database, safe to share across threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'worker.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def sync_redis():
    return fakeredis.FakeRedis()


def add_queries(session_factory, count: int, brand_id: str = "brand-1",
                customer_id: str = "cust-1", active: bool = True) -> list[uuid.UUID]:
    session = session_factory()
    try:
        ids = []
        for i in range(count):
            query = Query(
                id=uuid.uuid4(),
                brand_id=brand_id,
                customer_id=customer_id,
                text=f"best running shoes {i}",
                is_active=active,
            )
            session.add(query)
            ids.append(query.id)
        session.commit()
        return ids
    finally:
        session.close()


class ScriptedProvider(AsyncProvider):
    """
    A provider whose behaviour is decided per query text.

    script maps query text → "ok" | "transient" | "hard" | "async" | "empty".
    Anything not in the script uses `default`. Every call is recorded.
    """

    def __init__(self, name: str, default: str = "ok", script: Optional[dict] = None,
                 poll_outcome: str = "answer"):
        self._name = name
        self.default = default
        self.script = script or {}
        self.poll_outcome = poll_outcome
        self.calls: list[str] = []
        self.polls: list[str] = []
        self._lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        return self._name

    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        with self._lock:
            self.calls.append(request.query_text)
        outcome = self.script.get(request.query_text, self.default)
        if outcome == "transient":
            raise TransientProviderError(f"{self._name}: timed out", self._name)
        if outcome == "hard":
            raise HardProviderError(f"{self._name}: authentication rejected (401)", self._name, 401)
        if outcome == "async":
            return ProviderAnswer(handle=f"{self._name}-{uuid.uuid4().hex[:8]}")
        if outcome == "empty":
            return ProviderAnswer(answer="   ")
        return ProviderAnswer(answer=f"{self._name} says: {request.query_text}", citations=["https://example.com/a"])

    def poll(self, handle: str, spec: ProviderSpec) -> Optional[ProviderAnswer]:
        self.polls.append(handle)
        if self.poll_outcome == "pending":
            return None
        if self.poll_outcome == "hard":
            raise HardProviderError(f"{self._name}: snapshot {handle} failed", self._name)
        if self.poll_outcome == "transient":
            raise TransientProviderError(f"{self._name}: poll timed out", self._name)
        return ProviderAnswer(answer=f"late answer for {handle}", handle=handle)


def provider_lookup(*providers):
    """Build a provider_lookup callable over ScriptedProviders, like providers.registry.get_provider."""
    by_name = {p.provider_name: p for p in providers}

    def lookup(name: str):
        if name not in by_name:
            raise ValueError(f"Unknown provider: '{name}'")
        return by_name[name]

    return lookup
