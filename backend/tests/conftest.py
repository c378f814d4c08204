import asyncio
import os
from collections.abc import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EMBEDDING_CACHE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EMBEDDING_RUNTIME", "hashing")
os.environ.setdefault("EMBEDDING_TRANSPORT", "inprocess")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from docsearch.core.config import Settings
from docsearch.db.session import create_relational_schema, enable_sqlite_foreign_keys, get_session
from docsearch.main import app
from docsearch.services import EmbeddingClient, EmbeddingStore, VectorStore, build_channel_factory
from docsearch.services.channel import ExecutionChannel
from docsearch.services.runtimes import HashingModel

DIMENSIONS = 384


class CountingRuntime:
    """Hashing runtime that records loads and can replay loader notifications, stall or fail."""

    name = "counting"

    def __init__(self, dim: int = DIMENSIONS) -> None:
        self.dim = dim
        self.loads: list[tuple[str, str]] = []
        self.raw_events: list[dict] = []
        self.delay = 0.0
        self.failures = 0
        self.accelerator: str | None = None

    def probe_accelerator(self) -> str | None:
        return self.accelerator

    async def load(self, model_id: str, device: str, report):
        self.loads.append((model_id, device))
        for raw in self.raw_events:
            report(raw)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            self.failures -= 1
            raise RuntimeError("model artifact unavailable")
        return HashingModel(self.dim)


class RecordingChannel(ExecutionChannel):
    """Wraps a channel and records every request type and payload sent through it."""

    def __init__(self, inner: ExecutionChannel) -> None:
        self.inner = inner
        self.calls: list[tuple[str, dict]] = []

    async def call(self, request_type, payload=None, *, timeout=None, progress=None):
        self.calls.append((request_type, dict(payload or {})))
        return await self.inner.call(request_type, payload, timeout=timeout, progress=progress)

    def is_alive(self) -> bool:
        return self.inner.is_alive()

    def cancel_pending(self) -> None:
        self.inner.cancel_pending()

    async def dispose(self) -> None:
        await self.inner.dispose()

    def types(self) -> list[str]:
        return [request_type for request_type, _ in self.calls]


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        embedding_runtime="hashing",
        embedding_transport="inprocess",
        embedding_dimensions=DIMENSIONS,
        embedding_timeout_seconds=10.0,
    )


@pytest.fixture()
def runtime() -> CountingRuntime:
    return CountingRuntime()


@pytest_asyncio.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    created = create_async_engine("sqlite+aiosqlite:///:memory:", connect_args={"check_same_thread": False})
    enable_sqlite_foreign_keys(created)
    await create_relational_schema(created)
    try:
        yield created
    finally:
        await created.dispose()


@pytest_asyncio.fixture()
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    async_session = AsyncSession(engine, expire_on_commit=False)
    try:
        yield async_session
    finally:
        await async_session.close()


@pytest_asyncio.fixture()
async def cache_store(tmp_path) -> AsyncGenerator[EmbeddingStore, None]:
    store = EmbeddingStore(f"sqlite+aiosqlite:///{tmp_path / 'embedding_cache.db'}", schema_version=1)
    await store.open()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture()
def channels() -> list[RecordingChannel]:
    return []


@pytest_asyncio.fixture()
async def embedding_client(
    settings: Settings,
    runtime: CountingRuntime,
    cache_store: EmbeddingStore,
    channels: list[RecordingChannel],
) -> AsyncGenerator[EmbeddingClient, None]:
    inner_factory = build_channel_factory(settings, runtime=runtime, transport="inprocess")

    def factory() -> ExecutionChannel:
        channel = RecordingChannel(inner_factory())
        channels.append(channel)
        return channel

    client = EmbeddingClient(factory, store=cache_store, settings=settings)
    try:
        yield client
    finally:
        await client.dispose(terminate=True)


@pytest.fixture()
def vector_store() -> VectorStore:
    return VectorStore(DIMENSIONS, excerpt_length=180)


@pytest_asyncio.fixture()
async def client(
    session: AsyncSession,
    embedding_client: EmbeddingClient,
    vector_store: VectorStore,
) -> AsyncGenerator[AsyncClient, None]:
    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    app.state.embedding_client = embedding_client
    app.state.vector_store = vector_store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()
