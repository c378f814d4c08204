import asyncio

import pytest

from docsearch.db.session import create_engine_for_url
from docsearch.services import EmbeddingModelConfig, EmbeddingStore, compute_identity
from docsearch.utils.hashing import fnv1a_32


def test_fnv1a_matches_reference_values():
    assert fnv1a_32("") == "811c9dc5"
    assert fnv1a_32("a") == "e40c292c"


def test_identity_is_deterministic():
    first = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "hello world")
    second = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "hello world")

    assert first == second
    assert first.key == f"m1|cpu|mean|norm|{fnv1a_32('hello world')}"


def test_identity_changes_with_text_and_configuration():
    base = EmbeddingModelConfig(model_id="m1", device="cpu")
    variants = [
        compute_identity(base, "hello world"),
        compute_identity(base, "hello world!"),
        compute_identity(base, "Hello world"),
        compute_identity(EmbeddingModelConfig(model_id="m2", device="cpu"), "hello world"),
        compute_identity(EmbeddingModelConfig(model_id="m1", device="cuda"), "hello world"),
        compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu", pooling="cls"), "hello world"),
        compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu", normalize=False), "hello world"),
    ]

    assert len({identity.key for identity in variants}) == len(variants)


def test_distinct_texts_get_distinct_keys():
    config = EmbeddingModelConfig(model_id="m1", device="cpu")
    texts = [f"passage: document number {index}" for index in range(500)]

    assert len({compute_identity(config, text).key for text in texts}) == len(texts)


@pytest.mark.asyncio
async def test_put_then_get_returns_same_vector(cache_store):
    identity = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "hello")

    assert await cache_store.get(identity) is None
    assert await cache_store.put(identity, [0.5, -0.25, 1.0], owning_entity_id="doc-1") is True
    assert await cache_store.get(identity) == [0.5, -0.25, 1.0]


@pytest.mark.asyncio
async def test_cache_survives_reopen(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"
    identity = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "persisted text")

    first = EmbeddingStore(url, schema_version=1)
    await first.put(identity, [0.25, 0.75])
    await first.close()

    second = EmbeddingStore(url, schema_version=1)
    try:
        assert await second.get(identity) == [0.25, 0.75]
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_schema_version_bump_wipes_entries(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"
    identity = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "old format")

    old = EmbeddingStore(url, schema_version=1)
    await old.put(identity, [1.0, 2.0])
    await old.close()

    bumped = EmbeddingStore(url, schema_version=2)
    try:
        assert await bumped.get(identity) is None
        assert await bumped.count() == 0
    finally:
        await bumped.close()


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"
    identity = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "damaged")
    store = EmbeddingStore(url, schema_version=1)
    await store.put(identity, [1.0, 2.0, 3.0])

    raw_engine = create_engine_for_url(url)
    async with raw_engine.begin() as conn:
        await conn.exec_driver_sql("UPDATE embedding_cache SET dim = 7")
    await raw_engine.dispose()

    try:
        assert await store.get(identity) is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_concurrent_reads_share_entry(cache_store):
    identity = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "popular")
    await cache_store.put(identity, [0.5, 0.5])

    results = await asyncio.gather(*(cache_store.get(identity) for _ in range(10)))

    assert all(result == [0.5, 0.5] for result in results)


@pytest.mark.asyncio
async def test_clear_removes_everything(cache_store):
    config = EmbeddingModelConfig(model_id="m1", device="cpu")
    await cache_store.put(compute_identity(config, "one"), [1.0])
    await cache_store.put(compute_identity(config, "two"), [2.0])
    assert await cache_store.count() == 2

    await cache_store.clear()

    assert await cache_store.count() == 0


@pytest.mark.asyncio
async def test_put_writes_a_timestamped_row(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"
    identity = compute_identity(EmbeddingModelConfig(model_id="m1", device="cpu"), "stamped")
    store = EmbeddingStore(url, schema_version=1)
    try:
        assert await store.put(identity, [0.1, 0.2], owning_entity_id="doc-9") is True
        assert await store.count() == 1
    finally:
        await store.close()

    raw_engine = create_engine_for_url(url)
    async with raw_engine.connect() as conn:
        result = await conn.exec_driver_sql("SELECT key, owning_entity_id, updated_at FROM embedding_cache")
        rows = result.fetchall()
    await raw_engine.dispose()

    assert len(rows) == 1
    assert rows[0][0] == identity.key
    assert rows[0][1] == "doc-9"
    assert rows[0][2] is not None
