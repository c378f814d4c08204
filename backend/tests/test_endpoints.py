"""HTTP surface tests for embeddings, document vectors and search."""

from __future__ import annotations

from uuid import uuid4

import numpy as np
import pytest

from docsearch.models import Document


async def seed_document(session, title: str = "Intro to Vectors", body: str = "vectors represent meaning as points in space") -> Document:
    document = Document(title=title, slug=title.lower().replace(" ", "-"), raw_markdown=body, author_id="author-1")
    session.add(document)
    await session.commit()
    return document


def basis_vector(index: int = 0) -> list[float]:
    vector = np.zeros(384, dtype=np.float32)
    vector[index] = 1.0
    return vector.tolist()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_single_and_batch_embeddings(client):
    single = await client.post("/embeddings", json={"text": "hello vectors"})
    batch = await client.post("/embeddings", json={"texts": ["hello vectors", "goodbye"]})

    assert single.status_code == 200
    body = single.json()
    assert body["dimensions"] == 384
    assert len(body["embedding"]) == 384
    assert body["time_ms"] >= 0

    assert batch.status_code == 200
    batch_body = batch.json()
    assert batch_body["count"] == 2
    assert batch_body["embeddings"][0] == body["embedding"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"text": "   "},
        {"texts": []},
        {"texts": [f"text {index}" for index in range(101)]},
    ],
)
async def test_invalid_embedding_requests(client, payload):
    response = await client.post("/embeddings", json=payload)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unsupported_pooling_is_a_bad_request(client):
    response = await client.post("/embeddings", json={"text": "hello", "pooling": "max"})

    assert response.status_code == 400
    assert "Unsupported pooling" in response.json()["detail"]


@pytest.mark.asyncio
async def test_status_init_and_cache_clear(client):
    idle = await client.get("/embeddings")
    assert idle.status_code == 200
    assert idle.json()["ready"] is False

    ready = await client.post("/embeddings/init", json={"model_id": "m1", "device": "cpu"})
    assert ready.status_code == 200
    assert ready.json()["ready"] is True
    assert ready.json()["config"] == {"modelId": "m1", "device": "cpu"}

    await client.post("/embeddings", json={"text": "cache me", "model_id": "m1", "device": "cpu"})
    assert (await client.get("/embeddings")).json()["cached_entries"] == 1

    cleared = await client.delete("/embeddings/cache")
    assert cleared.json() == {"cleared": True}
    status_after = (await client.get("/embeddings")).json()
    assert status_after["cached_entries"] == 0
    assert status_after["ready"] is False


@pytest.mark.asyncio
async def test_put_embeddings_for_missing_document(client):
    response = await client.put(
        f"/documents/{uuid4()}/embeddings",
        json={"model_id": "m1", "device": "cpu", "items": [{"chunk_index": 0, "chunk_text": "x", "vector": basis_vector()}]},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_put_embeddings_validates_dimensions_and_size(client, session):
    document = await seed_document(session)

    wrong_size = await client.put(
        f"/documents/{document.id}/embeddings",
        json={"model_id": "m1", "device": "cpu", "items": [{"chunk_index": 0, "chunk_text": "x", "vector": [1.0, 0.0]}]},
    )
    too_many = await client.put(
        f"/documents/{document.id}/embeddings",
        json={
            "model_id": "m1",
            "device": "cpu",
            "items": [{"chunk_index": index, "chunk_text": "x", "vector": basis_vector()} for index in range(33)],
        },
    )

    assert wrong_size.status_code == 400
    assert "Expected 384" in wrong_size.json()["detail"]
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_stored_vectors_are_searchable_by_vector(client, session):
    document = await seed_document(session)
    stored = await client.put(
        f"/documents/{document.id}/embeddings",
        json={
            "model_id": "m1",
            "device": "cpu",
            "items": [
                {"chunk_index": 0, "chunk_text": "first", "vector": basis_vector(0)},
                {"chunk_index": 1, "chunk_text": "second", "vector": basis_vector(1)},
            ],
        },
    )
    assert stored.status_code == 200
    assert stored.json()["chunk_indices"] == [0, 1]

    response = await client.post("/search", json={"query_vector": basis_vector(1), "limit": 5, "model_id": "m1"})

    assert response.status_code == 200
    results = response.json()["results"]
    assert len(results) == 1
    assert results[0]["document_id"] == str(document.id)
    assert results[0]["similarity"] == pytest.approx(1.0, abs=1e-6)
    assert results[0]["excerpt"] == "vectors represent meaning as points in space"


@pytest.mark.asyncio
async def test_index_then_search_by_query(client, session):
    document = await seed_document(session)
    await seed_document(session, title="Gardening tips", body="tomatoes need sunlight and water")

    indexed = await client.post(f"/documents/{document.id}/index")
    assert indexed.status_code == 200
    assert indexed.json()["chunks"] == 1

    response = await client.post("/search", json={"query": "what is a vector", "limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["results"][0]["title"] == "Intro to Vectors"
    assert 0 < body["results"][0]["similarity"] <= 1


@pytest.mark.asyncio
async def test_index_missing_document(client):
    response = await client.post(f"/documents/{uuid4()}/index")

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"limit": 5},
        {"query": "vectors", "limit": 0},
        {"query": "vectors", "limit": 51},
    ],
)
async def test_search_request_validation(client, payload):
    response = await client.post("/search", json=payload)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_search_vector_dimension_mismatch(client):
    response = await client.post("/search", json={"query_vector": [1.0, 0.0, 0.0]})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_search_suggestions(client, session):
    await seed_document(session, title="Vector basics")
    await seed_document(session, title="Graphs")

    response = await client.get("/search/suggestions", params={"q": "vec"})
    too_short = await client.get("/search/suggestions", params={"q": "v"})

    assert response.status_code == 200
    assert [item["title"] for item in response.json()] == ["Vector basics"]
    assert too_short.json() == []


def test_run_serves_app_with_uvicorn(monkeypatch):
    from docsearch import main

    calls = []
    monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

    main.run()

    assert calls == [
        (
            "docsearch.main:app",
            {"host": main.settings.host, "port": main.settings.port, "log_level": main.settings.log_level.lower()},
        )
    ]
