"""Embedding generation endpoints; the server side of the HTTP execution channel.

Endpoints:
    get_status(): Execution-unit status plus the number of cached vectors.
    create_embeddings(payload): Embed one text (`text`) or a batch (`texts`).
    init_model(payload): Load the requested model ahead of first use.
    clear_cache(): Drop the loaded model and wipe the content-addressed cache.
"""

from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from docsearch.api.deps import embedding_http_error, get_embedding_client
from docsearch.core.config import get_settings
from docsearch.core.errors import EmbeddingError
from docsearch.schemas import (
    BatchEmbeddingResponse,
    CacheClearedResponse,
    EmbeddingConfigRequest,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelStatusResponse,
)
from docsearch.services import EmbeddingClient, EmbeddingModelConfig

router = APIRouter(prefix="/embeddings", tags=["embeddings"])

_SETTINGS = get_settings()


def _config_from(payload: EmbeddingConfigRequest) -> EmbeddingModelConfig:
    return EmbeddingModelConfig.from_settings(
        _SETTINGS,
        model_id=payload.model_id,
        device=payload.device,
        pooling=payload.pooling,
        normalize=payload.normalize,
    )


@router.get("", response_model=ModelStatusResponse)
async def get_status(client: EmbeddingClient = Depends(get_embedding_client)) -> ModelStatusResponse:
    try:
        state = await client.status()
    except (EmbeddingError, ValueError) as exc:
        raise embedding_http_error(exc) from exc
    cached_entries = await client.store.count() if client.store is not None else None
    return ModelStatusResponse(
        ready=bool(state.get("ready")),
        phase=str(state.get("phase") or "idle"),
        config=state.get("config"),
        error=state.get("error"),
        cached_entries=cached_entries,
    )


@router.post("", response_model=EmbeddingResponse | BatchEmbeddingResponse)
async def create_embeddings(
    payload: EmbeddingRequest,
    client: EmbeddingClient = Depends(get_embedding_client),
) -> EmbeddingResponse | BatchEmbeddingResponse:
    if payload.texts is not None:
        if not payload.texts:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="texts must be a non-empty array")
        if len(payload.texts) > _SETTINGS.embedding_batch_max:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Maximum {_SETTINGS.embedding_batch_max} texts per batch",
            )
    elif payload.text is None or not payload.text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="text must be a non-empty string")

    config = _config_from(payload)
    started = time.perf_counter()
    try:
        if payload.texts is not None:
            vectors = await client.embed_batch(payload.texts, config)
        else:
            vectors = [await client.embed(None, payload.text, config)]
    except (EmbeddingError, ValueError) as exc:
        raise embedding_http_error(exc) from exc
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)

    dimensions = len(vectors[0]) if vectors else 0
    if payload.texts is None:
        return EmbeddingResponse(
            embedding=vectors[0],
            dimensions=dimensions,
            time_ms=elapsed_ms,
            model_id=config.model_id,
            device=config.device,
        )
    return BatchEmbeddingResponse(
        embeddings=vectors,
        count=len(vectors),
        dimensions=dimensions,
        time_ms=elapsed_ms,
        model_id=config.model_id,
        device=config.device,
    )


@router.post("/init", response_model=ModelStatusResponse)
async def init_model(
    payload: Optional[EmbeddingConfigRequest] = Body(default=None),
    client: EmbeddingClient = Depends(get_embedding_client),
) -> ModelStatusResponse:
    config = _config_from(payload or EmbeddingConfigRequest())
    try:
        await client.ensure_model_ready(config)
        state = await client.status()
    except (EmbeddingError, ValueError) as exc:
        raise embedding_http_error(exc) from exc
    return ModelStatusResponse(
        ready=bool(state.get("ready")),
        phase=str(state.get("phase") or "idle"),
        config=state.get("config"),
        error=state.get("error"),
    )


@router.delete("/cache", response_model=CacheClearedResponse)
async def clear_cache(client: EmbeddingClient = Depends(get_embedding_client)) -> CacheClearedResponse:
    try:
        await client.clear_all_caches()
    except (EmbeddingError, ValueError) as exc:
        raise embedding_http_error(exc) from exc
    return CacheClearedResponse(cleared=True)
