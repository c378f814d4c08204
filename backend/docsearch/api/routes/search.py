"""Semantic search endpoints.

Endpoints:
    search_documents(payload): Rank documents against a query string or a raw query vector.
    search_suggestions(q, limit): Title suggestions while the user is typing.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from docsearch.api.deps import embedding_http_error, get_embedding_client, get_vector_store
from docsearch.core.config import get_settings
from docsearch.core.errors import EmbeddingError
from docsearch.db.session import get_session
from docsearch.schemas import SearchRequest, SearchResponse, SearchResultItem, SuggestionItem
from docsearch.services import (
    EmbeddingClient,
    EmbeddingModelConfig,
    SearchFilters,
    VectorStore,
    get_search_suggestions,
)

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
async def search_documents(
    payload: SearchRequest,
    session: AsyncSession = Depends(get_session),
    client: EmbeddingClient = Depends(get_embedding_client),
    store: VectorStore = Depends(get_vector_store),
) -> SearchResponse:
    started = time.perf_counter()
    model_filter = payload.model_id
    try:
        if payload.query_vector is not None:
            query_vector = payload.query_vector
        else:
            config = EmbeddingModelConfig.from_settings(get_settings(), model_id=payload.model_id, device=payload.device)
            query_vector = await client.embed_query(payload.query, config)
            model_filter = config.model_id
        results = await store.search(
            session,
            query_vector,
            payload.limit,
            SearchFilters(
                tag_slugs=payload.tag_slugs,
                author_id=payload.author_id,
                date_from=payload.date_from,
                date_to=payload.date_to,
                min_similarity=payload.min_similarity,
                model_id=model_filter,
                device=payload.device,
            ),
        )
    except (EmbeddingError, ValueError) as exc:
        raise embedding_http_error(exc) from exc

    items = [
        SearchResultItem(
            document_id=result.document_id,
            title=result.title,
            slug=result.slug,
            excerpt=result.excerpt,
            similarity=result.similarity,
            created_at=result.created_at,
            author_id=result.author_id,
        )
        for result in results
    ]
    return SearchResponse(
        results=items,
        count=len(items),
        took_ms=round((time.perf_counter() - started) * 1000.0, 2),
    )


@router.get("/suggestions", response_model=list[SuggestionItem])
async def search_suggestions(
    q: str = Query(default="", max_length=200),
    limit: int = Query(default=5, ge=1, le=20),
    session: AsyncSession = Depends(get_session),
) -> list[SuggestionItem]:
    documents = await get_search_suggestions(session, q, limit=limit)
    return [SuggestionItem(document_id=doc.id, title=doc.title, slug=doc.slug) for doc in documents]
