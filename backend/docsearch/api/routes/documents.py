"""Document vector endpoints.

Endpoints:
    put_document_embeddings(document_id, payload): Upsert caller-supplied chunk vectors.
    index_document(document_id, payload): Normalise, chunk, embed and store a document server-side.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from docsearch.api.deps import embedding_http_error, get_indexer, get_vector_store
from docsearch.core.config import get_settings
from docsearch.core.errors import EmbeddingError
from docsearch.db.session import get_session
from docsearch.models import Document
from docsearch.schemas import (
    DocumentEmbeddingsRequest,
    DocumentEmbeddingsResponse,
    IndexDocumentRequest,
    IndexDocumentResponse,
)
from docsearch.services import DocumentIndexer, EmbeddingModelConfig, VectorStore
from docsearch.services.search import ChunkVector

router = APIRouter(prefix="/documents", tags=["documents"])


async def _get_document(session: AsyncSession, document_id: UUID) -> Document:
    document = await session.get(Document, document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.put("/{document_id}/embeddings", response_model=DocumentEmbeddingsResponse)
async def put_document_embeddings(
    document_id: UUID,
    payload: DocumentEmbeddingsRequest,
    session: AsyncSession = Depends(get_session),
    store: VectorStore = Depends(get_vector_store),
) -> DocumentEmbeddingsResponse:
    await _get_document(session, document_id)
    chunks = [
        ChunkVector(
            chunk_index=item.chunk_index,
            chunk_text=item.chunk_text,
            vector=item.vector,
            model_id=payload.model_id,
            device=payload.device,
            pooling=payload.pooling,
            normalize=payload.normalize,
        )
        for item in payload.items
    ]
    try:
        stored = await store.upsert_chunks(session, document_id, chunks)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return DocumentEmbeddingsResponse(
        document_id=document_id,
        stored=len(stored),
        chunk_indices=[record.chunk_index for record in stored],
        model_id=payload.model_id,
        device=payload.device,
    )


@router.post("/{document_id}/index", response_model=IndexDocumentResponse)
async def index_document(
    document_id: UUID,
    payload: Optional[IndexDocumentRequest] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    indexer: DocumentIndexer = Depends(get_indexer),
) -> IndexDocumentResponse:
    document = await _get_document(session, document_id)
    overrides = payload or IndexDocumentRequest()
    config = EmbeddingModelConfig.from_settings(get_settings(), model_id=overrides.model_id, device=overrides.device)
    try:
        stored = await indexer.index_document(session, document, config)
    except (EmbeddingError, ValueError) as exc:
        raise embedding_http_error(exc) from exc
    return IndexDocumentResponse(
        document_id=document_id,
        chunks=len(stored),
        model_id=config.model_id,
        device=config.device,
    )
