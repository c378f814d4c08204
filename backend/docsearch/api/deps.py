"""Request-scoped accessors for application services.

The embedding client and vector store are created once in the application
lifespan and kept on `app.state`; tests swap them by assigning new instances.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from docsearch.core.errors import ChannelTimeoutError, EmbeddingError, RemoteExecutionError
from docsearch.services import DocumentIndexer, EmbeddingClient, VectorStore


def get_embedding_client(request: Request) -> EmbeddingClient:
    return request.app.state.embedding_client


def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store


def get_indexer(request: Request) -> DocumentIndexer:
    return DocumentIndexer(get_embedding_client(request), get_vector_store(request))


def embedding_http_error(exc: Exception) -> HTTPException:
    """Translate an embedding pipeline failure into the matching HTTP error."""

    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ChannelTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))
    if isinstance(exc, RemoteExecutionError) and exc.name == "ValueError":
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, EmbeddingError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Embedding generation failed")
