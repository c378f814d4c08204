"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .documents import (
    ChunkEmbeddingItem,
    DocumentEmbeddingsRequest,
    DocumentEmbeddingsResponse,
    IndexDocumentRequest,
    IndexDocumentResponse,
)
from .embeddings import (
    BatchEmbeddingResponse,
    CacheClearedResponse,
    EmbeddingConfigRequest,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelStatusResponse,
)
from .search import SearchRequest, SearchResponse, SearchResultItem, SuggestionItem

__all__ = [
    "ChunkEmbeddingItem",
    "DocumentEmbeddingsRequest",
    "DocumentEmbeddingsResponse",
    "IndexDocumentRequest",
    "IndexDocumentResponse",
    "BatchEmbeddingResponse",
    "CacheClearedResponse",
    "EmbeddingConfigRequest",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "ModelStatusResponse",
    "SearchRequest",
    "SearchResponse",
    "SearchResultItem",
    "SuggestionItem",
]
