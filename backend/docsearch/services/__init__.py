"""Service layer exports.

Expose the embedding facade, cache, vector store and indexer for easy importing.
"""

from .embedding_cache import EmbeddingIdentity, EmbeddingStore, compute_identity
from .embeddings import EmbeddingClient, TransportProbe, build_channel_factory
from .indexing import DocumentIndexer
from .model_config import EmbeddingModelConfig
from .search import SearchFilters, SearchResult, VectorStore, get_search_suggestions

__all__ = [
    "EmbeddingIdentity",
    "EmbeddingStore",
    "compute_identity",
    "EmbeddingClient",
    "TransportProbe",
    "build_channel_factory",
    "DocumentIndexer",
    "EmbeddingModelConfig",
    "SearchFilters",
    "SearchResult",
    "VectorStore",
    "get_search_suggestions",
]
