"""Convenience exports for ORM models.

Surface frequently used SQLModel classes so calling code can import them from a single module.
"""

from .document import Document
from .tag import DocumentTag, Tag
from .document_embedding import DocumentEmbedding
from .embedding_cache import CACHE_TABLE_NAMES, EmbeddingCache, EmbeddingCacheMeta

__all__ = [
    "Document",
    "Tag",
    "DocumentTag",
    "DocumentEmbedding",
    "EmbeddingCache",
    "EmbeddingCacheMeta",
    "CACHE_TABLE_NAMES",
]
