"""Route exports for the API layer.

Re-exports the embeddings, documents and search routers so callers can include them with a single import.
"""

from .documents import router as documents_router
from .embeddings import router as embeddings_router
from .search import router as search_router

__all__ = ["documents_router", "embeddings_router", "search_router"]
