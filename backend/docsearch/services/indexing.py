"""Document indexing: normalise, chunk, embed and store a document's vectors.

Classes:
    DocumentIndexer: Runs the document producer flow for one document.
"""

from __future__ import annotations

import logging
from typing import Optional

from docsearch.core.config import Settings, get_settings
from docsearch.models import Document, DocumentEmbedding
from docsearch.services.embeddings import EmbeddingClient
from docsearch.services.model_config import EmbeddingModelConfig
from docsearch.services.progress import ProgressSink
from docsearch.services.search import ChunkVector, VectorStore
from docsearch.utils.text import chunk_document, compose_passage

_LOGGER = logging.getLogger(__name__)


class DocumentIndexer:
    def __init__(
        self,
        client: EmbeddingClient,
        store: VectorStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or get_settings()

    def build_passages(self, title: str, raw_markdown: str) -> list[str]:
        """Passages to embed for a document, one per chunk, each led by the title."""

        settings = self._settings
        chunks = chunk_document(raw_markdown, settings.chunk_max_size, settings.chunk_overlap)
        if len(chunks) <= 1:
            body = chunks[0] if chunks else ""
            return [compose_passage(title, body, settings.passage_max_length)]
        return [compose_passage(title, chunk, settings.passage_max_length) for chunk in chunks]

    async def index_document(
        self,
        session,
        document: Document,
        config: Optional[EmbeddingModelConfig] = None,
        progress: Optional[ProgressSink] = None,
    ) -> list[DocumentEmbedding]:
        config = config or self._client.default_config
        passages = self.build_passages(document.title, document.raw_markdown)
        prefix = self._settings.passage_prefix
        vectors = await self._client.embed_batch(
            [f"{prefix}{passage}" for passage in passages],
            config,
            progress,
            entity_id=str(document.id),
        )
        chunks = [
            ChunkVector(
                chunk_index=index,
                chunk_text=passage,
                vector=vector,
                model_id=config.model_id,
                device=config.device,
                pooling=config.pooling,
                normalize=config.normalize,
            )
            for index, (passage, vector) in enumerate(zip(passages, vectors))
        ]
        stored = await self._store.upsert_chunks(session, document.id, chunks)
        _LOGGER.info("Indexed document %s as %d chunk(s) with %s", document.id, len(stored), config.model_id)
        return stored
