"""Chunk vector storage and filtered semantic search.

Classes:
    SearchFilters: Conjunctive filters applied to a search.
    SearchResult: One ranked document, carrying its best chunk similarity.
    ChunkVector: A chunk embedding ready to be stored.
    VectorStore: Upserts chunk vectors and ranks documents against a query vector.

Functions:
    get_search_suggestions(session, query, limit): Title suggestions for a partial query.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import case, select

from docsearch.core.errors import DimensionMismatchError
from docsearch.models import Document, DocumentEmbedding, DocumentTag, Tag
from docsearch.utils.clock import to_naive_utc, utcnow
from docsearch.utils.hashing import fnv1a_32
from docsearch.utils.text import extract_excerpt
from docsearch.utils.vectors import cosine_similarities, vector_from_bytes, vector_to_bytes

_LOGGER = logging.getLogger(__name__)

_SUGGESTION_MIN_LENGTH = 2


def _as_datetime(value: date | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return datetime.combine(value, time.min)


@dataclass(slots=True)
class SearchFilters:
    tag_slugs: list[str] = field(default_factory=list)
    author_id: Optional[str] = None
    date_from: date | datetime | None = None
    date_to: date | datetime | None = None
    min_similarity: Optional[float] = None
    model_id: Optional[str] = None
    device: Optional[str] = None


@dataclass(slots=True)
class SearchResult:
    document_id: UUID
    title: str
    slug: str
    excerpt: str
    similarity: float
    created_at: datetime
    author_id: Optional[str] = None


@dataclass(slots=True)
class ChunkVector:
    chunk_index: int
    chunk_text: str
    vector: Sequence[float]
    model_id: str
    device: str
    pooling: str = "mean"
    normalize: bool = True


class VectorStore:
    """
    Relational store of per-chunk document vectors.

    Similarity is computed per chunk; ranking over-fetches `2 * limit` chunk
    matches, keeps the best chunk per document and truncates the per-document
    maxima to `limit`.
    """

    def __init__(self, dimensions: int, *, excerpt_length: int = 180) -> None:
        self.dimensions = dimensions
        self.excerpt_length = excerpt_length

    def validate_dimensions(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.size != self.dimensions:
            raise DimensionMismatchError(self.dimensions, int(arr.size))
        return arr

    async def upsert_chunks(
        self,
        session,
        document_id: UUID,
        chunks: Sequence[ChunkVector],
    ) -> list[DocumentEmbedding]:
        arrays = [self.validate_dimensions(chunk.vector) for chunk in chunks]
        if not chunks:
            return []

        result = await session.exec(
            select(DocumentEmbedding).where(
                DocumentEmbedding.document_id == document_id,
                DocumentEmbedding.chunk_index.in_([chunk.chunk_index for chunk in chunks]),
            )
        )
        existing = {
            (record.chunk_index, record.model_id, record.device): record for record in result.scalars()
        }

        now = utcnow()
        stored: list[DocumentEmbedding] = []
        for chunk, arr in zip(chunks, arrays):
            record = existing.get((chunk.chunk_index, chunk.model_id, chunk.device))
            if record is None:
                record = DocumentEmbedding(
                    document_id=document_id,
                    chunk_index=chunk.chunk_index,
                    model_id=chunk.model_id,
                    device=chunk.device,
                    created_at=now,
                )
            record.chunk_text = chunk.chunk_text
            record.pooling = chunk.pooling
            record.normalize = chunk.normalize
            record.content_hash = fnv1a_32(chunk.chunk_text)
            record.vector = vector_to_bytes(arr)
            record.dim = int(arr.size)
            record.updated_at = now
            session.add(record)
            stored.append(record)

        await session.commit()
        _LOGGER.debug("Stored %d chunk vector(s) for document %s", len(stored), document_id)
        return stored

    async def search(
        self,
        session,
        query_vector: Sequence[float],
        limit: int = 10,
        filters: Optional[SearchFilters] = None,
    ) -> list[SearchResult]:
        query = self.validate_dimensions(query_vector)
        if limit <= 0:
            raise ValueError("limit must be positive")
        filters = filters or SearchFilters()

        stmt = (
            select(DocumentEmbedding.document_id, DocumentEmbedding.vector)
            .join(Document, Document.id == DocumentEmbedding.document_id)
            .where(DocumentEmbedding.dim == self.dimensions)
        )
        if filters.model_id:
            stmt = stmt.where(DocumentEmbedding.model_id == filters.model_id)
        if filters.device:
            stmt = stmt.where(DocumentEmbedding.device == filters.device)
        if filters.author_id:
            stmt = stmt.where(Document.author_id == filters.author_id)
        date_from = _as_datetime(filters.date_from)
        if date_from is not None:
            stmt = stmt.where(Document.created_at >= date_from)
        date_to = _as_datetime(filters.date_to)
        if date_to is not None:
            stmt = stmt.where(Document.created_at <= date_to)
        if filters.tag_slugs:
            tagged = (
                select(DocumentTag.document_id)
                .join(Tag, Tag.id == DocumentTag.tag_id)
                .where(Tag.slug.in_(filters.tag_slugs))
            )
            stmt = stmt.where(DocumentEmbedding.document_id.in_(tagged))

        rows = (await session.exec(stmt)).all()
        if not rows:
            return []

        matrix = np.vstack([vector_from_bytes(row.vector, self.dimensions) for row in rows])
        similarities = cosine_similarities(query, matrix)

        candidates = np.arange(len(rows))
        if filters.min_similarity is not None:
            candidates = candidates[similarities >= filters.min_similarity]
        order = candidates[np.argsort(-similarities[candidates], kind="stable")][: limit * 2]

        best: dict[UUID, float] = {}
        for index in order:
            document_id = rows[index].document_id
            similarity = float(similarities[index])
            if document_id not in best or similarity > best[document_id]:
                best[document_id] = similarity

        ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)[:limit]
        if not ranked:
            return []

        doc_result = await session.exec(select(Document).where(Document.id.in_([doc_id for doc_id, _ in ranked])))
        documents = {document.id: document for document in doc_result.scalars()}

        results: list[SearchResult] = []
        for document_id, similarity in ranked:
            document = documents.get(document_id)
            if document is None:
                continue
            results.append(
                SearchResult(
                    document_id=document.id,
                    title=document.title,
                    slug=document.slug,
                    excerpt=extract_excerpt(document.raw_markdown, self.excerpt_length),
                    similarity=similarity,
                    created_at=document.created_at,
                    author_id=document.author_id,
                )
            )
        return results


async def get_search_suggestions(session, query: str, limit: int = 5) -> list[Document]:
    """Documents whose title contains *query*; prefix matches first, then most recently updated."""

    term = (query or "").strip()
    if len(term) < _SUGGESTION_MIN_LENGTH:
        return []
    prefix_first = case((Document.title.istartswith(term, autoescape=True), 0), else_=1)
    result = await session.exec(
        select(Document)
        .where(Document.title.icontains(term, autoescape=True))
        .order_by(prefix_first, Document.updated_at.desc())
        .limit(limit)
    )
    return list(result.scalars())
