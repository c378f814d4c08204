"""Per-chunk document vectors.

Classes:
    DocumentEmbedding: One stored vector per (document, chunk, model, device).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Column, DateTime, LargeBinary, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from docsearch.utils.clock import utcnow


class DocumentEmbedding(SQLModel, table=True):
    __tablename__ = "document_embeddings"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "chunk_index",
            "model_id",
            "device",
            name="uq_document_embeddings_doc_chunk_model_device",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    document_id: UUID = Field(foreign_key="documents.id", index=True, ondelete="CASCADE")
    chunk_index: int
    chunk_text: str = Field(sa_column=Column(Text, nullable=False))
    model_id: str
    device: str
    pooling: str = Field(default="mean")
    normalize: bool = Field(default=True)
    content_hash: str
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    dim: int
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
