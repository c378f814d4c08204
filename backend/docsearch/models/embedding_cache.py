"""Content-addressed embedding cache models.

Classes:
    EmbeddingCache: One cached vector per embedding identity key.
    EmbeddingCacheMeta: Single-row table recording the on-disk key format version.

These tables live in the local cache database, not in the relational store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, LargeBinary
from sqlmodel import Field, SQLModel

from docsearch.utils.clock import utcnow


class EmbeddingCache(SQLModel, table=True):
    __tablename__ = "embedding_cache"

    key: str = Field(primary_key=True)
    model_id: str = Field(index=True)
    device: str
    pooling: str = Field(default="mean")
    normalize: bool = Field(default=True)
    content_hash: str
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    vector_dtype: str = Field(default="float32")
    dim: int
    owning_entity_id: Optional[str] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class EmbeddingCacheMeta(SQLModel, table=True):
    __tablename__ = "embedding_cache_meta"

    id: int = Field(default=1, primary_key=True)
    schema_version: int


CACHE_TABLE_NAMES = frozenset({EmbeddingCache.__tablename__, EmbeddingCacheMeta.__tablename__})
