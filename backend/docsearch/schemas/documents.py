"""Pydantic schemas for document embedding storage and indexing."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ChunkEmbeddingItem(BaseModel):
    chunk_index: int = Field(ge=0)
    chunk_text: str
    vector: list[float]


class DocumentEmbeddingsRequest(BaseModel):
    items: list[ChunkEmbeddingItem] = Field(min_length=1, max_length=32)
    model_id: str = Field(min_length=1)
    device: str = Field(min_length=1)
    pooling: str = "mean"
    normalize: bool = True

    @field_validator("items")
    @classmethod
    def unique_chunk_indices(cls, value: list[ChunkEmbeddingItem]) -> list[ChunkEmbeddingItem]:
        indices = [item.chunk_index for item in value]
        if len(set(indices)) != len(indices):
            raise ValueError("chunk_index values must be unique")
        return value


class DocumentEmbeddingsResponse(BaseModel):
    document_id: UUID
    stored: int
    chunk_indices: list[int]
    model_id: str
    device: str


class IndexDocumentRequest(BaseModel):
    model_id: Optional[str] = Field(default=None, min_length=1)
    device: Optional[str] = Field(default=None, min_length=1)


class IndexDocumentResponse(BaseModel):
    document_id: UUID
    chunks: int
    model_id: str
    device: str
