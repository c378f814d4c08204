"""Pydantic schemas for semantic search and title suggestions."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class SearchRequest(BaseModel):
    query: Optional[str] = Field(default=None, min_length=1, max_length=500)
    query_vector: Optional[list[float]] = None
    limit: int = Field(default=10, ge=1, le=50)
    tag_slugs: list[str] = Field(default_factory=list)
    author_id: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    model_id: Optional[str] = None
    device: Optional[str] = None

    @model_validator(mode="after")
    def require_query(self) -> "SearchRequest":
        if self.query_vector is None and not (self.query and self.query.strip()):
            raise ValueError("Provide either query or query_vector")
        return self


class SearchResultItem(BaseModel):
    document_id: UUID
    title: str
    slug: str
    excerpt: str
    similarity: float
    created_at: datetime
    author_id: Optional[str] = None


class SearchResponse(BaseModel):
    results: list[SearchResultItem]
    count: int
    took_ms: float


class SuggestionItem(BaseModel):
    document_id: UUID
    title: str
    slug: str
