"""Pydantic schemas for the embeddings API.

Classes:
    EmbeddingConfigRequest: Optional model configuration overrides.
    EmbeddingRequest: Single-text or batch embedding request.
    EmbeddingResponse, BatchEmbeddingResponse: Vectors plus timing metadata.
    ModelStatusResponse, CacheClearedResponse: Execution-unit status and cache maintenance payloads.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class EmbeddingConfigRequest(BaseModel):
    model_id: Optional[str] = Field(default=None, min_length=1)
    device: Optional[str] = Field(default=None, min_length=1)
    pooling: Optional[str] = None
    normalize: Optional[bool] = None


class EmbeddingRequest(EmbeddingConfigRequest):
    text: Optional[str] = None
    texts: Optional[list[str]] = None


class EmbeddingResponse(BaseModel):
    embedding: list[float]
    dimensions: int
    time_ms: float
    model_id: str
    device: str


class BatchEmbeddingResponse(BaseModel):
    embeddings: list[list[float]]
    count: int
    dimensions: int
    time_ms: float
    model_id: str
    device: str


class ModelStatusResponse(BaseModel):
    ready: bool
    phase: str
    config: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    cached_entries: Optional[int] = None


class CacheClearedResponse(BaseModel):
    cleared: bool
