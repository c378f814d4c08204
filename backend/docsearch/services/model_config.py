"""Embedding model configuration shared by the caller and the execution unit."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from docsearch.core.config import Settings, get_settings


@dataclass(slots=True, frozen=True)
class EmbeddingModelConfig:
    model_id: str
    device: str = "auto"
    pooling: str = "mean"
    normalize: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "EmbeddingModelConfig":
        settings = settings or get_settings()
        base = cls(
            model_id=settings.embedding_model_id,
            device=settings.embedding_device,
            pooling=settings.embedding_pooling,
            normalize=settings.embedding_normalize,
        )
        updates = {key: value for key, value in overrides.items() if value is not None}
        return replace(base, **updates) if updates else base

    def to_payload(self) -> dict[str, Any]:
        return {
            "modelId": self.model_id,
            "device": self.device,
            "pooling": self.pooling,
            "normalize": self.normalize,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], default: "EmbeddingModelConfig") -> "EmbeddingModelConfig":
        return cls(
            model_id=payload.get("modelId") or default.model_id,
            device=payload.get("device") or default.device,
            pooling=payload.get("pooling") or default.pooling,
            normalize=bool(payload.get("normalize", default.normalize)),
        )
