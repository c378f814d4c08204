"""Async OpenAI embeddings wrapper.

Classes:
    EmbeddingBatch: Collected embedding vectors plus metadata returned from the embeddings API.
    OpenAIService: Requests embeddings in bounded batches with retry semantics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from openai import AsyncOpenAI
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from docsearch.core.config import get_settings

_EMBED_BATCH_MAX = 256


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    model_revision: str | None = None
    provider: str = "openai"


class OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        settings = get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def embed_texts(
        self,
        texts: Iterable[str],
        *,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
    ) -> EmbeddingBatch:
        docs = list(texts)
        if self._client is None:
            raise RuntimeError("OpenAI client not configured. Set OPENAI_API_KEY.")

        chosen_model = model or self._settings.openai_embedding_model
        if not docs:
            return EmbeddingBatch(vectors=[], model=chosen_model, dim=0)

        vectors: list[list[float]] = []
        dim = 0
        model_revision: str | None = None

        for start in range(0, len(docs), _EMBED_BATCH_MAX):
            chunk = docs[start : start + _EMBED_BATCH_MAX]
            payload: dict[str, Any] = dict(model=chosen_model, input=chunk)
            if dimensions is not None:
                payload["dimensions"] = dimensions
            try:
                response = await _retry_embeddings(self._client, payload)
            except RetryError as exc:  # pragma: no cover - surfaces original error message
                raise exc.last_attempt.result()  # type: ignore[misc]

            chunk_vectors = [item.embedding for item in response.data]
            vectors.extend(chunk_vectors)
            if not dim and chunk_vectors:
                dim = len(chunk_vectors[0])
            response_model = getattr(response, "model", None)
            if response_model:
                model_revision = response_model

        return EmbeddingBatch(
            vectors=vectors,
            model=chosen_model,
            dim=dim,
            model_revision=model_revision,
            provider="openai",
        )


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(5))
async def _retry_embeddings(client: AsyncOpenAI, payload: dict[str, Any]):
    fallback_model = get_settings().openai_embedding_fallback_model
    try:
        return await client.embeddings.create(**payload)
    except Exception:  # pragma: no cover - fallback executed infrequently
        fallback = dict(payload, model=fallback_model)
        if fallback_model.startswith("text-embedding-ada"):
            fallback.pop("dimensions", None)
        return await client.embeddings.create(**fallback)
