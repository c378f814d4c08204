"""Model runtimes hosted by the execution unit.

A runtime materialises a model for a (model id, device) pair and returns an
object that turns texts into fixed-length vectors. Raw load notifications are
passed to `report` as dictionaries (`status` of `initiate`, `progress`, `done`
or `cached`); runtimes that load on a worker thread must hand them back to the
event loop themselves.

Classes:
    LoadedModel / ModelRuntime: Protocols implemented by every runtime.
    SentenceTransformerRuntime: Local inference through sentence-transformers and the Hugging Face hub.
    OpenAIRuntime: Hosted embeddings through the OpenAI API.
    HashingRuntime: Deterministic character-trigram feature hashing, no download required.

Functions:
    build_runtime(name, settings): Construct a runtime by its configured name.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

import numpy as np

from docsearch.core.config import Settings, get_settings
from docsearch.services.openai_client import OpenAIService
from docsearch.utils.hashing import fnv1a_32
from docsearch.utils.vectors import l2_normalise

_LOGGER = logging.getLogger(__name__)

RawProgress = Callable[[Mapping[str, Any]], None]

_WORD_PATTERN = re.compile(r"\w+", re.UNICODE)


class LoadedModel(Protocol):
    async def encode(self, texts: Sequence[str], *, pooling: str, normalize: bool) -> list[list[float]]:
        ...


class ModelRuntime(Protocol):
    name: str

    def probe_accelerator(self) -> str | None:
        ...

    async def load(self, model_id: str, device: str, report: RawProgress) -> LoadedModel:
        ...


def _check_pooling(pooling: str) -> None:
    if pooling != "mean":
        raise ValueError(f"Unsupported pooling strategy: {pooling}")


class SentenceTransformerModel:
    def __init__(self, model: Any) -> None:
        self._model = model

    async def encode(self, texts: Sequence[str], *, pooling: str, normalize: bool) -> list[list[float]]:
        _check_pooling(pooling)
        vectors = await asyncio.to_thread(
            self._model.encode,
            list(texts),
            normalize_embeddings=normalize,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return np.asarray(vectors, dtype=np.float32).tolist()


def _reporting_tqdm(report: RawProgress):
    from tqdm.auto import tqdm

    class _ReportingTqdm(tqdm):
        def update(self, n=1):
            displayed = super().update(n)
            report({"status": "progress", "loaded": self.n, "total": self.total or 0, "file": self.desc or None})
            return displayed

    return _ReportingTqdm


class SentenceTransformerRuntime:
    name = "sentence-transformers"

    def probe_accelerator(self) -> str | None:
        try:
            import torch
        except ImportError:
            return None
        if torch.cuda.is_available():
            return "cuda"
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            return "mps"
        return None

    async def load(self, model_id: str, device: str, report: RawProgress) -> LoadedModel:
        loop = asyncio.get_running_loop()

        def threadsafe_report(raw: Mapping[str, Any]) -> None:
            loop.call_soon_threadsafe(report, dict(raw))

        return await asyncio.to_thread(self._load_blocking, model_id, device, threadsafe_report)

    def _load_blocking(self, model_id: str, device: str, report: RawProgress) -> LoadedModel:
        from huggingface_hub import snapshot_download
        from huggingface_hub.utils import LocalEntryNotFoundError
        from sentence_transformers import SentenceTransformer

        try:
            path = snapshot_download(model_id, local_files_only=True)
            report({"status": "cached", "name": model_id})
        except LocalEntryNotFoundError:
            _LOGGER.info("Model %s not in local cache, downloading", model_id)
            report({"status": "initiate", "name": model_id})
            path = snapshot_download(model_id, tqdm_class=_reporting_tqdm(report))
            report({"status": "done", "name": model_id})
        model = SentenceTransformer(path, device=device)
        return SentenceTransformerModel(model)


class OpenAIModel:
    def __init__(self, service: OpenAIService, model_id: str, dimensions: int | None) -> None:
        self._service = service
        self._model_id = model_id
        self._dimensions = dimensions

    async def encode(self, texts: Sequence[str], *, pooling: str, normalize: bool) -> list[list[float]]:
        _check_pooling(pooling)
        batch = await self._service.embed_texts(texts, model=self._model_id, dimensions=self._dimensions)
        matrix = np.asarray(batch.vectors, dtype=np.float32)
        if normalize and matrix.size:
            matrix = l2_normalise(matrix)
        return matrix.tolist()


class OpenAIRuntime:
    name = "openai"

    def __init__(self, service: Optional[OpenAIService] = None, dimensions: int | None = None) -> None:
        self._service = service or OpenAIService()
        self._dimensions = dimensions

    def probe_accelerator(self) -> str | None:
        return None

    async def load(self, model_id: str, device: str, report: RawProgress) -> LoadedModel:
        if not self._service.is_configured:
            raise RuntimeError("OpenAI client not configured. Set OPENAI_API_KEY.")
        return OpenAIModel(self._service, model_id, self._dimensions)


class HashingModel:
    def __init__(self, dim: int) -> None:
        self._dim = dim

    def _encode_one(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dim, dtype=np.float32)
        grams = 0
        for word in _WORD_PATTERN.findall(text.lower()):
            padded = f"#{word}#"
            for start in range(max(1, len(padded) - 2)):
                gram = padded[start : start + 3]
                vector[int(fnv1a_32(gram), 16) % self._dim] += 1.0
                grams += 1
        if grams:
            vector /= grams
        return vector

    async def encode(self, texts: Sequence[str], *, pooling: str, normalize: bool) -> list[list[float]]:
        _check_pooling(pooling)
        matrix = np.vstack([self._encode_one(text) for text in texts]) if texts else np.zeros((0, self._dim))
        if normalize and matrix.size:
            matrix = l2_normalise(matrix)
        return matrix.astype(np.float32).tolist()


class HashingRuntime:
    """Bag of character trigrams hashed into a fixed number of buckets; mean-pooled per text."""

    name = "hashing"

    def __init__(self, dim: int = 384) -> None:
        self._dim = dim

    def probe_accelerator(self) -> str | None:
        return None

    async def load(self, model_id: str, device: str, report: RawProgress) -> LoadedModel:
        return HashingModel(self._dim)


def build_runtime(name: str, settings: Optional[Settings] = None) -> ModelRuntime:
    settings = settings or get_settings()
    if name == "sentence-transformers":
        return SentenceTransformerRuntime()
    if name == "openai":
        return OpenAIRuntime(dimensions=settings.embedding_dimensions)
    if name == "hashing":
        return HashingRuntime(dim=settings.embedding_dimensions)
    raise ValueError(f"Unknown embedding runtime: {name}")
