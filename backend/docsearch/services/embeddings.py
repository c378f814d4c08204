"""Embedding client facade.

Classes:
    EmbeddingClient: Cache-first embedding of texts through an execution channel.
    TransportProbe: Resolves the `auto` transport setting once per process.

Functions:
    build_channel_factory(settings, runtime, transport): Factory producing execution channels for the configured transport.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional, Sequence

import httpx
import numpy as np

from docsearch.core.config import Settings, get_settings
from docsearch.core.errors import EmptyBatchError, RemoteExecutionError
from docsearch.services.channel import ExecutionChannel, InProcessTransport, MessageChannel, ProcessTransport
from docsearch.services.embedding_cache import EmbeddingStore, compute_identity
from docsearch.services.http_channel import HttpChannel
from docsearch.services.model_config import EmbeddingModelConfig
from docsearch.services.pipeline import ModelPipelineManager
from docsearch.services.progress import PHASE_CACHED, PHASE_READY, ProgressEvent, ProgressSink, emit
from docsearch.services.runtimes import ModelRuntime, build_runtime
from docsearch.services.worker import EmbeddingWorker

_LOGGER = logging.getLogger(__name__)

ChannelFactory = Callable[[], ExecutionChannel]


class EmbeddingClient:
    """
    Turns texts into vectors, preferring the content-addressed cache.

    Misses are sent to the execution unit in one `embed` request per
    `embedding_batch_max` texts; results are written back to the cache and
    returned in input order. A failing batch rejects as a whole. The facade
    remembers which model config it initialised on the current channel so
    repeated calls skip the `init` round trip.
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        *,
        store: Optional[EmbeddingStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._channel_factory = channel_factory
        self._channel: ExecutionChannel | None = None
        self._store = store
        self._default_config = EmbeddingModelConfig.from_settings(self._settings)
        self._active_config: EmbeddingModelConfig | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def default_config(self) -> EmbeddingModelConfig:
        return self._default_config

    @property
    def store(self) -> Optional[EmbeddingStore]:
        return self._store

    async def _channel_for_call(self) -> ExecutionChannel:
        channel = self._channel
        if channel is not None and channel.is_alive():
            return channel
        # Swap before awaiting so concurrent callers adopt the same replacement.
        self._active_config = None
        replacement = self._channel_factory()
        self._channel = replacement
        if channel is not None:
            _LOGGER.info("Execution channel is no longer alive; starting a new one")
            await channel.dispose()
        return replacement

    async def _ensure_model_ready(
        self,
        channel: ExecutionChannel,
        config: EmbeddingModelConfig,
        progress: Optional[ProgressSink],
    ) -> None:
        if self._active_config == config:
            emit(progress, ProgressEvent(PHASE_READY, "Model ready", 100.0))
            return
        await channel.call(
            "init",
            config.to_payload(),
            timeout=self._settings.embedding_timeout_seconds,
            progress=progress,
        )
        if self._channel is channel:
            self._active_config = config

    async def ensure_model_ready(
        self,
        config: Optional[EmbeddingModelConfig] = None,
        progress: Optional[ProgressSink] = None,
    ) -> None:
        channel = await self._channel_for_call()
        await self._ensure_model_ready(channel, config or self._default_config, progress)

    async def embed(
        self,
        entity_id: Optional[str],
        text: str,
        config: Optional[EmbeddingModelConfig] = None,
        progress: Optional[ProgressSink] = None,
    ) -> list[float]:
        vectors = await self.embed_batch([text], config, progress, entity_id=entity_id)
        return vectors[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        config: Optional[EmbeddingModelConfig] = None,
        progress: Optional[ProgressSink] = None,
        *,
        entity_id: Optional[str] = None,
    ) -> list[list[float]]:
        if isinstance(texts, str) or not texts:
            raise EmptyBatchError()
        if not all(isinstance(text, str) for text in texts):
            raise ValueError("texts must contain only strings")

        config = config or self._default_config
        identities = [compute_identity(config, text) for text in texts]
        if self._store is not None:
            cached = list(await asyncio.gather(*(self._store.get(identity) for identity in identities)))
        else:
            cached = [None] * len(identities)

        results: list[list[float] | None] = list(cached)
        positions: dict[str, list[int]] = {}
        misses = []
        for index, (identity, hit) in enumerate(zip(identities, cached)):
            if hit is not None:
                continue
            if identity.key not in positions:
                positions[identity.key] = []
                misses.append((identity, texts[index]))
            positions[identity.key].append(index)

        if not misses:
            _LOGGER.debug("Served %d embedding(s) from cache", len(texts))
            emit(progress, ProgressEvent(PHASE_CACHED, "Served from cache", 100.0))
            return results  # type: ignore[return-value]

        channel = await self._channel_for_call()
        await self._ensure_model_ready(channel, config, progress)

        vectors: list[Any] = []
        batch_max = max(1, self._settings.embedding_batch_max)
        for start in range(0, len(misses), batch_max):
            chunk = [text for _, text in misses[start : start + batch_max]]
            result = await channel.call(
                "embed",
                {**config.to_payload(), "texts": chunk},
                timeout=self._settings.embedding_timeout_seconds,
                progress=progress,
            )
            embeddings = result.get("embeddings") if isinstance(result, Mapping) else None
            if not isinstance(embeddings, list) or len(embeddings) != len(chunk):
                received = len(embeddings) if isinstance(embeddings, list) else 0
                raise RemoteExecutionError(f"Execution unit returned {received} vectors for {len(chunk)} texts")
            vectors.extend(embeddings)

        for (identity, _), vector in zip(misses, vectors):
            value = np.asarray(vector, dtype=np.float32).tolist()
            if self._store is not None:
                await self._store.put(identity, value, owning_entity_id=entity_id)
            for index in positions[identity.key]:
                results[index] = value

        _LOGGER.debug("Embedded %d text(s), %d from cache", len(misses), len(texts) - sum(map(len, positions.values())))
        return results  # type: ignore[return-value]

    async def embed_query(
        self,
        query: str,
        config: Optional[EmbeddingModelConfig] = None,
        progress: Optional[ProgressSink] = None,
    ) -> list[float]:
        prefix = self._settings.query_prefix
        text = query.strip()
        if prefix and not text.startswith(prefix):
            text = f"{prefix}{text}"
        return await self.embed(None, text, config, progress)

    def preload(self, config: Optional[EmbeddingModelConfig] = None) -> asyncio.Task:
        """Warm the model in the background; failures are logged, not raised."""

        async def _warm() -> None:
            try:
                await self.ensure_model_ready(config)
            except Exception as exc:
                _LOGGER.warning("Embedding model preload failed: %s", exc)

        task = asyncio.get_running_loop().create_task(_warm())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def status(self) -> dict[str, Any]:
        channel = await self._channel_for_call()
        result = await channel.call("status", timeout=self._settings.embedding_timeout_seconds)
        return dict(result or {})

    async def clear_all_caches(self) -> None:
        channel = await self._channel_for_call()
        await channel.call("clearCache", timeout=self._settings.embedding_timeout_seconds)
        self._active_config = None
        if self._store is not None:
            await self._store.clear()
        _LOGGER.info("Cleared embedding caches")

    async def dispose(self, terminate: bool = False) -> None:
        for task in list(self._background):
            task.cancel()
        channel = self._channel
        if channel is None:
            return
        if not terminate:
            channel.cancel_pending()
            return
        self._channel = None
        self._active_config = None
        await channel.dispose()


def build_channel_factory(
    settings: Optional[Settings] = None,
    *,
    runtime: Optional[ModelRuntime] = None,
    transport: Optional[str] = None,
) -> ChannelFactory:
    settings = settings or get_settings()
    mode = transport or settings.embedding_transport
    timeout = settings.embedding_timeout_seconds
    default_config = EmbeddingModelConfig.from_settings(settings)

    if mode == "inprocess":
        model_runtime = runtime or build_runtime(settings.embedding_runtime, settings)

        def inprocess() -> ExecutionChannel:
            worker = EmbeddingWorker(ModelPipelineManager(model_runtime), default_config)
            return MessageChannel(InProcessTransport(worker), default_timeout=timeout)

        return inprocess

    if mode == "worker":

        def worker_process() -> ExecutionChannel:
            return MessageChannel(
                ProcessTransport(settings.embedding_runtime, log_level=settings.log_level),
                default_timeout=timeout,
            )

        return worker_process

    if mode == "http":

        def http() -> ExecutionChannel:
            return HttpChannel(settings.embedding_server_url, default_timeout=timeout)

        return http

    raise ValueError(f"Unresolved embedding transport: {mode}")


class TransportProbe:
    """
    Resolves `embedding_transport`; `auto` checks the embeddings server once.

    A reachable server that answers `GET /embeddings` selects the HTTP
    transport, anything else falls back to a local worker process. Concurrent
    callers share the single probe.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        probe_timeout: float = 2.0,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._probe_timeout = probe_timeout
        self._task: asyncio.Task | None = None

    async def resolve(self) -> str:
        mode = self._settings.embedding_transport
        if mode != "auto":
            return mode
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._probe())
        return await asyncio.shield(self._task)

    async def _probe(self) -> str:
        url = self._settings.embedding_server_url
        if not url:
            return "worker"
        client = self._client or httpx.AsyncClient(base_url=url, timeout=self._probe_timeout)
        try:
            response = await client.get("/embeddings")
            reachable = response.status_code == 200
        except httpx.HTTPError as exc:
            _LOGGER.info("Embedding server %s unreachable (%s)", url, exc)
            reachable = False
        finally:
            if self._client is None:
                await client.aclose()
        mode = "http" if reachable else "worker"
        _LOGGER.info("Embedding transport resolved to %s", mode)
        return mode
