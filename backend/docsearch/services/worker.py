"""Execution-unit side of the embedding message protocol.

Inbound envelopes are `{type, requestId, payload}` with `type` one of `init`,
`embed`, `status` or `clearCache`. Each request produces zero or more
`{type: "progress", requestId, payload}` messages followed by exactly one
`{type: "response", requestId, ok, result | error}`.

Classes:
    EmbeddingWorker: Dispatches envelopes to the model pipeline.

Functions:
    run_worker_process(inbox, outbox, runtime_name, log_level): Entry point for a spawned worker process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from docsearch.core.config import get_settings
from docsearch.services.model_config import EmbeddingModelConfig
from docsearch.services.pipeline import ModelPipelineManager
from docsearch.services.progress import PHASE_RUNNING, ProgressEvent, ProgressSink
from docsearch.services.runtimes import build_runtime

_LOGGER = logging.getLogger(__name__)

Post = Callable[[dict[str, Any]], None]


def response_envelope(request_id: str, ok: bool, result: Any = None, error: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {"type": "response", "requestId": request_id, "ok": ok, "result": result, "error": error}


def progress_envelope(request_id: str, event: ProgressEvent) -> dict[str, Any]:
    return {"type": "progress", "requestId": request_id, "payload": event.to_payload()}


class EmbeddingWorker:
    def __init__(self, manager: ModelPipelineManager, default_config: EmbeddingModelConfig) -> None:
        self._manager = manager
        self._default_config = default_config
        self._handlers: dict[str, Callable[[Mapping[str, Any], ProgressSink], Awaitable[Any]]] = {
            "init": self._init,
            "embed": self._embed,
            "status": self._status,
            "clearCache": self._clear_cache,
        }

    @property
    def manager(self) -> ModelPipelineManager:
        return self._manager

    async def handle(self, message: Mapping[str, Any], post: Post) -> None:
        request_type = message.get("type")
        request_id = str(message.get("requestId") or "")
        payload = message.get("payload") or {}

        def progress(event: ProgressEvent) -> None:
            post(progress_envelope(request_id, event))

        handler = self._handlers.get(str(request_type))
        if handler is None:
            post(response_envelope(request_id, False, error={"message": f"Unknown message type: {request_type}"}))
            return

        try:
            result = await handler(payload, progress)
        except Exception as exc:
            _LOGGER.warning("Worker request %s (%s) failed: %s", request_id, request_type, exc)
            post(response_envelope(request_id, False, error={"message": str(exc), "name": type(exc).__name__}))
            return
        post(response_envelope(request_id, True, result=result))

    def _config(self, payload: Mapping[str, Any]) -> EmbeddingModelConfig:
        return EmbeddingModelConfig.from_payload(payload, self._default_config)

    async def _status(self, payload: Mapping[str, Any], progress: ProgressSink) -> dict[str, Any]:
        return self._manager.status().to_payload()

    async def _clear_cache(self, payload: Mapping[str, Any], progress: ProgressSink) -> dict[str, Any]:
        self._manager.reset()
        return {"cleared": True}

    async def _init(self, payload: Mapping[str, Any], progress: ProgressSink) -> dict[str, Any]:
        await self._manager.ensure_ready(self._config(payload), progress)
        return self._manager.status().to_payload()

    async def _embed(self, payload: Mapping[str, Any], progress: ProgressSink) -> dict[str, Any]:
        texts = payload.get("texts")
        if not isinstance(texts, list) or not texts or not all(isinstance(text, str) for text in texts):
            raise ValueError("`texts` must be a non-empty list of strings")

        config = self._config(payload)
        model = await self._manager.ensure_ready(config, progress)
        progress(ProgressEvent(PHASE_RUNNING, "Generating embeddings", 0.0))
        vectors = await model.encode(texts, pooling=config.pooling, normalize=config.normalize)
        if len(vectors) != len(texts):
            raise RuntimeError(f"Model returned {len(vectors)} vectors for {len(texts)} texts")
        progress(ProgressEvent(PHASE_RUNNING, "Embeddings generated", 100.0))

        active = self._manager.status().active_model
        return {
            "modelId": config.model_id,
            "device": active.device if active else self._manager.resolve_device(config.device),
            "embeddings": vectors,
        }


async def _serve(inbox, outbox, runtime_name: str) -> None:
    settings = get_settings()
    worker = EmbeddingWorker(
        ModelPipelineManager(build_runtime(runtime_name, settings)),
        EmbeddingModelConfig.from_settings(settings),
    )
    in_flight: set[asyncio.Task] = set()
    while True:
        message = await asyncio.to_thread(inbox.get)
        if message is None:
            break
        task = asyncio.create_task(worker.handle(message, outbox.put))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)
    for task in in_flight:
        task.cancel()
    _LOGGER.info("Embedding worker process stopping")


def run_worker_process(inbox, outbox, runtime_name: str, log_level: str = "INFO") -> None:
    logging.basicConfig(level=log_level)
    asyncio.run(_serve(inbox, outbox, runtime_name))
