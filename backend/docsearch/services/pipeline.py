"""Model lifecycle inside the execution unit.

Classes:
    ActiveModel: The (model id, resolved device) pair a pipeline is serving.
    ModelPipelineState: Snapshot of the pipeline phase, active model and last error.
    ModelPipelineManager: Owns the loaded model; single-flight loading with per-call progress.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from docsearch.core.errors import ModelLoadError
from docsearch.services.model_config import EmbeddingModelConfig
from docsearch.services.progress import (
    PHASE_READY,
    ProgressEvent,
    ProgressNormaliser,
    ProgressSink,
    emit,
)
from docsearch.services.runtimes import LoadedModel, ModelRuntime

_LOGGER = logging.getLogger(__name__)

PHASE_IDLE = "idle"
PHASE_LOADING = "loading"
PHASE_ERROR = "error"


@dataclass(slots=True, frozen=True)
class ActiveModel:
    model_id: str
    device: str

    def to_payload(self) -> dict[str, str]:
        return {"modelId": self.model_id, "device": self.device}


@dataclass(slots=True, frozen=True)
class ModelPipelineState:
    phase: str = PHASE_IDLE
    active_model: Optional[ActiveModel] = None
    error: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.phase == PHASE_READY

    def to_payload(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "phase": self.phase,
            "config": self.active_model.to_payload() if self.active_model else None,
            "error": self.error,
        }


@dataclass(slots=True, eq=False)
class _PendingLoad:
    key: ActiveModel
    sinks: list[ProgressSink] = field(default_factory=list)
    task: Optional[asyncio.Task] = None


def _consume_task_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class ModelPipelineManager:
    """
    Singleton-per-execution-unit owner of the loaded embedding model.

    Concurrent `ensure_ready` calls for the same (model id, device) share one
    load. A call for a different pair starts its own load; the earlier one is
    left to finish but its result no longer becomes the active model. Progress
    is fanned out only to the sinks of the callers waiting on that load.
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        *,
        device_probe: Optional[Callable[[], str | None]] = None,
    ) -> None:
        self._runtime = runtime
        self._probe = device_probe or runtime.probe_accelerator
        self._state = ModelPipelineState()
        self._model: LoadedModel | None = None
        self._pending: _PendingLoad | None = None

    def resolve_device(self, requested: str | None) -> str:
        if requested and requested != "auto":
            return requested
        return self._probe() or "cpu"

    def status(self) -> ModelPipelineState:
        return self._state

    async def ensure_ready(
        self,
        config: EmbeddingModelConfig,
        progress: Optional[ProgressSink] = None,
    ) -> LoadedModel:
        key = ActiveModel(config.model_id, self.resolve_device(config.device))

        if self._model is not None and self._state.ready and self._state.active_model == key:
            emit(progress, ProgressEvent(PHASE_READY, "Model ready", 100.0))
            return self._model

        pending = self._pending
        if pending is None or pending.key != key:
            pending = self._start_load(key)

        if progress is not None:
            pending.sinks.append(progress)
        try:
            return await asyncio.shield(pending.task)
        finally:
            if progress is not None and progress in pending.sinks:
                pending.sinks.remove(progress)

    def reset(self) -> None:
        """Drop the loaded model; an in-flight load is abandoned."""

        self._model = None
        self._pending = None
        self._state = ModelPipelineState()

    def _start_load(self, key: ActiveModel) -> _PendingLoad:
        pending = _PendingLoad(key=key)
        self._pending = pending
        self._model = None
        self._state = ModelPipelineState(phase=PHASE_LOADING, active_model=key)
        pending.task = asyncio.get_running_loop().create_task(self._load(pending))
        pending.task.add_done_callback(_consume_task_exception)
        return pending

    def _fan_out(self, pending: _PendingLoad, event: ProgressEvent) -> None:
        for sink in list(pending.sinks):
            sink(event)

    async def _load(self, pending: _PendingLoad) -> LoadedModel:
        key = pending.key
        normaliser = ProgressNormaliser(lambda event: self._fan_out(pending, event))
        started = time.perf_counter()
        _LOGGER.info("Loading embedding model %s on %s", key.model_id, key.device)
        try:
            model = await self._runtime.load(key.model_id, key.device, normaliser.feed)
        except Exception as exc:
            _LOGGER.error("Embedding model %s failed to load on %s: %s", key.model_id, key.device, exc)
            if self._pending is pending:
                self._pending = None
                self._model = None
                self._state = ModelPipelineState(phase=PHASE_ERROR, active_model=None, error=str(exc))
            raise ModelLoadError(key.model_id, key.device, str(exc)) from exc

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if self._pending is not pending:
            _LOGGER.info("Discarding superseded load of %s on %s", key.model_id, key.device)
            normaliser.finish()
            return model

        self._pending = None
        self._model = model
        self._state = ModelPipelineState(phase=PHASE_READY, active_model=key)
        _LOGGER.info("Embedding model %s ready on %s in %.0fms", key.model_id, key.device, elapsed_ms)
        normaliser.finish()
        return model
