"""Remote execution channel speaking to the embeddings HTTP API.

Classes:
    HttpChannel: ExecutionChannel that maps protocol requests onto `/embeddings` endpoints.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional
from uuid import uuid4

import httpx

from docsearch.core.errors import ChannelDisposedError, ChannelTimeoutError, RemoteExecutionError
from docsearch.services.channel import ExecutionChannel
from docsearch.services.progress import PHASE_READY, PHASE_RUNNING, ProgressEvent, ProgressSink, emit

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any], Optional[ProgressSink]], Awaitable[Any]]


def _config_body(payload: Mapping[str, Any]) -> dict[str, Any]:
    body = {
        "model_id": payload.get("modelId"),
        "device": payload.get("device"),
        "pooling": payload.get("pooling"),
        "normalize": payload.get("normalize"),
    }
    return {key: value for key, value in body.items() if value is not None}


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, Mapping) and data.get("detail"):
        return str(data["detail"])
    return str(data)


class HttpChannel(ExecutionChannel):
    """
    Execution channel backed by a remote embeddings server.

    HTTP gives no progress stream, so the channel reports `running` around
    inference and `ready` after a successful init itself. Responses are
    translated to the same result shapes the worker protocol returns.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        default_timeout: float = 300.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._owns_client = client is None
        self._default_timeout = default_timeout
        self._tasks: set[asyncio.Task] = set()
        self._cancelled: set[asyncio.Task] = set()
        self._disposed = False
        self._handlers: dict[str, Handler] = {
            "status": self._status,
            "init": self._init,
            "embed": self._embed,
            "clearCache": self._clear_cache,
        }

    def is_alive(self) -> bool:
        return not self._disposed

    async def call(
        self,
        request_type: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
        progress: Optional[ProgressSink] = None,
    ) -> Any:
        if self._disposed:
            raise ChannelDisposedError()
        handler = self._handlers.get(request_type)
        if handler is None:
            raise RemoteExecutionError(f"Unknown message type: {request_type}")

        request_id = uuid4().hex
        limit = timeout if timeout is not None else self._default_timeout
        task = asyncio.create_task(asyncio.wait_for(handler(payload or {}, progress), limit))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._cancelled:
                raise ChannelDisposedError(request_id) from None
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ChannelTimeoutError(request_type, request_id, limit) from exc
        except httpx.HTTPStatusError as exc:
            raise RemoteExecutionError(_error_detail(exc.response), name="HTTPStatusError") from exc
        except httpx.HTTPError as exc:
            raise RemoteExecutionError(str(exc) or type(exc).__name__, name=type(exc).__name__) from exc
        finally:
            self._cancelled.discard(task)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    async def _status(self, payload: Mapping[str, Any], progress: Optional[ProgressSink]) -> Any:
        return await self._request("GET", "/embeddings")

    async def _init(self, payload: Mapping[str, Any], progress: Optional[ProgressSink]) -> Any:
        result = await self._request("POST", "/embeddings/init", json=_config_body(payload))
        emit(progress, ProgressEvent(PHASE_READY, "Model ready", 100.0))
        return result

    async def _embed(self, payload: Mapping[str, Any], progress: Optional[ProgressSink]) -> dict[str, Any]:
        texts = payload.get("texts")
        if not isinstance(texts, list) or not texts:
            raise RemoteExecutionError("`texts` must be a non-empty list of strings", name="ValueError")
        emit(progress, ProgressEvent(PHASE_RUNNING, "Generating embeddings", 0.0))
        data = await self._request("POST", "/embeddings", json={"texts": texts, **_config_body(payload)})
        emit(progress, ProgressEvent(PHASE_RUNNING, "Embeddings generated", 100.0))
        return {
            "modelId": data.get("model_id") or payload.get("modelId"),
            "device": data.get("device") or payload.get("device"),
            "embeddings": data.get("embeddings") or [],
        }

    async def _clear_cache(self, payload: Mapping[str, Any], progress: Optional[ProgressSink]) -> Any:
        return await self._request("DELETE", "/embeddings/cache")

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            self._cancelled.add(task)
            task.cancel()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        pending = list(self._tasks)
        self.cancel_pending()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()
        _LOGGER.debug("HTTP execution channel disposed")
