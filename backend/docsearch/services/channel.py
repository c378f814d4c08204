"""Request/response channel between callers and an embedding execution unit.

Classes:
    ExecutionChannel: Interface shared by every transport (message-passing or HTTP).
    PendingRequest: Correlation record for one in-flight call.
    MessageTransport: Moves envelopes to and from an execution unit.
    MessageChannel: Correlates envelopes by request id, with progress forwarding and timeouts.
    InProcessTransport: Execution unit hosted on the caller's event loop.
    ProcessTransport: Execution unit hosted in a separate worker process.
"""

from __future__ import annotations

import asyncio
import json
import logging
import multiprocessing
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional
from uuid import uuid4

from docsearch.core.errors import (
    ChannelDisposedError,
    ChannelTimeoutError,
    RemoteExecutionError,
    WorkerAlreadyRunningError,
)
from docsearch.services.progress import ProgressEvent, ProgressSink
from docsearch.services.worker import EmbeddingWorker, run_worker_process

_LOGGER = logging.getLogger(__name__)

Deliver = Callable[[dict[str, Any]], None]


class ExecutionChannel(ABC):
    @abstractmethod
    async def call(
        self,
        request_type: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
        progress: Optional[ProgressSink] = None,
    ) -> Any:
        """Send one request and wait for its terminal response."""

    @abstractmethod
    def is_alive(self) -> bool:
        ...

    @abstractmethod
    def cancel_pending(self) -> None:
        """Reject every in-flight call with ChannelDisposedError."""

    @abstractmethod
    async def dispose(self) -> None:
        """Reject every in-flight call, then tear down the execution unit."""


@dataclass(slots=True, eq=False)
class PendingRequest:
    request_id: str
    request_type: str
    future: asyncio.Future
    progress: Optional[ProgressSink] = None
    timeout_handle: Optional[asyncio.TimerHandle] = None


class MessageTransport(ABC):
    @abstractmethod
    def start(self, deliver: Deliver) -> None:
        """Bring the execution unit up; inbound envelopes are passed to *deliver* on the event loop."""

    @abstractmethod
    def send(self, message: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class MessageChannel(ExecutionChannel):
    """
    Correlates `{type, requestId, payload}` envelopes with their replies.

    Each call gets a fresh request id and a correlation record that lives until
    the terminal response arrives or the timeout fires, whichever comes first.
    Replies for ids without a record (timed out, disposed or unknown) are
    dropped. Correlation state is only touched from the owning event loop.
    """

    def __init__(self, transport: MessageTransport, *, default_timeout: float = 300.0) -> None:
        self._transport = transport
        self._default_timeout = default_timeout
        self._pending: dict[str, PendingRequest] = {}
        self._started = False
        self._disposed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_alive(self) -> bool:
        if self._disposed:
            return False
        return not self._started or self._transport.is_alive()

    def start(self) -> None:
        if self._started:
            return
        self._transport.start(self._on_message)
        self._started = True

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
        self.start()

        loop = asyncio.get_running_loop()
        request_id = uuid4().hex
        limit = timeout if timeout is not None else self._default_timeout
        record = PendingRequest(
            request_id=request_id,
            request_type=request_type,
            future=loop.create_future(),
            progress=progress,
        )
        record.timeout_handle = loop.call_later(limit, self._expire, request_id, limit)
        self._pending[request_id] = record

        try:
            self._transport.send({"type": request_type, "requestId": request_id, "payload": dict(payload or {})})
        except Exception:
            self._discard(request_id)
            raise
        return await record.future

    def _discard(self, request_id: str) -> PendingRequest | None:
        record = self._pending.pop(request_id, None)
        if record is not None and record.timeout_handle is not None:
            record.timeout_handle.cancel()
        return record

    def _expire(self, request_id: str, limit: float) -> None:
        record = self._pending.pop(request_id, None)
        if record is None or record.future.done():
            return
        _LOGGER.warning("%s request %s timed out after %.1fs", record.request_type, request_id, limit)
        record.future.set_exception(ChannelTimeoutError(record.request_type, request_id, limit))

    def _on_message(self, message: Mapping[str, Any]) -> None:
        request_id = str(message.get("requestId") or "")
        kind = message.get("type")

        if kind == "progress":
            record = self._pending.get(request_id)
            if record is None:
                _LOGGER.debug("Dropping progress for unknown request %s", request_id)
                return
            if record.progress is not None:
                try:
                    record.progress(ProgressEvent.from_payload(message.get("payload") or {}))
                except Exception:
                    _LOGGER.exception("Progress sink for request %s raised", request_id)
            return

        if kind != "response":
            _LOGGER.debug("Ignoring message of type %r", kind)
            return

        record = self._discard(request_id)
        if record is None:
            _LOGGER.debug("Dropping late response for request %s", request_id)
            return
        if record.future.done():
            return
        if message.get("ok"):
            record.future.set_result(message.get("result"))
            return
        error = message.get("error") or {}
        record.future.set_exception(
            RemoteExecutionError(str(error.get("message") or "Execution unit reported an error"), error.get("name"))
        )

    def cancel_pending(self) -> None:
        for request_id in list(self._pending):
            record = self._discard(request_id)
            if record is not None and not record.future.done():
                record.future.set_exception(ChannelDisposedError(request_id))

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.cancel_pending()
        if self._started:
            await self._transport.close()


class InProcessTransport(MessageTransport):
    """
    Runs the worker protocol handler as tasks on the caller's event loop.

    Envelopes are JSON round-tripped in both directions so the in-process path
    exercises the same wire format as the process and HTTP transports.
    """

    def __init__(self, worker: EmbeddingWorker) -> None:
        self._worker = worker
        self._deliver: Deliver | None = None
        self._tasks: set[asyncio.Task] = set()

    def start(self, deliver: Deliver) -> None:
        if self.is_alive():
            raise WorkerAlreadyRunningError("In-process embedding worker is already running")
        self._deliver = deliver

    def is_alive(self) -> bool:
        return self._deliver is not None

    def send(self, message: dict[str, Any]) -> None:
        if self._deliver is None:
            raise RuntimeError("Transport has not been started")
        deliver = self._deliver

        def post(envelope: dict[str, Any]) -> None:
            deliver(json.loads(json.dumps(envelope)))

        task = asyncio.get_running_loop().create_task(self._worker.handle(json.loads(json.dumps(message)), post))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        self._deliver = None
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._worker.manager.reset()


class ProcessTransport(MessageTransport):
    """
    Hosts the execution unit in a child process fed through multiprocessing queues.

    A daemon reader thread forwards replies onto the event loop that started the
    transport. Closing sends a sentinel, waits for the child to exit and
    terminates it if it does not.
    """

    def __init__(
        self,
        runtime_name: str,
        *,
        log_level: str = "INFO",
        start_method: str = "spawn",
        shutdown_timeout: float = 5.0,
    ) -> None:
        self._runtime_name = runtime_name
        self._log_level = log_level
        self._context = multiprocessing.get_context(start_method)
        self._shutdown_timeout = shutdown_timeout
        self._process = None
        self._inbox = None
        self._outbox = None
        self._reader: threading.Thread | None = None

    def start(self, deliver: Deliver) -> None:
        if self.is_alive():
            raise WorkerAlreadyRunningError("Embedding worker process is already running")
        loop = asyncio.get_running_loop()
        self._inbox = self._context.Queue()
        self._outbox = self._context.Queue()
        self._process = self._context.Process(
            target=run_worker_process,
            args=(self._inbox, self._outbox, self._runtime_name, self._log_level),
            name="docsearch-embedding-worker",
            daemon=True,
        )
        self._process.start()
        _LOGGER.info("Started embedding worker process pid=%s runtime=%s", self._process.pid, self._runtime_name)
        self._reader = threading.Thread(
            target=self._pump,
            args=(self._outbox, loop, deliver),
            name="docsearch-embedding-reader",
            daemon=True,
        )
        self._reader.start()

    @staticmethod
    def _pump(outbox, loop: asyncio.AbstractEventLoop, deliver: Deliver) -> None:
        while True:
            message = outbox.get()
            if message is None:
                return
            try:
                loop.call_soon_threadsafe(deliver, message)
            except RuntimeError:
                # Event loop already closed.
                return

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def send(self, message: dict[str, Any]) -> None:
        if self._inbox is None:
            raise RuntimeError("Transport has not been started")
        self._inbox.put(message)

    async def close(self) -> None:
        process = self._process
        if process is None:
            return
        if process.is_alive():
            self._inbox.put(None)
            await asyncio.to_thread(process.join, self._shutdown_timeout)
        if process.is_alive():
            _LOGGER.warning("Embedding worker pid=%s did not exit; terminating", process.pid)
            process.terminate()
            await asyncio.to_thread(process.join, self._shutdown_timeout)
        self._outbox.put(None)
        if self._reader is not None:
            await asyncio.to_thread(self._reader.join, self._shutdown_timeout)
        self._inbox.close()
        self._outbox.close()
        _LOGGER.info("Embedding worker process pid=%s stopped", process.pid)
        self._process = None
        self._inbox = None
        self._outbox = None
        self._reader = None
