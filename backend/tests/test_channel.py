import asyncio

import pytest

from docsearch.core.errors import (
    ChannelDisposedError,
    ChannelTimeoutError,
    RemoteExecutionError,
    WorkerAlreadyRunningError,
)
from docsearch.services import EmbeddingModelConfig
from docsearch.services.channel import InProcessTransport, MessageChannel, MessageTransport
from docsearch.services.pipeline import ModelPipelineManager
from docsearch.services.worker import EmbeddingWorker


class ScriptedTransport(MessageTransport):
    """Records outbound envelopes; tests deliver replies by hand."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.deliver = None
        self.closed = False
        self.channel: MessageChannel | None = None
        self.pending_at_close: int | None = None

    def start(self, deliver) -> None:
        self.deliver = deliver

    def send(self, message: dict) -> None:
        self.sent.append(message)

    def is_alive(self) -> bool:
        return self.deliver is not None and not self.closed

    async def close(self) -> None:
        if self.channel is not None:
            self.pending_at_close = self.channel.pending_count
        self.closed = True


def respond(transport: ScriptedTransport, request_id: str, result=None, *, ok: bool = True, error=None) -> None:
    transport.deliver({"type": "response", "requestId": request_id, "ok": ok, "result": result, "error": error})


@pytest.mark.asyncio
async def test_responses_are_matched_by_request_id():
    transport = ScriptedTransport()
    channel = MessageChannel(transport, default_timeout=5.0)

    first = asyncio.create_task(channel.call("embed", {"texts": ["a"]}))
    second = asyncio.create_task(channel.call("status"))
    await asyncio.sleep(0)

    first_id, second_id = (message["requestId"] for message in transport.sent)
    assert first_id != second_id
    assert transport.sent[0] == {"type": "embed", "requestId": first_id, "payload": {"texts": ["a"]}}

    respond(transport, second_id, {"ready": False})
    respond(transport, first_id, {"embeddings": [[1.0]]})

    assert await second == {"ready": False}
    assert await first == {"embeddings": [[1.0]]}
    assert channel.pending_count == 0


@pytest.mark.asyncio
async def test_progress_is_forwarded_without_resolving():
    transport = ScriptedTransport()
    channel = MessageChannel(transport, default_timeout=5.0)
    events = []

    call = asyncio.create_task(channel.call("init", progress=events.append))
    await asyncio.sleep(0)
    request_id = transport.sent[0]["requestId"]

    transport.deliver(
        {"type": "progress", "requestId": request_id, "payload": {"phase": "downloading", "label": "x", "percent": 40}}
    )
    await asyncio.sleep(0)
    assert not call.done()
    assert events[0].phase == "downloading"
    assert events[0].percent == 40.0

    respond(transport, request_id, {"ready": True})
    assert await call == {"ready": True}


@pytest.mark.asyncio
async def test_error_response_rejects_with_remote_error():
    transport = ScriptedTransport()
    channel = MessageChannel(transport, default_timeout=5.0)

    call = asyncio.create_task(channel.call("embed", {"texts": []}))
    await asyncio.sleep(0)
    respond(transport, transport.sent[0]["requestId"], ok=False, error={"message": "bad texts", "name": "ValueError"})

    with pytest.raises(RemoteExecutionError) as excinfo:
        await call
    assert excinfo.value.name == "ValueError"
    assert "bad texts" in str(excinfo.value)


@pytest.mark.asyncio
async def test_timeout_removes_record_and_late_response_is_ignored():
    transport = ScriptedTransport()
    channel = MessageChannel(transport, default_timeout=5.0)

    with pytest.raises(ChannelTimeoutError) as excinfo:
        await channel.call("embed", {"texts": ["slow"]}, timeout=0.05)
    timed_out_id = transport.sent[0]["requestId"]
    assert excinfo.value.request_id == timed_out_id
    assert channel.pending_count == 0

    later = asyncio.create_task(channel.call("status"))
    await asyncio.sleep(0)
    later_id = transport.sent[1]["requestId"]
    assert later_id != timed_out_id

    respond(transport, timed_out_id, {"embeddings": [[9.0]]})
    await asyncio.sleep(0)
    assert not later.done()

    respond(transport, later_id, {"ready": True})
    assert await later == {"ready": True}


@pytest.mark.asyncio
async def test_dispose_rejects_pending_before_teardown():
    transport = ScriptedTransport()
    channel = MessageChannel(transport, default_timeout=5.0)
    transport.channel = channel

    calls = [asyncio.create_task(channel.call("embed", {"texts": [str(index)]})) for index in range(3)]
    await asyncio.sleep(0)

    await channel.dispose()

    for call in calls:
        with pytest.raises(ChannelDisposedError):
            await call
    assert transport.closed
    assert transport.pending_at_close == 0
    assert not channel.is_alive()
    with pytest.raises(ChannelDisposedError):
        await channel.call("status")


@pytest.mark.asyncio
async def test_progress_sink_errors_do_not_break_the_call():
    transport = ScriptedTransport()
    channel = MessageChannel(transport, default_timeout=5.0)

    def broken_sink(event):
        raise RuntimeError("sink failed")

    call = asyncio.create_task(channel.call("init", progress=broken_sink))
    await asyncio.sleep(0)
    request_id = transport.sent[0]["requestId"]
    transport.deliver({"type": "progress", "requestId": request_id, "payload": {"phase": "ready", "label": "done"}})
    respond(transport, request_id, {"ready": True})

    assert await call == {"ready": True}


def _in_process_channel(runtime) -> MessageChannel:
    worker = EmbeddingWorker(ModelPipelineManager(runtime), EmbeddingModelConfig(model_id="m1", device="cpu"))
    return MessageChannel(InProcessTransport(worker), default_timeout=5.0)


@pytest.mark.asyncio
async def test_in_process_worker_protocol(runtime):
    channel = _in_process_channel(runtime)
    try:
        status = await channel.call("status")
        assert status == {"ready": False, "phase": "idle", "config": None, "error": None}

        events = []
        ready = await channel.call("init", {"modelId": "m1", "device": "cpu"}, progress=events.append)
        assert ready["ready"] is True
        assert ready["config"] == {"modelId": "m1", "device": "cpu"}
        assert events[-1].phase == "ready"

        running = []
        result = await channel.call(
            "embed",
            {"modelId": "m1", "device": "cpu", "texts": ["vectors", "meaning"]},
            progress=running.append,
        )
        assert result["modelId"] == "m1"
        assert result["device"] == "cpu"
        assert len(result["embeddings"]) == 2
        assert all(len(vector) == 384 for vector in result["embeddings"])
        assert [(event.phase, event.percent) for event in running if event.phase == "running"] == [
            ("running", 0.0),
            ("running", 100.0),
        ]
        assert runtime.loads == [("m1", "cpu")]

        cleared = await channel.call("clearCache")
        assert cleared == {"cleared": True}
        assert (await channel.call("status"))["phase"] == "idle"
    finally:
        await channel.dispose()


@pytest.mark.asyncio
async def test_in_process_worker_rejects_bad_requests(runtime):
    channel = _in_process_channel(runtime)
    try:
        with pytest.raises(RemoteExecutionError) as empty:
            await channel.call("embed", {"texts": []})
        assert empty.value.name == "ValueError"

        with pytest.raises(RemoteExecutionError):
            await channel.call("embed", {"texts": "not a list"})

        with pytest.raises(RemoteExecutionError) as unknown:
            await channel.call("explode")
        assert "Unknown message type" in str(unknown.value)
    finally:
        await channel.dispose()


@pytest.mark.asyncio
async def test_in_process_transport_refuses_second_start(runtime):
    worker = EmbeddingWorker(ModelPipelineManager(runtime), EmbeddingModelConfig(model_id="m1", device="cpu"))
    transport = InProcessTransport(worker)
    transport.start(lambda message: None)

    with pytest.raises(WorkerAlreadyRunningError):
        transport.start(lambda message: None)

    await transport.close()
    transport.start(lambda message: None)
    assert transport.is_alive()
