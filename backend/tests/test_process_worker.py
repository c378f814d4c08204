import pytest

from docsearch.services.channel import MessageChannel, ProcessTransport


@pytest.mark.asyncio
async def test_worker_process_round_trip():
    channel = MessageChannel(ProcessTransport("hashing", log_level="WARNING"), default_timeout=60.0)
    events = []
    try:
        ready = await channel.call("init", {"modelId": "m1", "device": "cpu"}, progress=events.append)
        result = await channel.call("embed", {"modelId": "m1", "device": "cpu", "texts": ["vectors", "meaning"]})
        status = await channel.call("status")

        assert ready["ready"] is True
        assert [event.phase for event in events] == ["cached", "ready"]
        assert len(result["embeddings"]) == 2
        assert all(len(vector) == 384 for vector in result["embeddings"])
        assert status["config"] == {"modelId": "m1", "device": "cpu"}
        assert channel.is_alive()
    finally:
        await channel.dispose()

    assert not channel.is_alive()
