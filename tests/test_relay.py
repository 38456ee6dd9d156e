import asyncio
import os

import pytest

from streamgate.main import create_app
from streamgate.models.request import RetrievalRequest
from streamgate.services.extraction import ProcessState
from streamgate.services.relay import RelayOutcome, RelayResponse, StreamTruncated, relay_chunks
from tests.conftest import make_config, make_request


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


async def open_session(binary: str, **extraction):
    app = create_app(make_config(binary, **extraction))
    service = app.state.retrieval
    retrieval = RetrievalRequest(url="https://example.com/watch?v=abc", format="video")
    plan = service.resolve_plan(retrieval)
    session = await service.open(make_request(app), retrieval, plan, app.state.i18n.get)
    return app, session, plan


@pytest.mark.asyncio
async def test_relay_chunks_respects_chunk_size():
    reader = asyncio.StreamReader()
    reader.feed_data(b"a" * 2500)
    reader.feed_eof()

    chunks = [chunk async for chunk in relay_chunks(reader, 1024)]

    assert all(len(chunk) <= 1024 for chunk in chunks)
    assert b"".join(chunks) == b"a" * 2500


@pytest.mark.asyncio
async def test_session_completes_and_releases_slot(extractor):
    app, session, _ = await open_session(extractor("media"))
    assert app.state.limiter.active == 1
    assert session.first_chunk

    body = b"".join([chunk async for chunk in session.body()])

    assert len(body) == 8 * 32768
    assert session.bytes_sent == len(body)
    assert session.outcome is RelayOutcome.COMPLETED
    assert session.process.state is ProcessState.EXITED_OK
    assert session.closed
    assert app.state.limiter.active == 0


@pytest.mark.asyncio
async def test_failure_after_output_truncates_body(extractor):
    app, session, _ = await open_session(extractor("partial_fail"))

    received = 0
    with pytest.raises(StreamTruncated):
        async for chunk in session.body():
            received += len(chunk)

    assert received == 100000
    assert session.outcome is RelayOutcome.FAILED
    assert "connection reset" in session.diagnostics.text()
    assert app.state.limiter.active == 0


@pytest.mark.asyncio
async def test_closing_body_early_terminates_process(extractor):
    app, session, _ = await open_session(extractor("endless"))
    pid = session.process.pid

    body = session.body()
    for _ in range(3):
        assert await body.__anext__()
    await asyncio.wait_for(body.aclose(), timeout=10)

    assert session.outcome is RelayOutcome.CLIENT_ABORTED
    assert session.process.state is ProcessState.KILLED
    assert not pid_alive(pid)
    assert session.diagnostics_task.done()
    assert app.state.limiter.active == 0


@pytest.mark.asyncio
async def test_client_disconnect_terminates_process(extractor):
    app, session, plan = await open_session(extractor("endless"))
    pid = session.process.pid
    response = RelayResponse(session, plan)

    messages = []
    disconnected = asyncio.Event()

    async def send(message):
        messages.append(message)
        body_parts = [m for m in messages if m["type"] == "http.response.body"]
        if len(body_parts) >= 2:
            disconnected.set()

    async def receive():
        await disconnected.wait()
        return {"type": "http.disconnect"}

    await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=10)

    start = messages[0]
    assert start["type"] == "http.response.start"
    assert start["status"] == 200
    headers = dict(start["headers"])
    assert headers[b"content-type"] == b"video/mp4"
    assert headers[b"content-disposition"] == b'attachment; filename="stream.mp4"'

    assert session.outcome is RelayOutcome.CLIENT_ABORTED
    assert session.process.state is ProcessState.KILLED
    assert not pid_alive(pid)
    assert app.state.limiter.active == 0


@pytest.mark.asyncio
async def test_stderr_flood_does_not_block_stdout(extractor):
    app, session, _ = await open_session(extractor("stderr_flood"), stderr_cap=4096)

    body = await asyncio.wait_for(_collect(session), timeout=20)

    assert body == b"M" * 262144
    assert session.outcome is RelayOutcome.COMPLETED
    assert len(session.diagnostics) == 4096
    assert session.diagnostics.dropped > 0


async def _collect(session) -> bytes:
    return b"".join([chunk async for chunk in session.body()])
