"""
Tests for the SSE server transport.

The transport is driven through a fake ASGI channel so every frame written to
the stream and every POST response can be inspected directly.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from sserpc.sse import (
    AlreadyStartedError,
    InvalidMessageError,
    JSONRPCRequest,
    MessageParseError,
    NotConnectedError,
    ServerConfig,
    SseEventParser,
    SseServerTransport,
    SseWriteError,
    StreamNotEstablishedError,
    TransportState,
    UnsupportedContentTypeError,
    dump_message,
)


class AsgiChannel:
    """Records ASGI messages sent on a stream and feeds it receive events."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.fail_writes = False

    async def send(self, message: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise ConnectionResetError("peer went away")
        self.sent.append(message)

    async def receive(self) -> Dict[str, Any]:
        message = await self.inbox.get()
        if message is None:
            raise ConnectionResetError("receive channel broke")
        return message

    def disconnect(self) -> None:
        self.inbox.put_nowait({"type": "http.disconnect"})

    def break_receive(self) -> None:
        self.inbox.put_nowait(None)

    @property
    def start_message(self) -> Dict[str, Any]:
        return self.sent[0]

    def events(self):
        parser = SseEventParser()
        events = []
        for message in self.sent[1:]:
            events.extend(parser.feed(message.get("body", b"")))
        return events


class PostResult:
    """Captured response of a POST handled by the transport."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def send(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def status(self) -> int:
        return self.messages[0]["status"]

    @property
    def body(self) -> str:
        return b"".join(m.get("body", b"") for m in self.messages[1:]).decode()


def make_scope(method: str = "GET", path: str = "/sse", content_type: Optional[str] = None):
    headers = []
    if content_type is not None:
        headers.append((b"content-type", content_type.encode("latin-1")))
    return {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": headers,
    }


async def post(transport: SseServerTransport, body: bytes, content_type: Optional[str] = "application/json"):
    """POST ``body`` to the transport and return the captured response."""
    chunks = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive():
        if chunks:
            return chunks.pop(0)
        return {"type": "http.disconnect"}

    result = PostResult()
    await transport.handle_post_message(
        make_scope("POST", "/message", content_type), receive, result.send
    )
    return result


class Recorder:
    """Collects observer callbacks."""

    def __init__(self):
        self.messages: List[Any] = []
        self.errors: List[Exception] = []
        self.closes = 0

    def on_message(self, message):
        self.messages.append(message)

    def on_error(self, error):
        self.errors.append(error)

    def on_close(self):
        self.closes += 1


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def recorder():
    return Recorder()


@pytest_asyncio.fixture
async def make_transport(recorder):
    """Factory for server transports that are closed after the test."""
    created = []

    def factory(endpoint: str = "/message", config: Optional[ServerConfig] = None):
        channel = AsgiChannel()
        transport = SseServerTransport(
            endpoint,
            make_scope(),
            channel.receive,
            channel.send,
            config,
            on_message=recorder.on_message,
            on_error=recorder.on_error,
            on_close=recorder.on_close,
        )
        created.append(transport)
        return transport, channel

    yield factory

    for transport in created:
        await transport.close()


@pytest_asyncio.fixture
async def open_transport(make_transport):
    transport, channel = make_transport()
    await transport.start()
    return transport, channel


# ============================================================================
# Stream Tests
# ============================================================================

class TestServerStream:
    """Tests for opening, writing to and closing the stream."""

    @pytest.mark.asyncio
    async def test_start_writes_headers_and_endpoint(self, open_transport):
        transport, channel = open_transport

        start = channel.start_message
        headers = dict(start["headers"])
        assert start["type"] == "http.response.start"
        assert start["status"] == 200
        assert headers[b"content-type"] == b"text/event-stream"
        assert headers[b"cache-control"] == b"no-cache"
        assert headers[b"connection"] == b"keep-alive"

        events = channel.events()
        assert len(events) == 1
        assert events[0].event == "endpoint"
        assert events[0].data == f"/message?sessionId={transport.session_id}"
        assert transport.state is TransportState.OPEN

    @pytest.mark.asyncio
    async def test_extra_headers(self, make_transport):
        transport, channel = make_transport(config=ServerConfig(extra_headers={"X-Accel-Buffering": "no"}))
        await transport.start()

        assert dict(channel.start_message["headers"])[b"x-accel-buffering"] == b"no"

    @pytest.mark.asyncio
    async def test_endpoint_is_uri_encoded(self, make_transport):
        transport, channel = make_transport("/my messages")
        await transport.start()

        assert channel.events()[0].data.startswith("/my%20messages?sessionId=")

    @pytest.mark.asyncio
    async def test_session_ids_are_unique(self, make_transport):
        first, _ = make_transport()
        second, _ = make_transport()

        assert first.session_id != second.session_id

    @pytest.mark.asyncio
    async def test_second_start_fails(self, open_transport):
        transport, channel = open_transport
        written = len(channel.sent)

        with pytest.raises(AlreadyStartedError):
            await transport.start()

        assert len(channel.sent) == written

    @pytest.mark.asyncio
    async def test_send_writes_message_event(self, open_transport):
        transport, channel = open_transport
        message = {"jsonrpc": "2.0", "id": 1, "result": {"echo": "hi"}}

        await transport.send(message)

        events = channel.events()
        assert events[-1].event == "message"
        assert json.loads(events[-1].data) == message

    @pytest.mark.asyncio
    async def test_sends_are_written_in_order(self, open_transport):
        transport, channel = open_transport

        for i in range(5):
            await transport.send({"jsonrpc": "2.0", "method": "tick", "params": [i]})

        ticks = [json.loads(e.data)["params"][0] for e in channel.events()[1:]]
        assert ticks == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_send_before_start_fails(self, make_transport):
        transport, channel = make_transport()

        with pytest.raises(NotConnectedError):
            await transport.send({"jsonrpc": "2.0", "method": "ping"})

        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_send_after_close_fails_without_writing(self, open_transport, recorder):
        transport, channel = open_transport
        await transport.close()
        written = len(channel.sent)

        with pytest.raises(NotConnectedError):
            await transport.send({"jsonrpc": "2.0", "method": "ping"})

        assert len(channel.sent) == written
        assert recorder.closes == 1

    @pytest.mark.asyncio
    async def test_close_ends_response(self, open_transport):
        transport, channel = open_transport

        await transport.close()

        assert channel.sent[-1] == {"type": "http.response.body", "body": b"", "more_body": False}
        assert transport.state is TransportState.CLOSED

    @pytest.mark.asyncio
    async def test_disconnect_fires_on_close_once(self, open_transport, recorder):
        transport, channel = open_transport

        channel.disconnect()
        await asyncio.wait_for(transport.wait_closed(), timeout=1.0)
        await transport.close()

        assert recorder.closes == 1
        assert transport.state is TransportState.CLOSED

    @pytest.mark.asyncio
    async def test_receive_failure_closes(self, open_transport, recorder):
        transport, channel = open_transport

        channel.break_receive()
        await asyncio.wait_for(transport.wait_closed(), timeout=1.0)

        assert transport.state is TransportState.CLOSED
        assert recorder.closes == 1
        with pytest.raises(NotConnectedError):
            await transport.send({"jsonrpc": "2.0", "method": "ping"})

    @pytest.mark.asyncio
    async def test_session_logs_carry_session_id(self, make_transport, caplog):
        caplog.set_level(logging.INFO, logger="sserpc.sse.sse_server")
        transport, channel = make_transport()

        await transport.start()
        channel.disconnect()
        await asyncio.wait_for(transport.wait_closed(), timeout=1.0)

        records = [r for r in caplog.records if r.name == "sserpc.sse.sse_server"]
        assert len(records) >= 3
        assert all(r.session_id == transport.session_id for r in records)

    @pytest.mark.asyncio
    async def test_write_failure_is_reported(self, open_transport, recorder):
        transport, channel = open_transport
        channel.fail_writes = True

        with pytest.raises(SseWriteError):
            await transport.send({"jsonrpc": "2.0", "method": "ping"})

        assert isinstance(recorder.errors[-1], SseWriteError)

    @pytest.mark.asyncio
    async def test_start_write_failure_closes(self, make_transport, recorder):
        transport, channel = make_transport()
        channel.fail_writes = True

        with pytest.raises(SseWriteError):
            await transport.start()

        assert transport.state is TransportState.CLOSED
        assert recorder.closes == 1


# ============================================================================
# POST Handling Tests
# ============================================================================

class TestServerPost:
    """Tests for inbound POST handling."""

    @pytest.mark.asyncio
    async def test_valid_message_is_accepted(self, open_transport, recorder):
        transport, _ = open_transport
        body = {"jsonrpc": "2.0", "id": 1, "method": "example.method", "params": {"data": "Hello from client"}}

        result = await post(transport, json.dumps(body).encode())

        assert result.status == 202
        assert result.body == "Accepted"
        assert len(recorder.messages) == 1
        assert isinstance(recorder.messages[0], JSONRPCRequest)
        assert dump_message(recorder.messages[0]) == body

    @pytest.mark.asyncio
    async def test_json_content_type_with_charset(self, open_transport, recorder):
        transport, _ = open_transport

        result = await post(
            transport,
            b'{"jsonrpc":"2.0","method":"ping"}',
            "application/json; charset=utf-8",
        )

        assert result.status == 202
        assert len(recorder.messages) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_is_rejected(self, open_transport, recorder):
        transport, _ = open_transport

        result = await post(transport, b"{not json")

        assert result.status == 400
        assert result.body.startswith("Invalid message:")
        assert recorder.messages == []
        assert isinstance(recorder.errors[0], MessageParseError)

    @pytest.mark.asyncio
    async def test_invalid_shape_is_rejected(self, open_transport, recorder):
        transport, _ = open_transport

        result = await post(transport, b'{"jsonrpc":"1.0","id":1,"method":"echo"}')

        assert result.status == 400
        assert recorder.messages == []
        assert isinstance(recorder.errors[0], InvalidMessageError)

    @pytest.mark.asyncio
    async def test_wrong_content_type_is_rejected(self, open_transport, recorder):
        transport, _ = open_transport

        result = await post(transport, b'{"jsonrpc":"2.0","method":"ping"}', "text/plain")

        assert result.status == 400
        assert "Unsupported content-type: text/plain" in result.body
        assert isinstance(recorder.errors[0], UnsupportedContentTypeError)
        assert recorder.messages == []

    @pytest.mark.asyncio
    async def test_missing_content_type_is_rejected(self, open_transport, recorder):
        transport, _ = open_transport

        result = await post(transport, b'{"jsonrpc":"2.0","method":"ping"}', None)

        assert result.status == 400
        assert recorder.messages == []

    @pytest.mark.asyncio
    async def test_post_before_start_returns_500(self, make_transport, recorder):
        transport, _ = make_transport()
        result = PostResult()

        async def receive():
            return {"type": "http.request", "body": b"{}", "more_body": False}

        with pytest.raises(StreamNotEstablishedError):
            await transport.handle_post_message(
                make_scope("POST", "/message", "application/json"), receive, result.send
            )

        assert result.status == 500
        assert result.body == "SSE connection not established"
        assert recorder.messages == []

    @pytest.mark.asyncio
    async def test_post_after_close_returns_500(self, open_transport):
        transport, _ = open_transport
        await transport.close()

        with pytest.raises(StreamNotEstablishedError):
            await post(transport, b'{"jsonrpc":"2.0","method":"ping"}')

    @pytest.mark.asyncio
    async def test_handler_exception_keeps_202(self, make_transport):
        transport, _ = make_transport()

        def failing_handler(message):
            raise RuntimeError("handler blew up")

        transport.on_message = failing_handler
        await transport.start()

        result = await post(transport, b'{"jsonrpc":"2.0","id":3,"method":"echo"}')

        assert result.status == 202
        assert transport.state is TransportState.OPEN

    @pytest.mark.asyncio
    async def test_async_handler_is_awaited(self, make_transport):
        transport, _ = make_transport()
        seen = []

        async def handler(message):
            await asyncio.sleep(0)
            seen.append(message.method)

        transport.on_message = handler
        await transport.start()

        await post(transport, b'{"jsonrpc":"2.0","method":"ping"}')

        assert seen == ["ping"]


# ============================================================================
# handle_message Tests
# ============================================================================

class TestHandleMessage:
    """Tests for dispatching already-decoded messages."""

    @pytest.mark.asyncio
    async def test_valid_message(self, open_transport, recorder):
        transport, _ = open_transport

        await transport.handle_message({"jsonrpc": "2.0", "method": "ping"})

        assert recorder.messages[0].method == "ping"

    @pytest.mark.asyncio
    async def test_invalid_message(self, open_transport, recorder):
        transport, _ = open_transport

        with pytest.raises(InvalidMessageError):
            await transport.handle_message({"jsonrpc": "2.0"})

        assert recorder.messages == []
        assert isinstance(recorder.errors[0], InvalidMessageError)
