"""
Tests for SSE event framing and the incremental event parser.
"""

import pytest

from sserpc.sse import (
    ClientConfig,
    ServerConfig,
    ServerSentEvent,
    SseEventParser,
    SseFraming,
)


# ============================================================================
# Config Tests
# ============================================================================

class TestConfigDefaults:
    """Tests for the transport configuration dataclasses."""

    def test_server_defaults(self):
        config = ServerConfig()

        assert config.sse_path == "/sse"
        assert config.message_path == "/message"
        assert config.encoding == "utf-8"
        assert config.extra_headers == {}

    def test_client_defaults(self):
        config = ClientConfig()

        assert config.headers == {"Accept": "text/event-stream"}
        assert config.post_headers == {}
        assert config.connect_timeout == 10.0
        assert config.request_timeout == 30.0
        assert config.handshake_timeout == 30.0

    def test_client_headers_are_not_shared(self):
        first = ClientConfig()
        first.headers["Authorization"] = "Bearer x"

        assert "Authorization" not in ClientConfig().headers


# ============================================================================
# SseFraming Tests
# ============================================================================

class TestSseFraming:
    """Tests for encoding event frames."""

    def test_encode_single_line(self):
        frame = SseFraming.encode_event("endpoint", "/message?sessionId=abc")

        assert frame == b"event: endpoint\ndata: /message?sessionId=abc\n\n"

    def test_encode_multi_line(self):
        frame = SseFraming.encode_event("message", "line one\nline two")

        assert frame == b"event: message\ndata: line one\ndata: line two\n\n"

    def test_encode_empty_data(self):
        frame = SseFraming.encode_event("message", "")

        assert frame == b"event: message\ndata: \n\n"

    def test_encode_non_ascii(self):
        frame = SseFraming.encode_event("message", '{"t":"日本"}')

        assert frame == 'event: message\ndata: {"t":"日本"}\n\n'.encode("utf-8")

    @pytest.mark.parametrize("separator", ["\u2028", "\u2029", "\x85", "\x0b", "\x1c"])
    def test_encode_keeps_non_wire_line_breaks(self, separator):
        frame = SseFraming.encode_event("message", "a" + separator + "b")

        assert frame == ("event: message\ndata: a" + separator + "b\n\n").encode("utf-8")

    def test_encode_crlf_and_cr(self):
        frame = SseFraming.encode_event("message", "a\r\nb\rc")

        assert frame == b"event: message\ndata: a\ndata: b\ndata: c\n\n"


# ============================================================================
# SseEventParser Tests
# ============================================================================

class TestSseEventParser:
    """Tests for the incremental event parser."""

    def test_single_event(self):
        parser = SseEventParser()

        events = parser.feed(b"event: endpoint\ndata: /message?sessionId=1\n\n")

        assert events == [ServerSentEvent(event="endpoint", data="/message?sessionId=1")]

    def test_default_event_type(self):
        parser = SseEventParser()

        events = parser.feed(b"data: hello\n\n")

        assert events[0].event == "message"

    def test_chunked_input(self):
        parser = SseEventParser()
        frame = SseFraming.encode_event("message", '{"jsonrpc":"2.0","method":"ping"}')

        events = []
        for i in range(len(frame)):
            events.extend(parser.feed(frame[i:i + 1]))

        assert len(events) == 1
        assert events[0].data == '{"jsonrpc":"2.0","method":"ping"}'
        assert not parser.has_buffered_data()

    def test_multibyte_character_split_across_chunks(self):
        parser = SseEventParser()
        frame = "data: é\n\n".encode("utf-8")
        split = frame.index(b"\xa9")

        assert parser.feed(frame[:split]) == []
        events = parser.feed(frame[split:])

        assert events[0].data == "é"

    def test_multiple_events_in_one_chunk(self):
        parser = SseEventParser()

        events = parser.feed(b"data: one\n\ndata: two\n\n")

        assert [e.data for e in events] == ["one", "two"]

    def test_crlf_line_endings(self):
        parser = SseEventParser()

        events = parser.feed(b"event: message\r\ndata: x\r\n\r\n")

        assert events == [ServerSentEvent(event="message", data="x")]

    def test_crlf_split_between_chunks(self):
        parser = SseEventParser()

        assert parser.feed(b"data: x\r") == []
        assert parser.feed(b"\n\r") == []
        events = parser.feed(b"\n")

        assert [e.data for e in events] == ["x"]

    def test_cr_line_endings(self):
        parser = SseEventParser()

        events = parser.feed(b"data: x\r\rdata: y\r\r ")

        assert [e.data for e in events] == ["x", "y"]

    def test_comments_are_ignored(self):
        parser = SseEventParser()

        events = parser.feed(b": keep-alive\n\ndata: x\n\n")

        assert [e.data for e in events] == ["x"]

    def test_multi_line_data(self):
        parser = SseEventParser()

        events = parser.feed(b"data: first\ndata: second\n\n")

        assert events[0].data == "first\nsecond"

    def test_only_one_leading_space_is_stripped(self):
        parser = SseEventParser()

        events = parser.feed(b"data:  padded\ndata:tight\n\n")

        assert events[0].data == " padded\ntight"

    def test_id_and_retry(self):
        parser = SseEventParser()

        events = parser.feed(b"id: 42\nretry: 3000\ndata: x\n\ndata: y\n\n")

        assert events[0].id == "42"
        assert events[0].retry == 3000
        assert events[1].id == "42"
        assert events[1].retry is None
        assert parser.last_event_id == "42"

    def test_invalid_retry_is_ignored(self):
        parser = SseEventParser()

        events = parser.feed(b"retry: soon\ndata: x\n\n")

        assert events[0].retry is None

    def test_blank_line_without_data_dispatches_nothing(self):
        parser = SseEventParser()

        assert parser.feed(b"event: endpoint\n\n") == []
        events = parser.feed(b"data: x\n\n")

        assert events[0].event == "message"

    def test_unknown_fields_are_ignored(self):
        parser = SseEventParser()

        events = parser.feed(b"foo: bar\ndata: x\n\n")

        assert events == [ServerSentEvent(data="x")]

    def test_reset(self):
        parser = SseEventParser()
        parser.feed(b"event: endpoint\ndata: partial")

        assert parser.has_buffered_data()
        parser.reset()
        assert not parser.has_buffered_data()

        events = parser.feed(b"data: fresh\n\n")
        assert events == [ServerSentEvent(data="fresh")]

    @pytest.mark.parametrize("data", [
        "/message?sessionId=1",
        '{"jsonrpc":"2.0","id":1,"result":{"a":[1,2]}}',
        "two\nlines",
        '{"jsonrpc":"2.0","id":1,"method":"echo","params":{"t":"a\u2028b"}}',
        '{"jsonrpc":"2.0","id":1,"method":"echo","params":{"t":"a\u2029b"}}',
        '{"jsonrpc":"2.0","id":1,"method":"echo","params":{"t":"a\x85b"}}',
        "trailing newline\n",
    ])
    def test_parses_encoded_frames(self, data):
        parser = SseEventParser()

        events = parser.feed(SseFraming.encode_event("message", data))

        assert events == [ServerSentEvent(event="message", data=data)]
