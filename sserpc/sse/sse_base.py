"""
SSE Transport Base

This module provides the shared infrastructure for the Server-Sent Events
transport: the abstract transport contract, configuration for both halves,
event framing and incremental stream parsing, and the transport error classes.
"""

import codecs
import inspect
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


# Configure logging
logger = logging.getLogger(__name__)


class TransportState(Enum):
    """Transport lifecycle state."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class ServerConfig:
    """Configuration for the server-side SSE transport."""

    # Endpoint paths
    sse_path: str = "/sse"
    message_path: str = "/message"

    encoding: str = "utf-8"

    # Added to the stream response headers
    extra_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ClientConfig:
    """Configuration for the client-side SSE transport."""

    # Headers for the stream GET request
    headers: Dict[str, str] = field(default_factory=lambda: {
        "Accept": "text/event-stream",
    })

    # Headers merged into every outbound POST
    post_headers: Dict[str, str] = field(default_factory=dict)

    # Timeout settings
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    handshake_timeout: Optional[float] = 30.0

    encoding: str = "utf-8"


@dataclass
class ServerSentEvent:
    """A single event decoded from an SSE stream."""
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


_LINE_END = re.compile(r"\r\n|\r|\n")


class SseFraming:
    """Handles event framing for the push stream."""

    @staticmethod
    def encode_event(event: str, data: str, encoding: str = "utf-8") -> bytes:
        """
        Encode one event frame.

        Args:
            event: Event type written in the ``event:`` field
            data: Payload; each line becomes its own ``data:`` field
            encoding: Text encoding for the frame

        Returns:
            Encoded frame as bytes, terminated by a blank line
        """
        # Only CR and LF end a line on the wire
        lines = _LINE_END.split(data)
        frame = f"event: {event}\n"
        frame += "".join(f"data: {line}\n" for line in lines)
        return (frame + "\n").encode(encoding)


class SseEventParser:
    """
    Incremental parser for Server-Sent Events streams.

    Bytes are fed in arbitrary chunks; complete events are returned as soon
    as their terminating blank line has been seen.
    """

    def __init__(self, encoding: str = "utf-8"):
        """
        Initialize the event parser.

        Args:
            encoding: Text encoding of the stream
        """
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)()
        self._buffer = ""
        self._reset_event()
        self.last_event_id: Optional[str] = None

    def _reset_event(self) -> None:
        self._event_type = ""
        self._data: List[str] = []
        self._retry: Optional[int] = None

    def feed(self, data: bytes) -> List[ServerSentEvent]:
        """
        Feed raw bytes to the parser.

        Args:
            data: Raw byte chunk from the stream

        Returns:
            List of events completed by this chunk
        """
        events = []
        self._buffer += self._decoder.decode(data)

        while True:
            match = _LINE_END.search(self._buffer)
            if match is None:
                break
            # A trailing CR may be the first half of a CRLF
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            line = self._buffer[:match.start()]
            self._buffer = self._buffer[match.end():]

            event = self.feed_line(line)
            if event is not None:
                events.append(event)

        return events

    def feed_line(self, line: str) -> Optional[ServerSentEvent]:
        """
        Process one line without its terminator.

        Returns:
            The dispatched event when ``line`` is blank and data was collected
        """
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event_type = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        else:
            logger.debug(f"Ignoring unknown SSE field: {name!r}")

        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._reset_event()
            return None

        event = ServerSentEvent(
            event=self._event_type or "message",
            data="\n".join(self._data),
            id=self.last_event_id,
            retry=self._retry,
        )
        self._reset_event()
        return event

    def reset(self) -> None:
        """Reset the parser buffer and any partially collected event."""
        self._decoder.reset()
        self._buffer = ""
        self._reset_event()

    def has_buffered_data(self) -> bool:
        """Check if there's data waiting for a line or event terminator."""
        return bool(self._buffer) or bool(self._data)


MessageHandler = Callable[[Any], Any]
ErrorHandler = Callable[[Exception], Any]
CloseHandler = Callable[[], Any]


class Transport(ABC):
    """
    Minimal contract for a transport a client or server communicates over.

    Observers are plain attributes and may be plain functions or coroutine
    functions. Exceptions raised by an observer are logged, never propagated
    into the transport.
    """

    def __init__(
        self,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_close: Optional[CloseHandler] = None,
    ):
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self._state = TransportState.IDLE

    @abstractmethod
    async def start(self) -> None:
        """Start processing messages on the transport."""

    @abstractmethod
    async def send(self, message: Any) -> None:
        """Send a JSON-RPC message."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    @property
    def state(self) -> TransportState:
        """Get the current lifecycle state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if the transport can send."""
        return self._state is TransportState.OPEN

    async def _emit(self, name: str, handler: Optional[Callable], *args: Any) -> None:
        """Invoke an observer, awaiting it when it returns an awaitable."""
        if handler is None:
            return
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Error in {name} handler")

    async def _emit_message(self, message: Any) -> None:
        await self._emit("on_message", self.on_message, message)

    async def _emit_error(self, error: Exception) -> None:
        await self._emit("on_error", self.on_error, error)

    async def _emit_close(self) -> None:
        await self._emit("on_close", self.on_close)


class SseTransportError(Exception):
    """Base exception for SSE transport errors."""

    def __init__(self, message: str, data: Any = None):
        self.message = message
        self.data = data
        super().__init__(message)


class TransportStateError(SseTransportError):
    """Operation invoked in the wrong lifecycle state."""


class AlreadyStartedError(TransportStateError):
    """start() called on a transport that is no longer idle."""


class NotConnectedError(TransportStateError):
    """Operation requires an open connection."""

    def __init__(self, message: str = "Not connected", data: Any = None):
        super().__init__(message, data)


class StreamNotEstablishedError(TransportStateError):
    """Inbound message for a session whose push stream is not open."""

    def __init__(self, message: str = "SSE connection not established", data: Any = None):
        super().__init__(message, data)


class MessageError(SseTransportError):
    """Inbound content rejected before reaching the message handler."""

    code = -32600


class MessageParseError(MessageError):
    """Body is not valid JSON."""

    code = -32700


class InvalidMessageError(MessageError):
    """Body is JSON but not a valid JSON-RPC 2.0 message."""


class UnsupportedContentTypeError(MessageError):
    """Request declared a content type other than JSON."""

    def __init__(self, content_type: Optional[str]):
        """
        Initialize the content type error.

        Args:
            content_type: The declared content type, if any
        """
        self.content_type = content_type
        super().__init__(f"Unsupported content-type: {content_type}")


class SseConnectionError(SseTransportError):
    """The push stream failed or could not be opened."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        """
        Initialize the connection error.

        Args:
            message: Error message
            code: HTTP status code of the stream response, when there was one
            data: Optional extra detail
        """
        self.code = code
        super().__init__(f"SSE error: {message}", data)


class SseWriteError(SseTransportError):
    """Writing a frame to the push stream failed."""


class SendError(SseTransportError):
    """An outbound POST failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        """
        Initialize the send error.

        Args:
            message: Error message
            status_code: HTTP status of the rejected POST, if a response arrived
            body: Response body text, if it could be read
        """
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class SendAbortedError(SendError):
    """An in-flight POST was cancelled because the transport closed."""


class EndpointOriginError(SseTransportError):
    """Handshake endpoint does not share the connection's origin."""


# Export symbols
__all__ = [
    "TransportState",
    "ServerConfig",
    "ClientConfig",
    "ServerSentEvent",
    "SseFraming",
    "SseEventParser",
    "MessageHandler",
    "ErrorHandler",
    "CloseHandler",
    "Transport",
    "SseTransportError",
    "TransportStateError",
    "AlreadyStartedError",
    "NotConnectedError",
    "StreamNotEstablishedError",
    "MessageError",
    "MessageParseError",
    "InvalidMessageError",
    "UnsupportedContentTypeError",
    "SseConnectionError",
    "SseWriteError",
    "SendError",
    "SendAbortedError",
    "EndpointOriginError",
]
