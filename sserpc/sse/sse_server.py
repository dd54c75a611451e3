"""
SSE Server Transport

Sends messages to one peer over a Server-Sent Events stream and receives
messages from that peer through separate HTTP POST requests. The surrounding
HTTP layer keeps a table of transports keyed by ``session_id`` and routes each
POST to the matching instance's ``handle_post_message``.
"""

import asyncio
import logging
import uuid
from typing import Any, Optional
from urllib.parse import quote

from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.types import Receive, Scope, Send

from .sse_base import (
    AlreadyStartedError,
    CloseHandler,
    ErrorHandler,
    MessageError,
    MessageHandler,
    NotConnectedError,
    ServerConfig,
    SseFraming,
    SseWriteError,
    StreamNotEstablishedError,
    Transport,
    TransportState,
    UnsupportedContentTypeError,
)
from .sse_messages import MessageLike, parse_message, parse_message_json, serialize_message


# Configure logging
logger = logging.getLogger(__name__)

# Characters left unescaped by JavaScript's encodeURI
_URI_SAFE = ";,/?:@&=+$!*'()#"


class SseServerTransport(Transport):
    """
    Server-side transport bound to a single SSE response.

    The instance is created for the GET request that opens the stream and
    writes directly to that request's ASGI ``send`` channel.
    """

    def __init__(
        self,
        endpoint: str,
        scope: Scope,
        receive: Receive,
        send: Send,
        config: Optional[ServerConfig] = None,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_close: Optional[CloseHandler] = None,
    ):
        """
        Initialize the server transport.

        Args:
            endpoint: Relative or absolute URL where the client should POST messages
            scope: ASGI scope of the stream request
            receive: ASGI receive channel of the stream request
            send: ASGI send channel of the stream request
            config: Optional configuration (uses defaults if not provided)
            on_message: Called with each validated inbound message
            on_error: Called with rejected input and stream failures
            on_close: Called once when the stream closes
        """
        super().__init__(on_message, on_error, on_close)
        self.config = config or ServerConfig()
        self._endpoint = endpoint
        self._scope = scope
        self._receive = receive
        self._stream: Optional[Send] = send
        self._session_id = str(uuid.uuid4())
        self._disconnect_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()

    @property
    def session_id(self) -> str:
        """Session ID used to route inbound POST requests to this transport."""
        return self._session_id

    @property
    def endpoint_url(self) -> str:
        """Address advertised in the handshake event."""
        return f"{quote(self._endpoint, safe=_URI_SAFE)}?sessionId={self._session_id}"

    async def start(self) -> None:
        """
        Open the event stream and push the endpoint event.

        Raises:
            AlreadyStartedError: If the transport was started before
            SseWriteError: If the stream could not be written
        """
        if self._state is not TransportState.IDLE:
            raise AlreadyStartedError("SSE server already started!")

        self._state = TransportState.OPEN
        headers = {
            "content-type": "text/event-stream",
            "cache-control": "no-cache",
            "connection": "keep-alive",
        }
        headers.update({k.lower(): v for k, v in self.config.extra_headers.items()})

        try:
            await self._write({
                "type": "http.response.start",
                "status": 200,
                "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()],
            })
            await self._write_event("endpoint", self.endpoint_url)
        except SseWriteError:
            await self._mark_closed()
            raise

        self._disconnect_task = asyncio.create_task(self._watch_disconnect())
        logger.info(
            f"SSE stream opened for session {self._session_id}",
            extra={"session_id": self._session_id},
        )

    async def wait_closed(self) -> None:
        """Wait until the stream is closed by either side."""
        await self._closed.wait()

    async def handle_post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        """
        Handle an inbound POST carrying one message.

        The request is acknowledged with 202 before the message handler runs,
        so handler failures never change the status the sender sees.

        Raises:
            StreamNotEstablishedError: If the push stream is not open
        """
        if self._state is not TransportState.OPEN:
            error = StreamNotEstablishedError()
            await PlainTextResponse(error.message, status_code=500)(scope, receive, send)
            raise error

        request = Request(scope, receive)
        try:
            body = await request.body()
            content_type = request.headers.get("content-type")
            if not content_type or "application/json" not in content_type:
                raise UnsupportedContentTypeError(content_type)
            message = parse_message_json(body)
        except MessageError as e:
            logger.warning(
                f"Rejected message for session {self._session_id}: {e}",
                extra={"session_id": self._session_id},
            )
            await PlainTextResponse(f"Invalid message: {e}", status_code=400)(scope, receive, send)
            await self._emit_error(e)
            return

        await PlainTextResponse("Accepted", status_code=202)(scope, receive, send)
        logger.debug(
            f"Session {self._session_id} received {message.kind}",
            extra={"session_id": self._session_id},
        )
        await self._emit_message(message)

    async def handle_message(self, raw: Any) -> None:
        """
        Validate and dispatch a message, regardless of how it arrived.

        Raises:
            InvalidMessageError: If the value is not a valid message
        """
        try:
            message = parse_message(raw)
        except MessageError as e:
            await self._emit_error(e)
            raise

        await self._emit_message(message)

    async def send(self, message: MessageLike) -> None:
        """
        Push a message to the peer as one ``message`` event.

        Raises:
            NotConnectedError: If the stream is not open
            SseWriteError: If the write failed
        """
        if self._state is not TransportState.OPEN:
            raise NotConnectedError()

        payload = serialize_message(message)
        try:
            await self._write_event("message", payload)
        except SseWriteError as e:
            await self._emit_error(e)
            raise

    async def close(self) -> None:
        """End the stream if it is still held and notify ``on_close`` once."""
        if self._stream is not None and self._state is TransportState.OPEN:
            try:
                await self._stream({"type": "http.response.body", "body": b"", "more_body": False})
            except Exception as e:
                logger.warning(
                    f"Ending stream for session {self._session_id} failed: {e}",
                    extra={"session_id": self._session_id},
                )

        await self._mark_closed()

    async def _write_event(self, event: str, data: str) -> None:
        frame = SseFraming.encode_event(event, data, self.config.encoding)
        await self._write({"type": "http.response.body", "body": frame, "more_body": True})

    async def _write(self, message: dict) -> None:
        if self._stream is None:
            raise NotConnectedError()
        try:
            await self._stream(message)
        except Exception as e:
            raise SseWriteError(f"Failed to write to SSE stream: {e}") from e

    async def _watch_disconnect(self) -> None:
        try:
            while True:
                message = await self._receive()
                if message["type"] == "http.disconnect":
                    break

            logger.info(
                f"SSE client disconnected for session {self._session_id}",
                extra={"session_id": self._session_id},
            )
        except Exception as e:
            logger.warning(
                f"Receive failed for session {self._session_id}: {e}",
                extra={"session_id": self._session_id},
            )
        finally:
            await self._mark_closed()

    async def _mark_closed(self) -> None:
        if self._state is TransportState.CLOSED:
            return

        self._state = TransportState.CLOSED
        self._stream = None
        self._closed.set()

        task = self._disconnect_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        logger.info(
            f"SSE stream closed for session {self._session_id}",
            extra={"session_id": self._session_id},
        )
        await self._emit_close()


# Export symbols
__all__ = [
    "SseServerTransport",
]
