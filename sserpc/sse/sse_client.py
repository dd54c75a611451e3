"""
SSE Client Transport

Receives messages over a Server-Sent Events stream and sends messages as
separate HTTP POST requests to the endpoint the server announces in its
``endpoint`` handshake event.
"""

import asyncio
import contextlib
import logging
from typing import Optional, Set, Tuple, Union

import httpx

from .sse_base import (
    AlreadyStartedError,
    ClientConfig,
    CloseHandler,
    EndpointOriginError,
    ErrorHandler,
    MessageError,
    MessageHandler,
    NotConnectedError,
    SendAbortedError,
    SendError,
    ServerSentEvent,
    SseConnectionError,
    SseEventParser,
    SseTransportError,
    Transport,
    TransportState,
)
from .sse_messages import MessageLike, parse_message_json, serialize_message


# Configure logging
logger = logging.getLogger(__name__)


def _origin(url: httpx.URL) -> Tuple[str, str, Optional[int]]:
    return (url.scheme, url.host, url.port)


def _format_origin(url: httpx.URL) -> str:
    origin = f"{url.scheme}://{url.host}"
    if url.port is not None:
        origin += f":{url.port}"
    return origin


class SseClientTransport(Transport):
    """
    Client-side transport for an SSE server.

    ``start()`` returns once the endpoint event has arrived and been checked
    against the connection origin. All in-flight sends are aborted when the
    transport closes.
    """

    def __init__(
        self,
        url: Union[str, httpx.URL],
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_close: Optional[CloseHandler] = None,
    ):
        """
        Initialize the client transport.

        Args:
            url: URL of the server's SSE endpoint
            config: Optional client configuration
            http_client: Optional shared HTTP client; one is created and owned otherwise
            on_message: Called with each validated inbound message
            on_error: Called with rejected input, stream and send failures
            on_close: Called once when the transport closes
        """
        super().__init__(on_message, on_error, on_close)
        self.config = config or ClientConfig()
        self._url = httpx.URL(str(url))
        self._http_client = http_client
        self._owns_client = http_client is None
        self._endpoint: Optional[httpx.URL] = None
        self._response: Optional[httpx.Response] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._handshake: Optional[asyncio.Future] = None
        self._inflight: Set[asyncio.Task] = set()
        self._aborted = False

        logger.info(f"SseClientTransport initialized for {self._url}")

    @property
    def url(self) -> httpx.URL:
        """URL of the SSE stream."""
        return self._url

    @property
    def endpoint(self) -> Optional[httpx.URL]:
        """Resolved POST endpoint, or None before the handshake completes."""
        return self._endpoint

    async def start(self) -> None:
        """
        Open the event stream and wait for the endpoint event.

        Raises:
            AlreadyStartedError: If the transport was started before
            SseConnectionError: If the stream failed before the handshake
            EndpointOriginError: If the announced endpoint is on another origin
        """
        if self._state is not TransportState.IDLE:
            raise AlreadyStartedError("SSE client already started!")

        self._state = TransportState.CONNECTING
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.config.request_timeout,
                    connect=self.config.connect_timeout,
                ),
            )

        self._handshake = asyncio.get_running_loop().create_future()
        self._reader_task = asyncio.create_task(self._read_stream())

        try:
            await asyncio.wait_for(self._handshake, timeout=self.config.handshake_timeout)
        except asyncio.TimeoutError:
            error = SseConnectionError(
                f"Timed out after {self.config.handshake_timeout}s waiting for endpoint event"
            )
            await self._shutdown(error)
            await self._emit_error(error)
            raise error from None

        logger.info(f"Connected to {self._url}, posting to {self._endpoint}")

    async def send(self, message: MessageLike) -> None:
        """
        POST a message to the handshake endpoint.

        Failures are reported to ``on_error`` and raised.

        Raises:
            NotConnectedError: If the handshake has not completed
            SendError: If the POST failed or was rejected
            SendAbortedError: If the transport closed while the POST was in flight
        """
        if self._endpoint is None:
            raise NotConnectedError()

        payload = serialize_message(message)
        headers = dict(self.config.post_headers)
        headers["content-type"] = "application/json"

        task = asyncio.create_task(
            self._http_client.post(
                self._endpoint,
                content=payload.encode(self.config.encoding),
                headers=headers,
            )
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

        try:
            response = await task
        except asyncio.CancelledError:
            if not self._aborted:
                raise
            error = SendAbortedError("Request aborted: transport closed")
        except httpx.HTTPError as e:
            error = SendError(f"Error POSTing to endpoint: {e}")
        else:
            if response.is_success:
                logger.debug(f"Posted message to {self._endpoint} (HTTP {response.status_code})")
                return
            text = response.text
            error = SendError(
                f"Error POSTing to endpoint (HTTP {response.status_code}): {text}",
                status_code=response.status_code,
                body=text,
            )

        await self._emit_error(error)
        raise error

    async def close(self) -> None:
        """Abort in-flight sends, close the stream and notify ``on_close``."""
        await self._shutdown(SseConnectionError("Transport closed before handshake completed"))

    async def _shutdown(self, handshake_error: SseTransportError) -> None:
        if self._state is TransportState.CLOSED:
            return

        self._state = TransportState.CLOSED
        self._aborted = True
        self._endpoint = None

        for task in list(self._inflight):
            task.cancel()

        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        if self._response is not None:
            await self._response.aclose()
            self._response = None

        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()

        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(handshake_error)

        logger.info(f"SSE client for {self._url} closed")
        await self._emit_close()

    async def _read_stream(self) -> None:
        try:
            await self._consume_stream()
        except SseConnectionError as e:
            await self._fail_stream(e)
        except (httpx.HTTPError, UnicodeDecodeError) as e:
            await self._fail_stream(SseConnectionError(str(e)))
        else:
            await self._fail_stream(SseConnectionError("Stream ended by server"))

    async def _consume_stream(self) -> None:
        request = self._http_client.build_request(
            "GET",
            self._url,
            headers=self.config.headers,
            timeout=httpx.Timeout(
                self.config.request_timeout,
                connect=self.config.connect_timeout,
                read=None,  # No read timeout for SSE
            ),
        )
        response = await self._http_client.send(request, stream=True)
        self._response = response

        if response.status_code != 200:
            raise SseConnectionError(
                f"Non-200 status code ({response.status_code})",
                code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("text/event-stream"):
            raise SseConnectionError(
                f'Invalid content type, expected "text/event-stream" (got {content_type!r})',
                code=response.status_code,
            )

        parser = SseEventParser(self.config.encoding)
        async for chunk in response.aiter_bytes():
            for event in parser.feed(chunk):
                await self._handle_event(event)
                if self._state is TransportState.CLOSED:
                    return

    async def _fail_stream(self, error: SseConnectionError) -> None:
        if self._state is TransportState.CLOSED:
            return

        logger.warning(f"SSE stream from {self._url} failed: {error}")
        await self._emit_error(error)
        await self._shutdown(error)

    async def _handle_event(self, event: ServerSentEvent) -> None:
        if event.event == "endpoint":
            await self._handle_endpoint(event.data)
        elif event.event == "message":
            try:
                message = parse_message_json(event.data)
            except MessageError as e:
                logger.warning(f"Dropping invalid message from {self._url}: {e}")
                await self._emit_error(e)
                return
            await self._emit_message(message)
        else:
            logger.debug(f"Ignoring SSE event of type {event.event!r}")

    async def _handle_endpoint(self, data: str) -> None:
        try:
            endpoint = self._url.join(data)
        except httpx.InvalidURL as e:
            error = EndpointOriginError(f"Invalid endpoint URL {data!r}: {e}")
        else:
            if _origin(endpoint) == _origin(self._url):
                self._endpoint = endpoint
                if self._state is TransportState.CONNECTING:
                    self._state = TransportState.OPEN
                if self._handshake is not None and not self._handshake.done():
                    self._handshake.set_result(None)
                return
            error = EndpointOriginError(
                f"Endpoint origin does not match connection origin: {_format_origin(endpoint)}"
            )

        logger.error(f"Rejecting endpoint from {self._url}: {error}")
        await self._shutdown(error)
        await self._emit_error(error)


# Export symbols
__all__ = [
    "SseClientTransport",
]
