"""
Scripted request handling for the demo server.

Each inbound request is answered on the stream of the session it arrived on.
Request ids are echoed back unchanged.
"""

import asyncio
import logging
from typing import Any, Optional

from .sessions import SessionRegistry
from .sse import (
    ErrorObject,
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    SseServerTransport,
    SseTransportError,
)


logger = logging.getLogger(__name__)

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
TEST_ERROR = -32000

DEFAULT_DELAY_MS = 1000


def make_result(request_id: Any, result: Any) -> JSONRPCResponse:
    """Create a JSON-RPC success response."""
    return JSONRPCResponse(jsonrpc="2.0", id=request_id, result=result)


def make_error(request_id: Any, code: int, message: str) -> JSONRPCErrorResponse:
    """Create a JSON-RPC error response."""
    return JSONRPCErrorResponse(
        jsonrpc="2.0",
        id=request_id,
        error=ErrorObject(code=code, message=message),
    )


def make_notification(method: str, params: Optional[Any] = None) -> JSONRPCNotification:
    """Create a JSON-RPC notification."""
    if params is None:
        return JSONRPCNotification(jsonrpc="2.0", method=method)
    return JSONRPCNotification(jsonrpc="2.0", method=method, params=params)


class DemoDispatcher:
    """
    Answers the demo methods: ``echo``, ``error``, ``broadcast`` and ``delay``.

    Notifications are processed but never answered. Unknown methods sent as
    requests get a "Method not found" error.
    """

    def __init__(self, sessions: SessionRegistry, max_delay_ms: int = 10000):
        """
        Initialize the dispatcher.

        Args:
            sessions: Registry used to reach every client for ``broadcast``
            max_delay_ms: Upper bound for the ``delay`` method
        """
        self.sessions = sessions
        self.max_delay_ms = max_delay_ms

    async def handle(self, transport: SseServerTransport, message: Any) -> None:
        """
        Handle one validated message received on ``transport``.

        Args:
            transport: Transport the message arrived on; replies go here
            message: Validated JSON-RPC message
        """
        if not isinstance(message, (JSONRPCRequest, JSONRPCNotification)):
            logger.debug(
                f"Ignoring {message.kind} from session {transport.session_id}",
                extra={"session_id": transport.session_id},
            )
            return

        request_id = message.id if isinstance(message, JSONRPCRequest) else None
        method = message.method
        params = message.params

        if method == "echo":
            if request_id is not None:
                await transport.send(make_result(request_id, params))

        elif method == "error":
            if request_id is not None:
                await transport.send(make_error(request_id, TEST_ERROR, "Test error response"))

        elif method == "broadcast":
            await self._handle_broadcast(transport, request_id, params)

        elif method == "delay":
            await self._handle_delay(transport, request_id, params)

        elif request_id is not None:
            await transport.send(
                make_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
            )

        else:
            logger.debug(
                f"Notification {method!r} from session {transport.session_id}",
                extra={"session_id": transport.session_id},
            )

    async def _handle_broadcast(
        self,
        transport: SseServerTransport,
        request_id: Any,
        params: Any,
    ) -> None:
        """Push a ``broadcast`` notification to every open session."""
        if not isinstance(params, dict) or "message" not in params:
            if request_id is not None:
                await transport.send(
                    make_error(request_id, INVALID_PARAMS, "broadcast requires params.message")
                )
            return

        notification = make_notification("broadcast", {"message": params["message"]})
        recipients = self.sessions.transports()
        for connection in recipients:
            try:
                await connection.send(notification)
            except SseTransportError as e:
                logger.warning(
                    f"Broadcast to session {connection.session_id} failed: {e}",
                    extra={"session_id": connection.session_id},
                )

        if request_id is not None:
            await transport.send(
                make_result(request_id, {"success": True, "recipients": len(recipients)})
            )

    async def _handle_delay(
        self,
        transport: SseServerTransport,
        request_id: Any,
        params: Any,
    ) -> None:
        """Answer after sleeping ``params.ms`` milliseconds."""
        delay_ms = DEFAULT_DELAY_MS
        if isinstance(params, dict) and "ms" in params:
            delay_ms = params["ms"]

        if isinstance(delay_ms, bool) or not isinstance(delay_ms, (int, float)) or delay_ms < 0:
            if request_id is not None:
                await transport.send(
                    make_error(request_id, INVALID_PARAMS, "delay requires a non-negative params.ms")
                )
            return

        delay_ms = min(delay_ms, self.max_delay_ms)
        await asyncio.sleep(delay_ms / 1000)

        if request_id is not None:
            await transport.send(make_result(request_id, {"delayed": True, "ms": delay_ms}))
