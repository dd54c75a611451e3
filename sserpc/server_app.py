"""
Demo SSE RPC server.

A Starlette application that opens one server transport per SSE connection,
keeps the session table, routes POSTed messages to the right session and
answers the scripted demo methods.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from .config import Config
from .errors import ServerStartupError, SessionNotFoundError
from .handlers import DemoDispatcher
from .sessions import SessionRegistry
from .sse import (
    SseServerTransport,
    SseTransportError,
    StreamNotEstablishedError,
    dump_message,
)


logger = logging.getLogger(__name__)

AsgiHandler = Callable[[Scope, Receive, Send], Awaitable[None]]


class MessageLog:
    """Bounded log of messages received by the server."""

    def __init__(self, max_entries: int = 1000):
        self._entries: deque = deque(maxlen=max_entries)

    def record(self, session_id: str, message: Any) -> None:
        self._entries.append({
            "sessionId": session_id,
            "message": dump_message(message),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class _AsgiEndpoint:
    # Starlette passes raw ASGI arguments to callables that are not functions
    def __init__(self, handler: AsgiHandler):
        self._handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._handler(scope, receive, send)


class SseRpcServer:
    """
    Demo server wiring transports to a session table.

    Attributes:
        sessions: Open server transports keyed by session id
        message_log: Messages received from all sessions
        dispatcher: Scripted handler answering the demo methods
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize the server.

        Args:
            config: Optional configuration (uses defaults if not provided)
        """
        self.config = config or Config()
        self.transport_config = self.config.server_config()
        self.sessions = SessionRegistry()
        self.message_log = MessageLog()
        self.dispatcher = DemoDispatcher(self.sessions, self.config.get_max_delay_ms())

    def build_app(self) -> Starlette:
        """Create the Starlette application."""
        routes = [
            Route(self.transport_config.sse_path, endpoint=_AsgiEndpoint(self.open_stream), methods=["GET"]),
            Route(self.transport_config.message_path, endpoint=_AsgiEndpoint(self.route_message), methods=["POST"]),
            Route("/logs", endpoint=self.logs, methods=["GET"]),
            Route("/connections", endpoint=self.connections, methods=["GET"]),
        ]
        app = Starlette(routes=routes)
        app.state.server = self
        app.state.sessions = self.sessions
        return app

    async def open_stream(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve one SSE connection until either side closes it."""
        logger.info("New SSE connection request")
        transport = SseServerTransport(
            self.transport_config.message_path,
            scope,
            receive,
            send,
            self.transport_config,
        )

        async def on_message(message: Any) -> None:
            logger.info(
                f"Server received {message.kind} from {transport.session_id}",
                extra={"session_id": transport.session_id},
            )
            self.message_log.record(transport.session_id, message)
            await self.dispatcher.handle(transport, message)

        def on_error(error: Exception) -> None:
            logger.warning(
                f"Error on connection {transport.session_id}: {error}",
                extra={"session_id": transport.session_id},
            )

        def on_close() -> None:
            logger.info(
                f"Connection {transport.session_id} closed",
                extra={"session_id": transport.session_id},
            )
            self.sessions.remove(transport.session_id)

        transport.on_message = on_message
        transport.on_error = on_error
        transport.on_close = on_close

        try:
            await transport.start()
        except SseTransportError as e:
            logger.error(f"Error establishing SSE connection: {e}")
            return

        self.sessions.add(transport)
        logger.info(
            f"SSE connection established with sessionId: {transport.session_id}",
            extra={"session_id": transport.session_id},
        )
        await transport.wait_closed()

    async def route_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Route a POSTed message to the session named in the query string."""
        request = Request(scope, receive)
        session_id = request.query_params.get("sessionId")
        if not session_id:
            await PlainTextResponse("Not Found", status_code=404)(scope, receive, send)
            return

        logger.debug(
            f"Received POST message for session {session_id}",
            extra={"session_id": session_id},
        )
        try:
            transport = self.sessions.get_or_raise(session_id)
        except SessionNotFoundError as e:
            logger.warning(str(e), extra={"session_id": session_id})
            await PlainTextResponse("Session not found", status_code=404)(scope, receive, send)
            return

        try:
            await transport.handle_post_message(scope, receive, send)
        except StreamNotEstablishedError as e:
            logger.error(
                f"Error handling POST message for session {session_id}: {e}",
                extra={"session_id": session_id},
            )

    async def logs(self, request: Request) -> JSONResponse:
        """Return every message received so far."""
        return JSONResponse(self.message_log.entries())

    async def connections(self, request: Request) -> JSONResponse:
        """Return the ids of the open sessions."""
        active = self.sessions.session_ids()
        return JSONResponse({"count": len(active), "connections": active})


def create_app(config: Optional[Config] = None) -> Starlette:
    """Create and configure the Starlette application."""
    return SseRpcServer(config).build_app()


async def serve(config: Optional[Config] = None) -> None:
    """
    Run the demo server with uvicorn until it is stopped.

    Raises:
        ServerStartupError: If the server could not bind its address
    """
    config = config or Config()
    host = config.get_server_host()
    port = config.get_server_port()

    server = uvicorn.Server(uvicorn.Config(
        app=create_app(config),
        host=host,
        port=port,
        log_level=config.get_server_log_level(),
        access_log=True,
    ))

    logger.info(f"Server listening on http://{host}:{port}")
    logger.info(f"SSE endpoint: http://{host}:{port}{config.get('server.ssePath')}")

    try:
        await server.serve()
    except (OSError, SystemExit) as e:
        # uvicorn exits the process when it cannot bind
        raise ServerStartupError("Failed to start server", host=host, port=port) from e
