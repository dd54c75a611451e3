"""
SSE Transport Package

This package provides a bidirectional JSON-RPC 2.0 transport built from a
Server-Sent Events stream (server to client) and HTTP POST requests (client
to server).

Usage:
    from sserpc.sse import SseClientTransport, SseServerTransport

    # Server side, inside an ASGI endpoint for the GET request
    transport = SseServerTransport("/message", scope, receive, send)
    await transport.start()
    sessions[transport.session_id] = transport

    # Client side
    client = SseClientTransport("http://localhost:3000/sse")
    client.on_message = print
    await client.start()
    await client.send({"jsonrpc": "2.0", "id": 1, "method": "ping"})
"""

from .sse_base import (
    AlreadyStartedError,
    ClientConfig,
    EndpointOriginError,
    InvalidMessageError,
    MessageError,
    MessageParseError,
    NotConnectedError,
    SendAbortedError,
    SendError,
    ServerConfig,
    ServerSentEvent,
    SseConnectionError,
    SseEventParser,
    SseFraming,
    SseTransportError,
    SseWriteError,
    StreamNotEstablishedError,
    Transport,
    TransportState,
    TransportStateError,
    UnsupportedContentTypeError,
)
from .sse_client import SseClientTransport
from .sse_messages import (
    ErrorObject,
    JSONRPC_VERSION,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    dump_message,
    parse_message,
    parse_message_json,
    serialize_message,
)
from .sse_server import SseServerTransport


__all__ = [
    # Base module exports
    "AlreadyStartedError",
    "ClientConfig",
    "EndpointOriginError",
    "InvalidMessageError",
    "MessageError",
    "MessageParseError",
    "NotConnectedError",
    "SendAbortedError",
    "SendError",
    "ServerConfig",
    "ServerSentEvent",
    "SseConnectionError",
    "SseEventParser",
    "SseFraming",
    "SseTransportError",
    "SseWriteError",
    "StreamNotEstablishedError",
    "Transport",
    "TransportState",
    "TransportStateError",
    "UnsupportedContentTypeError",
    # Message schema exports
    "ErrorObject",
    "JSONRPC_VERSION",
    "JSONRPCErrorResponse",
    "JSONRPCMessage",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "dump_message",
    "parse_message",
    "parse_message_json",
    "serialize_message",
    # Transports
    "SseClientTransport",
    "SseServerTransport",
]
