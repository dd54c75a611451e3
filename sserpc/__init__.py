"""
SSE RPC Package

JSON-RPC 2.0 over Server-Sent Events with HTTP POST for the reverse
direction, plus a demo server and scripted client built on the transport.
"""

from .config import Config
from .errors import (
    ConfigError,
    ServerStartupError,
    SessionNotFoundError,
    SseRpcError,
)
from .sessions import SessionRegistry
from .sse import SseClientTransport, SseServerTransport

__version__ = "1.0.0"
__all__ = [
    "Config",
    "ConfigError",
    "ServerStartupError",
    "SessionNotFoundError",
    "SessionRegistry",
    "SseClientTransport",
    "SseRpcError",
    "SseServerTransport",
]
