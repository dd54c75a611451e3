"""
Session table for the demo server.

Maps session ids to the server transports that own the open SSE streams, so
that inbound POST requests can be routed to the right stream.
"""

import logging
from typing import Dict, List, Optional

from .errors import SessionNotFoundError
from .sse import SseServerTransport


logger = logging.getLogger(__name__)


class SessionRegistry:
    """Registry of open server transports keyed by session id."""

    def __init__(self):
        self._sessions: Dict[str, SseServerTransport] = {}

    def add(self, transport: SseServerTransport) -> None:
        """Register a transport after its stream has been started."""
        self._sessions[transport.session_id] = transport
        logger.info(
            f"Registered session {transport.session_id} ({len(self._sessions)} active)",
            extra={"session_id": transport.session_id},
        )

    def remove(self, session_id: str) -> Optional[SseServerTransport]:
        """Remove a session; returns the transport if it was registered."""
        transport = self._sessions.pop(session_id, None)
        if transport is not None:
            logger.info(
                f"Removed session {session_id} ({len(self._sessions)} active)",
                extra={"session_id": session_id},
            )
        return transport

    def get(self, session_id: str) -> Optional[SseServerTransport]:
        """Get the transport for a session, or None."""
        return self._sessions.get(session_id)

    def get_or_raise(self, session_id: str) -> SseServerTransport:
        """
        Get the transport for a session.

        Raises:
            SessionNotFoundError: If no such session is registered
        """
        transport = self._sessions.get(session_id)
        if transport is None:
            raise SessionNotFoundError(session_id)
        return transport

    def session_ids(self) -> List[str]:
        """Get the ids of all registered sessions."""
        return list(self._sessions)

    def transports(self) -> List[SseServerTransport]:
        """Get a snapshot of all registered transports."""
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
