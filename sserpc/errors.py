"""
Error definitions for the SSE RPC demo application.

This module defines custom exception classes for errors raised by the
application layer around the transport: configuration, session routing and
server startup.
"""


class SseRpcError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, session_id: str = None):
        """
        Initialize the application error.

        Args:
            message: Error message
            session_id: Session the error relates to (optional)
        """
        self.message = message
        self.session_id = session_id
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with session id if available."""
        if self.session_id:
            return f"[{self.session_id}] {self.message}"
        return self.message


class SessionNotFoundError(SseRpcError):
    """No open session matches the requested session id."""

    def __init__(self, session_id: str):
        super().__init__("Session not found", session_id)


class ServerStartupError(SseRpcError):
    """Error during server startup."""

    def __init__(self, message: str, host: str = None, port: int = None):
        """
        Initialize the server startup error.

        Args:
            message: Error message
            host: Host address the server tried to bind (optional)
            port: Port number where startup failed (optional)
        """
        self.host = host
        self.port = port
        super().__init__(message)

    def _format_message(self) -> str:
        """Format the error message with the bind address if available."""
        base_message = super()._format_message()
        if self.port:
            return f"{base_message} (address: {self.host or '0.0.0.0'}:{self.port})"
        return base_message


class ConfigError(SseRpcError):
    """Error in configuration."""

    def __init__(self, message: str, config_key: str = None):
        """
        Initialize the configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error (optional)
        """
        self.config_key = config_key
        super().__init__(message)

    def _format_message(self) -> str:
        """Format the error message with config key if available."""
        base_message = super()._format_message()
        if self.config_key:
            return f"{base_message} (config: {self.config_key})"
        return base_message
