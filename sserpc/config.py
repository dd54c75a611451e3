"""
Configuration handling for the SSE RPC demo application.

This module provides functionality to load, validate, and manage
configuration from JSON files and environment variables, and to build the
transport configuration objects from it.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError
from .sse import ClientConfig, ServerConfig


logger = logging.getLogger(__name__)


class Config:
    """Configuration manager for the demo server and client."""

    # Default configuration values
    DEFAULT_CONFIG = {
        "server": {
            "host": "127.0.0.1",
            "port": 3000,
            "ssePath": "/sse",
            "messagePath": "/message",
            "logLevel": "info"
        },
        "client": {
            "url": "http://localhost:3000/sse",
            "connectTimeout": 10.0,
            "requestTimeout": 30.0,
            "handshakeTimeout": 30.0
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None
        },
        "demo": {
            "maxDelayMs": 10000
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to configuration file (optional)
        """
        self.config: Dict[str, Any] = {}
        self.config_path = config_path
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables."""
        # Start with defaults
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path:
            self._load_from_file(self.config_path)

        # Override with environment variables
        self._load_from_env()

        self._validate_config()

        logger.info(f"Configuration loaded from {self.config_path or 'defaults'}")

    def _load_from_file(self, config_path: str) -> None:
        """
        Load configuration from JSON file.

        Args:
            config_path: Path to configuration file

        Raises:
            ConfigError: If file cannot be read or parsed
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return

        try:
            with open(path, 'r') as f:
                file_config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to load config file: {e}")

        if not isinstance(file_config, dict):
            raise ConfigError("Config file must contain a JSON object")

        self._merge_config(self.config, file_config)
        logger.info(f"Loaded configuration from {config_path}")

    def _load_from_env(self) -> None:
        """Load configuration overrides from environment variables."""
        env_mappings = {
            "SSERPC_SERVER_HOST": ("server.host", "string"),
            "SSERPC_SERVER_PORT": ("server.port", "int"),
            "SSERPC_SSE_PATH": ("server.ssePath", "string"),
            "SSERPC_MESSAGE_PATH": ("server.messagePath", "string"),
            "SSERPC_SERVER_LOG_LEVEL": ("server.logLevel", "string"),
            "SSERPC_CLIENT_URL": ("client.url", "string"),
            "SSERPC_HANDSHAKE_TIMEOUT": ("client.handshakeTimeout", "float"),
            "SSERPC_REQUEST_TIMEOUT": ("client.requestTimeout", "float"),
            "SSERPC_LOGGING_LEVEL": ("logging.level", "string"),
            "SSERPC_LOGGING_FORMAT": ("logging.format", "string"),
            "SSERPC_LOGGING_FILE": ("logging.file", "string"),
            "SSERPC_MAX_DELAY_MS": ("demo.maxDelayMs", "int")
        }

        for env_var, (config_path, value_type) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                try:
                    parsed_value = self._parse_env_value(value, value_type)
                    self._set_nested_value(self.config, config_path, parsed_value)
                    logger.debug(f"Loaded {env_var}={value}")
                except ValueError as e:
                    logger.warning(f"Failed to parse {env_var}: {e}")

    def _parse_env_value(self, value: str, value_type: str) -> Any:
        """
        Parse environment variable value based on type.

        Args:
            value: String value from environment
            value_type: Type to parse to (string, int, float)

        Returns:
            Parsed value

        Raises:
            ValueError: If value cannot be parsed
        """
        if value_type == "string":
            return value
        elif value_type == "int":
            return int(value)
        elif value_type == "float":
            return float(value)
        else:
            raise ValueError(f"Unknown value type: {value_type}")

    def _merge_config(self, base: Dict, override: Dict) -> None:
        """
        Recursively merge override config into base config.

        Args:
            base: Base configuration dictionary (modified in place)
            override: Override configuration dictionary
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _set_nested_value(self, config: Dict, path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = path.split(".")
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: If configuration is invalid
        """
        host = self.get("server.host")
        if not isinstance(host, str) or not host:
            raise ConfigError(f"Invalid server host: {host}", "server.host")

        port = self.get("server.port")
        if not isinstance(port, int) or not (0 <= port <= 65535):
            raise ConfigError(f"Server port must be between 0-65535, got: {port}", "server.port")

        for key in ("server.ssePath", "server.messagePath"):
            path = self.get(key)
            if not isinstance(path, str) or not path.startswith("/"):
                raise ConfigError(f"Path must start with '/', got: {path}", key)

        if self.get("server.ssePath") == self.get("server.messagePath"):
            raise ConfigError("SSE path and message path must differ", "server.messagePath")

        valid_levels = ("debug", "info", "warning", "error", "critical")
        for key in ("server.logLevel", "logging.level"):
            level = self.get(key)
            if not isinstance(level, str) or level.lower() not in valid_levels:
                raise ConfigError(f"Invalid log level: {level}", key)

        for key in ("client.connectTimeout", "client.requestTimeout"):
            timeout = self.get(key)
            if not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigError(f"Timeout must be a positive number, got: {timeout}", key)

        handshake_timeout = self.get("client.handshakeTimeout")
        if handshake_timeout is not None and (
            not isinstance(handshake_timeout, (int, float)) or handshake_timeout <= 0
        ):
            raise ConfigError(
                f"Handshake timeout must be a positive number or null, got: {handshake_timeout}",
                "client.handshakeTimeout",
            )

        url = self.get("client.url")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ConfigError(f"Client URL must be http(s), got: {url}", "client.url")

        max_delay = self.get("demo.maxDelayMs")
        if not isinstance(max_delay, int) or max_delay < 0:
            raise ConfigError(f"maxDelayMs must be a non-negative integer, got: {max_delay}", "demo.maxDelayMs")

    def get_server_host(self) -> str:
        """Get server host address."""
        return self.get("server.host", "127.0.0.1")

    def get_server_port(self) -> int:
        """Get server port."""
        return self.get("server.port", 3000)

    def get_server_log_level(self) -> str:
        """Get uvicorn log level."""
        return self.get("server.logLevel", "info")

    def get_client_url(self) -> str:
        """Get the SSE URL the demo client connects to."""
        return self.get("client.url")

    def get_log_level(self) -> str:
        """Get application log level."""
        return self.get("logging.level", "INFO")

    def get_log_format(self) -> str:
        """Get log format string."""
        return self.get(
            "logging.format",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    def get_log_file(self) -> Optional[str]:
        """Get log file path (None for console only)."""
        return self.get("logging.file")

    def get_max_delay_ms(self) -> int:
        """Get the upper bound for the demo ``delay`` method."""
        return self.get("demo.maxDelayMs", 10000)

    def server_config(self) -> ServerConfig:
        """Build the server transport configuration."""
        return ServerConfig(
            sse_path=self.get("server.ssePath"),
            message_path=self.get("server.messagePath"),
        )

    def client_config(self) -> ClientConfig:
        """Build the client transport configuration."""
        return ClientConfig(
            connect_timeout=float(self.get("client.connectTimeout")),
            request_timeout=float(self.get("client.requestTimeout")),
            handshake_timeout=self.get("client.handshakeTimeout"),
        )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        current = self.config

        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def to_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary."""
        return copy.deepcopy(self.config)
