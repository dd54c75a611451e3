#!/usr/bin/env python3
"""
SSE RPC Demo - Main Entry Point

Run the demo server, a single example client, or the scripted scenarios
against a running server.
"""

import argparse
import asyncio
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from sserpc import Config, ServerStartupError, SseRpcError
from sserpc.demo_client import create_demo_client, make_request, run_scenarios
from sserpc.server_app import serve
from sserpc.sse import SseTransportError


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "session_id"):
            log_data["session_id"] = record.session_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(config: Config, verbose: bool = False) -> None:
    """
    Set up logging configuration.

    Args:
        config: Configuration object
        verbose: Whether to enable verbose logging
    """
    log_level = logging.DEBUG if verbose else getattr(logging, config.get_log_level().upper(), logging.INFO)
    log_format = config.get_log_format()
    log_file = config.get_log_file()

    if log_format.lower() == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler with rotation
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="JSON-RPC over Server-Sent Events demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python ssedemo.py serve --port 3000
  python ssedemo.py client --url http://localhost:3000/sse
  python ssedemo.py scenarios --verbose
        """
    )

    parser.add_argument(
        "command",
        choices=["serve", "client", "scenarios"],
        help="What to run"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Override server host address"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override server port"
    )

    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Override the SSE URL clients connect to"
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=10.0,
        help="Seconds the example client stays connected (default: 10)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error", "critical"],
        default=None,
        help="Override log level"
    )

    return parser.parse_args(argv)


async def run_client(config: Config, duration: float) -> None:
    """Connect, send one example request and print what comes back."""
    client = await create_demo_client(config.get_client_url(), "client", config.client_config())
    try:
        await client.send(make_request(1, "example.method", {"data": "Hello from client"}))
        logging.info("Client sent message")
        await asyncio.sleep(duration)
    finally:
        await client.close()

    for message in client.received:
        print(json.dumps(message))


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_arguments(argv)
    load_dotenv()

    try:
        config = Config(args.config)
    except SseRpcError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Override config with CLI arguments
    if args.host:
        config.config["server"]["host"] = args.host
    if args.port is not None:
        config.config["server"]["port"] = args.port
    if args.url:
        config.config["client"]["url"] = args.url
    if args.log_level:
        config.config["logging"]["level"] = args.log_level
        config.config["server"]["logLevel"] = args.log_level

    setup_logging(config, args.verbose)

    try:
        if args.command == "serve":
            await serve(config)
        elif args.command == "client":
            await run_client(config, args.duration)
        else:
            summary = await run_scenarios(config.get_client_url(), config.client_config())
            print(json.dumps(summary, indent=2))
    except ServerStartupError as e:
        logging.error(str(e))
        return 1
    except SseTransportError as e:
        logging.error(f"Transport error: {e}")
        return 1

    return 0


def cli() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
