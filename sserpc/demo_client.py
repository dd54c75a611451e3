"""
Demo client and scripted scenarios for the SSE RPC server.

``DemoClient`` wraps a client transport with a message log and helpers for
each demo method. ``run_scenarios`` drives a server through the scripted test
sequence: echo, error, broadcast, delayed response, unknown method,
notification, connection close and rapid sends.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .sse import (
    ClientConfig,
    JSONRPCNotification,
    JSONRPCRequest,
    SseClientTransport,
    dump_message,
)


logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


def make_request(request_id: Any, method: str, params: Optional[Any] = None) -> JSONRPCRequest:
    """Create a JSON-RPC request."""
    if params is None:
        return JSONRPCRequest(jsonrpc="2.0", id=request_id, method=method)
    return JSONRPCRequest(jsonrpc="2.0", id=request_id, method=method, params=params)


@dataclass
class LogEntry:
    """A message sent or received by a demo client."""
    direction: str  # sent, received
    message: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DemoClient:
    """Client transport with a message log and one helper per demo method."""

    def __init__(
        self,
        url: str,
        name: str = "client",
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the demo client.

        Args:
            url: SSE URL of the server
            name: Label used in log output
            config: Optional transport configuration
            http_client: Optional shared HTTP client
        """
        self.name = name
        self.message_log: List[LogEntry] = []
        self._received = asyncio.Condition()
        self.transport = SseClientTransport(
            url,
            config,
            http_client,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )

    async def _on_message(self, message: Any) -> None:
        logger.info(f"{self.name} received message: {dump_message(message)}")
        async with self._received:
            self.message_log.append(LogEntry("received", dump_message(message)))
            self._received.notify_all()

    def _on_error(self, error: Exception) -> None:
        logger.warning(f"{self.name} error: {error}")

    def _on_close(self) -> None:
        logger.info(f"{self.name} connection closed")

    @property
    def received(self) -> List[Dict[str, Any]]:
        """Messages received so far, in arrival order."""
        return [entry.message for entry in self.message_log if entry.direction == "received"]

    @property
    def sent(self) -> List[Dict[str, Any]]:
        """Messages sent so far, in send order."""
        return [entry.message for entry in self.message_log if entry.direction == "sent"]

    async def start(self) -> None:
        """Connect and wait for the handshake."""
        await self.transport.start()
        logger.info(f"{self.name} connected")

    async def send(self, message: Any) -> None:
        """Send a message, recording it in the log first."""
        self.message_log.append(LogEntry("sent", dump_message(message)))
        await self.transport.send(message)

    async def wait_for_response(self, request_id: Any, timeout: float = 5.0) -> Dict[str, Any]:
        """
        Wait until a response with ``request_id`` has been received.

        Raises:
            asyncio.TimeoutError: If no such response arrives in time
        """
        def find() -> Optional[Dict[str, Any]]:
            for message in self.received:
                if message.get("id") == request_id and "method" not in message:
                    return message
            return None

        async with self._received:
            await asyncio.wait_for(self._received.wait_for(find), timeout)
            return find()

    async def _request(self, method: str, params: Optional[Any] = None) -> int:
        request_id = next(_request_ids)
        await self.send(make_request(request_id, method, params))
        return request_id

    async def echo(self, data: Any) -> int:
        return await self._request("echo", data)

    async def trigger_error(self) -> int:
        return await self._request("error")

    async def broadcast(self, message: str) -> int:
        return await self._request("broadcast", {"message": message})

    async def delayed_response(self, ms: int) -> int:
        return await self._request("delay", {"ms": ms})

    async def unknown_method(self) -> int:
        return await self._request("unknown_method")

    async def send_notification(self, method: str, params: Optional[Any] = None) -> None:
        if params is None:
            await self.send(JSONRPCNotification(jsonrpc="2.0", method=method))
        else:
            await self.send(JSONRPCNotification(jsonrpc="2.0", method=method, params=params))

    async def close(self) -> None:
        await self.transport.close()


async def create_demo_client(
    url: str,
    name: str = "client",
    config: Optional[ClientConfig] = None,
) -> DemoClient:
    """Create a demo client and wait for its handshake."""
    client = DemoClient(url, name, config)
    await client.start()
    return client


async def run_scenarios(url: str, config: Optional[ClientConfig] = None, pause: float = 0.5) -> Dict[str, Any]:
    """
    Run the scripted scenarios against a running server.

    Args:
        url: SSE URL of the server
        config: Optional transport configuration
        pause: Seconds to wait between scenarios

    Returns:
        Summary with the message logs of each client
    """
    logger.info("=== Starting Test Scenarios ===")
    clients: List[DemoClient] = []

    async def connect(name: str) -> DemoClient:
        client = DemoClient(url, name, config)
        clients.append(client)
        await client.start()
        return client

    try:
        logger.info("Test 1: Basic echo test")
        client1 = await connect("client1")
        echo_id = await client1.echo({"text": "Hello, world!"})
        logger.info(f"Sent echo request with id: {echo_id}")
        await asyncio.sleep(pause)

        logger.info("Test 2: Error handling")
        error_id = await client1.trigger_error()
        logger.info(f"Sent error request with id: {error_id}")
        await asyncio.sleep(pause)

        logger.info("Test 3: Multiple clients and broadcasting")
        client2 = await connect("client2")
        client3 = await connect("client3")
        await asyncio.sleep(pause)
        broadcast_id = await client1.broadcast("Hello to all clients!")
        logger.info(f"Sent broadcast with id: {broadcast_id}")
        await asyncio.sleep(pause * 2)

        logger.info("Test 4: Delayed response")
        delay_id = await client2.delayed_response(2000)
        logger.info(f"Sent delayed request with id: {delay_id}")
        await client2.wait_for_response(delay_id, timeout=10.0)

        logger.info("Test 5: Unknown method")
        unknown_id = await client3.unknown_method()
        logger.info(f"Sent unknown method request with id: {unknown_id}")
        await asyncio.sleep(pause)

        logger.info("Test 6: Notifications")
        await client1.send_notification("ping", {"timestamp": datetime.now(timezone.utc).isoformat()})
        logger.info("Sent notification (no response expected)")
        await asyncio.sleep(pause)

        logger.info("Test 7: Connection closing")
        await client2.close()
        logger.info("Closed client2 connection")
        await asyncio.sleep(pause)

        logger.info("Test 8: Rapid message sending")
        await asyncio.gather(*(
            client3.echo({"sequence": i}) for i in range(5)
        ))
        logger.info("Sent 5 rapid messages")
        await asyncio.sleep(pause * 2)
    finally:
        for client in clients:
            await client.close()

    logger.info("=== Tests Completed ===")
    return {
        client.name: {"sent": client.sent, "received": client.received}
        for client in clients
    }
