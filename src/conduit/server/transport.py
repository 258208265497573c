"""Handles for the two endpoints of a relay session.

Both handles share one contract: ``destroy()`` is synchronous, non-graceful
(no close handshake, no drain) and safe to call any number of times.
"""

from __future__ import annotations

import asyncio

import structlog
from aiohttp import WSMessage, web

from conduit.core.exceptions import OutboundConnectFailed

logger = structlog.get_logger()


class WebSocketTransport:
    """Inbound duplex transport: an upgraded aiohttp WebSocket."""

    def __init__(self, ws: web.WebSocketResponse, request: web.Request) -> None:
        self._ws = ws
        self._request = request
        self._destroyed = False
        self.peer = request.remote or "unknown"

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def receive(self) -> WSMessage:
        return await self._ws.receive()

    async def send(self, data: bytes) -> None:
        await self._ws.send_bytes(data)

    async def ping(self) -> None:
        await self._ws.ping()

    async def pong(self, data: bytes = b"") -> None:
        await self._ws.pong(data)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        transport = self._request.transport
        if transport is not None:
            transport.abort()
        logger.debug("Inbound transport destroyed", peer=self.peer)


class OutboundStream:
    """Outbound raw TCP stream to the requested destination."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def read(self, size: int) -> bytes:
        return await self._reader.read(size)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._writer.transport.abort()


async def open_outbound(host: str, port: int, timeout: float | None = None) -> OutboundStream:
    """Open a TCP connection to ``host:port``.

    Raises:
        OutboundConnectFailed: On resolution errors, refusal, OS-level errors or timeout.
    """
    try:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, TimeoutError) as e:
        raise OutboundConnectFailed(f"{host}:{port}: {e}") from e
    return OutboundStream(reader, writer)
