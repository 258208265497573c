"""Per-connection relay session.

A session walks AWAITING_HANDSHAKE -> CONNECTING -> RELAYING -> CLOSED and
exclusively owns its two handles: the inbound WebSocket transport and, from
CONNECTING onward, the outbound TCP stream. Whatever ends the session
(bad handshake, failed connect, relay error, heartbeat timeout) both handles
are destroyed exactly once in ``_close``, which every path reaches through
the ``finally`` in ``run``.

Before the acknowledgment is sent the client never receives anything but a
dropped connection, so failure reasons are not observable from outside.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol
from uuid import uuid4

import structlog
from aiohttp import WSMessage, WSMsgType

from conduit.core.exceptions import (
    HandshakeMalformed,
    HeartbeatTimeout,
    NonBinaryHandshake,
    OutboundConnectFailed,
    RelayIOError,
)
from conduit.observability.metrics import ACTIVE_SESSIONS, BYTES_RELAYED, SESSIONS_TOTAL
from conduit.protocol.credential import CredentialValidator
from conduit.protocol.handshake import ConnectRequest, ParsedHandshake, build_ack, parse_handshake
from conduit.server.liveness import LivenessSupervisor
from conduit.server.transport import OutboundStream, open_outbound

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 64 * 1024
# data frames buffered between the inbound reader and the upstream pump
INBOX_SIZE = 64

_TERMINAL_MESSAGES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED, WSMsgType.ERROR)


class SessionState(Enum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSED = "closed"


class InboundTransport(Protocol):
    peer: str

    async def receive(self) -> WSMessage: ...

    async def send(self, data: bytes) -> None: ...

    async def ping(self) -> None: ...

    async def pong(self, data: bytes = b"") -> None: ...

    def destroy(self) -> None: ...


Connector = Callable[[str, int, float | None], Awaitable[OutboundStream]]


class RelaySession:
    """Bridges one WebSocket transport to one outbound TCP stream."""

    def __init__(
        self,
        inbound: InboundTransport,
        validator: CredentialValidator,
        supervisor: LivenessSupervisor,
        connector: Connector = open_outbound,
        connect_timeout: float | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.id = uuid4()
        self.state = SessionState.AWAITING_HANDSHAKE
        self.inbound = inbound
        self.outbound: OutboundStream | None = None
        self.request: ConnectRequest | None = None
        self.outcome: str | None = None
        self.bytes_up = 0
        self.bytes_down = 0
        self._validator = validator
        self._supervisor = supervisor
        self._connector = connector
        self._connect_timeout = connect_timeout
        self._chunk_size = chunk_size
        self._task: asyncio.Task | None = None
        self._inbox: asyncio.Queue[WSMessage | BaseException] = asyncio.Queue(maxsize=INBOX_SIZE)
        self._terminated = False
        self._inbound_released = False
        self._outbound_released = False
        self._log = logger.bind(session_id=str(self.id)[:8], peer=inbound.peer)

    async def run(self) -> None:
        """Drive the session until it reaches CLOSED."""
        if self._terminated:
            self._close()
            return
        ACTIVE_SESSIONS.inc()
        self._task = asyncio.create_task(self._drive())
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._terminated:
                raise
        except Exception as e:
            self.outcome = self.outcome or "internal_error"
            self._log.error("Session error", error=str(e))
        finally:
            self._close()
            ACTIVE_SESSIONS.dec()

    def terminate(self, outcome: str = HeartbeatTimeout.code) -> None:
        """Force the session closed regardless of in-flight I/O."""
        if self.state is SessionState.CLOSED or self._terminated:
            return
        self._terminated = True
        self.outcome = outcome
        self._log.info("Terminating session", outcome=outcome, state=self.state.value)
        self._destroy_handles()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _drive(self) -> None:
        try:
            parsed = await self._await_handshake()
        except HandshakeMalformed as e:
            self.outcome = "handshake_malformed"
            self._log.info("Rejected handshake", reason=e.code, detail=e.message)
            return
        if parsed is None:
            self.outcome = "peer_closed"
            self._log.debug("Transport closed before handshake")
            return

        self.request = parsed.request
        self.state = SessionState.CONNECTING
        # from here on a single reader owns inbound.receive(), so pongs are seen while connecting
        reader = asyncio.create_task(self._read_inbound())
        try:
            await self._connect_and_relay(parsed, reader)
        finally:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    async def _connect_and_relay(self, parsed: ParsedHandshake, reader: asyncio.Task) -> None:
        host, port = parsed.request.host, parsed.request.port
        try:
            outbound = await self._connect(host, port, reader)
        except OutboundConnectFailed as e:
            self.outcome = "connect_failed"
            self._log.info("Outbound connect failed", host=host, port=port, error=e.message)
            return
        if outbound is None:
            self.outcome = "peer_closed"
            self._log.debug("Transport closed while connecting", host=host, port=port)
            return
        self.outbound = outbound

        try:
            await self.inbound.send(build_ack(parsed.request.version))
        except (ConnectionError, RuntimeError) as e:
            self.outcome = "ack_failed"
            self._log.debug("Acknowledgment write failed", error=str(e))
            return

        self.state = SessionState.RELAYING
        self._log.info("Relaying", host=host, port=port, payload=len(parsed.payload))
        try:
            if parsed.payload:
                await self._write_upstream(parsed.payload)
            await self._relay()
        except RelayIOError as e:
            self.outcome = "relay_io_error"
            self._log.debug("Relay ended with error", error=e.message)
            return
        self.outcome = "relayed"

    async def _connect(self, host: str, port: int, reader: asyncio.Task) -> OutboundStream | None:
        """Open the outbound stream, or return None if the client goes away first."""
        connect = asyncio.create_task(self._connector(host, port, self._connect_timeout))
        try:
            await asyncio.wait({connect, reader}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not connect.done():
                connect.cancel()
                await asyncio.gather(connect, return_exceptions=True)
            elif self._terminated and not connect.cancelled() and connect.exception() is None:
                connect.result().destroy()
        if connect.cancelled():
            return None
        return connect.result()

    async def _await_handshake(self) -> ParsedHandshake | None:
        while True:
            msg = await self.inbound.receive()
            if msg.type == WSMsgType.BINARY:
                return parse_handshake(msg.data, self._validator)
            if msg.type == WSMsgType.TEXT:
                raise NonBinaryHandshake()
            if msg.type in _TERMINAL_MESSAGES:
                return None
            await self._handle_control(msg)

    async def _read_inbound(self) -> None:
        """Answer control frames and queue data frames, in order, for the upstream pump."""
        try:
            while True:
                msg = await self.inbound.receive()
                if msg.type in (WSMsgType.PING, WSMsgType.PONG):
                    await self._handle_control(msg)
                    continue
                await self._inbox.put(msg)
                if msg.type in _TERMINAL_MESSAGES:
                    return
        except (ConnectionError, RuntimeError) as e:
            await self._inbox.put(e)

    async def _handle_control(self, msg: WSMessage) -> None:
        if msg.type == WSMsgType.PONG:
            self._supervisor.mark_alive(self.inbound)
        elif msg.type == WSMsgType.PING:
            await self.inbound.pong(msg.data)

    async def _relay(self) -> None:
        upstream = asyncio.create_task(self._pump_upstream())
        downstream = asyncio.create_task(self._pump_downstream())
        try:
            done, _ = await asyncio.wait({upstream, downstream}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # no half-close: whichever side ends first takes the other down with it
            upstream.cancel()
            downstream.cancel()
            await asyncio.gather(upstream, downstream, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None:
                raise RelayIOError(str(error)) from error

    async def _pump_upstream(self) -> None:
        while True:
            item = await self._inbox.get()
            if isinstance(item, BaseException):
                raise RelayIOError(f"inbound read: {item}") from item
            if item.type == WSMsgType.BINARY:
                await self._write_upstream(item.data)
            elif item.type == WSMsgType.TEXT:
                await self._write_upstream(item.data.encode())
            elif item.type == WSMsgType.ERROR:
                raise RelayIOError(f"websocket error: {item.data}")
            elif item.type in _TERMINAL_MESSAGES:
                return

    async def _pump_downstream(self) -> None:
        assert self.outbound is not None
        while True:
            try:
                data = await self.outbound.read(self._chunk_size)
            except OSError as e:
                raise RelayIOError(f"outbound read: {e}") from e
            if not data:
                return
            try:
                await self.inbound.send(data)
            except (ConnectionError, RuntimeError) as e:
                raise RelayIOError(f"inbound write: {e}") from e
            self.bytes_down += len(data)
            BYTES_RELAYED.labels(direction="downstream").inc(len(data))

    async def _write_upstream(self, data: bytes) -> None:
        assert self.outbound is not None
        try:
            await self.outbound.write(data)
        except OSError as e:
            raise RelayIOError(f"outbound write: {e}") from e
        self.bytes_up += len(data)
        BYTES_RELAYED.labels(direction="upstream").inc(len(data))

    def _destroy_handles(self) -> None:
        if self.outbound is not None and not self._outbound_released:
            self._outbound_released = True
            self.outbound.destroy()
        if not self._inbound_released:
            self._inbound_released = True
            self.inbound.destroy()

    def _close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._supervisor.unregister(self.inbound)
        self._destroy_handles()
        outcome = self.outcome or "closed"
        SESSIONS_TOTAL.labels(outcome=outcome).inc()
        self._log.info(
            "Session closed",
            outcome=outcome,
            bytes_up=self.bytes_up,
            bytes_down=self.bytes_down,
        )
