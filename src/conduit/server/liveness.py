"""Liveness supervision for idle WebSocket transports.

Every tick, a transport that has not answered the previous probe is
terminated; every other transport has its flag cleared and receives a new
ping. Any pong sets the flag again. A peer that stays silent for one full
interval is therefore reclaimed on the following tick, whether it is still
waiting for its handshake or already relaying.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from conduit.observability.metrics import HEARTBEAT_TERMINATIONS

logger = structlog.get_logger()

DEFAULT_HEARTBEAT_INTERVAL = 30.0


class Probeable(Protocol):
    peer: str

    async def ping(self) -> None: ...

    def destroy(self) -> None: ...


@dataclass
class HeartbeatState:
    """Per-transport liveness flag and the action taken on timeout."""

    alive: bool
    on_timeout: Callable[[], Any]


class LivenessSupervisor:
    def __init__(
        self,
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        ping_timeout: float | None = None,
    ) -> None:
        self.interval = interval
        # a ping stuck behind a peer that stopped reading must not stall the cycle
        self.ping_timeout = ping_timeout if ping_timeout is not None else interval / 3
        self._states: dict[Probeable, HeartbeatState] = {}
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, transport: object) -> bool:
        return transport in self._states

    def register(self, transport: Probeable, on_timeout: Callable[[], Any] | None = None) -> None:
        """Start supervising a transport; it counts as alive until the first tick."""
        self._states[transport] = HeartbeatState(alive=True, on_timeout=on_timeout or transport.destroy)

    def unregister(self, transport: Probeable) -> None:
        self._states.pop(transport, None)

    def is_alive(self, transport: Probeable) -> bool:
        state = self._states.get(transport)
        return state is not None and state.alive

    def mark_alive(self, transport: Probeable) -> None:
        state = self._states.get(transport)
        if state is not None:
            state.alive = True

    def set_timeout_handler(self, transport: Probeable, on_timeout: Callable[[], Any]) -> None:
        state = self._states.get(transport)
        if state is not None:
            state.on_timeout = on_timeout

    async def tick(self) -> list[Probeable]:
        """Run one probe cycle. Returns the transports terminated by it."""
        terminated: list[Probeable] = []
        pinged: list[Probeable] = []

        for transport, state in list(self._states.items()):
            if not state.alive:
                self._states.pop(transport, None)
                terminated.append(transport)
                HEARTBEAT_TERMINATIONS.inc()
                logger.info("Terminating unresponsive transport", peer=transport.peer)
                state.on_timeout()
                continue
            state.alive = False
            pinged.append(transport)

        await asyncio.gather(*(self._send_ping(t) for t in pinged))
        return terminated

    async def _send_ping(self, transport: Probeable) -> None:
        try:
            await asyncio.wait_for(transport.ping(), self.ping_timeout)
        except TimeoutError:
            logger.debug("Liveness ping timed out", peer=transport.peer)
        except Exception as e:
            logger.debug("Liveness ping failed", peer=transport.peer, error=str(e))

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error("Heartbeat tick error", error=str(e))
