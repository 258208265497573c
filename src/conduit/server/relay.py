"""Relay server: HTTP surface, upgrade admission and session wiring."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from aiohttp import web

from conduit.core.config import ServerConfig
from conduit.core.exceptions import TransportRejected
from conduit.observability.metrics import UPGRADES_REJECTED, generate_metrics, get_content_type
from conduit.protocol.credential import CredentialValidator
from conduit.server.gate import UpgradeGate, is_upgrade_request
from conduit.server.liveness import LivenessSupervisor
from conduit.server.session import RelaySession
from conduit.server.transport import WebSocketTransport
from conduit.subscription.ispinfo import LabelCache
from conduit.subscription.links import build_links, encode_subscription

logger = structlog.get_logger()

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def upgrade_gate_middleware(gate: UpgradeGate, on_admit: Handler):
    """Route every WebSocket upgrade through the gate, ahead of normal routing.

    Rejected upgrades have their connection aborted; aiohttp's attempt to
    write the placeholder response then fails silently, so the peer sees a
    dropped connection and nothing else.
    """

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if not is_upgrade_request(request.headers):
            return await handler(request)

        try:
            gate.admit(request.method, request.raw_path)
        except TransportRejected as e:
            UPGRADES_REJECTED.labels(reason=e.message).inc()
            logger.debug(
                "Upgrade rejected",
                peer=request.remote,
                method=request.method,
                target=request.raw_path,
                reason=e.message,
            )
            if request.transport is not None:
                request.transport.abort()
            return web.Response(status=403)
        return await on_admit(request)

    return middleware


class RelayServer:
    """Accepts WebSocket upgrades and bridges each one to an outbound TCP stream."""

    def __init__(self, config: ServerConfig, label_cache: LabelCache | None = None):
        self.config = config
        self._validator = CredentialValidator(config.credential())
        self._gate = UpgradeGate(path=config.relay_path)
        self._supervisor = LivenessSupervisor(interval=config.heartbeat_interval)
        self._labels = label_cache or LabelCache(
            config.isp_lookup_url, timeout=config.isp_lookup_timeout
        )
        self._sessions: set[RelaySession] = set()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    @property
    def supervisor(self) -> LivenessSupervisor:
        return self._supervisor

    @property
    def labels(self) -> LabelCache:
        return self._labels

    @property
    def sessions(self) -> frozenset[RelaySession]:
        return frozenset(self._sessions)

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[upgrade_gate_middleware(self._gate, self._handle_relay)])
        app.router.add_get("/", self._handle_index)
        app.router.add_get(f"/{self.config.sub_path}", self._handle_subscription)
        if self.config.metrics_enabled:
            app.router.add_get("/metrics", self._handle_metrics)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        self._app = app
        return app

    async def start(self) -> None:
        """Start listening on the configured address."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.bind, self.config.port)
        await site.start()
        logger.info(
            "Relay server started",
            bind=self.config.bind,
            port=self.config.port,
            ws_path=self.config.relay_path,
            sub_mode=self.config.sub_mode,
        )

    async def stop(self) -> None:
        """Stop the relay server, terminating every open session."""
        logger.info("Stopping relay server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Relay server stopped")

    async def _on_startup(self, app: web.Application) -> None:
        self._labels.start()
        await self._supervisor.start()

    async def _on_shutdown(self, app: web.Application) -> None:
        for session in list(self._sessions):
            session.terminate(outcome="shutdown")

    async def _on_cleanup(self, app: web.Application) -> None:
        await self._supervisor.stop()
        await self._labels.stop()

    async def _handle_relay(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(
            autoping=False,
            compress=False,
            max_msg_size=self.config.ws_max_size,
        )
        await ws.prepare(request)

        transport = WebSocketTransport(ws, request)
        self._supervisor.register(transport)
        session = RelaySession(
            transport,
            self._validator,
            self._supervisor,
            connect_timeout=self.config.effective_connect_timeout,
            chunk_size=self.config.relay_chunk_size,
        )
        self._supervisor.set_timeout_handler(transport, session.terminate)
        self._sessions.add(session)
        logger.debug("Session opened", session_id=str(session.id)[:8], peer=transport.peer)

        try:
            await session.run()
        finally:
            self._sessions.discard(session)
        return ws

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.Response(
            text=(
                "Conduit relay running\n"
                f"Mode: {self.config.sub_mode}\n"
                f"WS Path: {self.config.relay_path}\n"
            ),
            charset="utf-8",
        )

    async def _handle_subscription(self, request: web.Request) -> web.Response:
        label = await self._labels.get()
        host_header = request.headers.get("Host") or f"{self.config.domain}:{self.config.port}"
        links = build_links(self.config, host_header, label)
        return web.Response(
            text=encode_subscription(links) + "\n",
            charset="utf-8",
            headers={
                "Content-Disposition": "inline",
                "Cache-Control": "no-store",
            },
        )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

