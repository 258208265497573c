"""End-to-end tests for the relay server over real sockets."""

from __future__ import annotations

import asyncio
import base64
from contextlib import asynccontextmanager

import aiohttp
import pytest
from aiohttp import WSMsgType, test_utils

from conduit.core.config import ServerConfig
from conduit.protocol.credential import Credential
from conduit.protocol.handshake import AddressType, encode_handshake
from conduit.server.relay import RelayServer
from conduit.subscription.ispinfo import LabelCache

UUID = "5efabea4-f6d4-91fd-b8f0-17e004c89c60"
CREDENTIAL = Credential.from_uuid(UUID)
CLOSED_TYPES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED, WSMsgType.ERROR)


async def fake_label(url: str, timeout: float) -> str:
    return "US-Test_ISP"


def make_server(**overrides) -> RelayServer:
    values = {
        "uuid": UUID,
        "ws_path": "ws",
        "heartbeat_interval": 3600,
        "connect_timeout": 5,
        "name": "Node",
    }
    values.update(overrides)
    config = ServerConfig(**values)
    return RelayServer(config, label_cache=LabelCache(config.isp_lookup_url, fetcher=fake_label))


@asynccontextmanager
async def relay_client(server: RelayServer):
    async with test_utils.TestClient(test_utils.TestServer(server.build_app())) as client:
        yield client


@asynccontextmanager
async def echo_server():
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while data := await reader.read(65536):
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    try:
        yield server.sockets[0].getsockname()[1]
    finally:
        server.close()
        await server.wait_closed()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestRelaying:
    """Tests for admitted WebSocket sessions."""

    @pytest.mark.asyncio
    async def test_echo_through_relay(self):
        server = make_server()
        async with echo_server() as port, relay_client(server) as client:
            ws = await client.ws_connect("/ws")
            await ws.send_bytes(
                encode_handshake(CREDENTIAL, "127.0.0.1", port, AddressType.IPV4, payload=b"hello")
            )

            ack = await asyncio.wait_for(ws.receive(), 2.0)
            assert ack.type == WSMsgType.BINARY
            assert ack.data == b"\x00\x00"

            echoed = await asyncio.wait_for(ws.receive(), 2.0)
            assert echoed.data == b"hello"

            await ws.send_bytes(b"again")
            echoed = await asyncio.wait_for(ws.receive(), 2.0)
            assert echoed.data == b"again"

            assert len(server.sessions) == 1
            await ws.close()
            await wait_until(lambda: not server.sessions)
            assert len(server.supervisor) == 0

    @pytest.mark.asyncio
    async def test_domain_destination(self):
        server = make_server()
        async with echo_server() as port, relay_client(server) as client:
            ws = await client.ws_connect("/ws")
            await ws.send_bytes(
                encode_handshake(CREDENTIAL, "localhost", port, AddressType.DOMAIN, payload=b"x")
            )

            ack = await asyncio.wait_for(ws.receive(), 2.0)
            assert ack.data == b"\x00\x00"
            await ws.close()

    @pytest.mark.asyncio
    async def test_bad_credential_drops_connection(self):
        server = make_server()
        wrong = Credential(b"\xff" * 16)
        async with echo_server() as port, relay_client(server) as client:
            ws = await client.ws_connect("/ws")
            await ws.send_bytes(encode_handshake(wrong, "127.0.0.1", port, AddressType.IPV4))

            msg = await asyncio.wait_for(ws.receive(), 2.0)
            assert msg.type in CLOSED_TYPES
            await wait_until(lambda: not server.sessions)

    @pytest.mark.asyncio
    async def test_unreachable_destination_drops_connection(self):
        server = make_server()
        async with echo_server() as port:
            pass
        # the listener is gone, so this port now refuses connections
        async with relay_client(server) as client:
            ws = await client.ws_connect("/ws")
            await ws.send_bytes(encode_handshake(CREDENTIAL, "127.0.0.1", port, AddressType.IPV4))

            msg = await asyncio.wait_for(ws.receive(), 5.0)
            assert msg.type in CLOSED_TYPES

    @pytest.mark.asyncio
    async def test_silent_client_terminated_after_missed_ping(self):
        server = make_server()
        async with relay_client(server) as client:
            ws = await client.ws_connect("/ws", autoping=False)
            await wait_until(lambda: len(server.supervisor) == 1)

            await server.supervisor.tick()
            terminated = await server.supervisor.tick()

            assert len(terminated) == 1
            while True:
                msg = await asyncio.wait_for(ws.receive(), 2.0)
                if msg.type in CLOSED_TYPES:
                    break
                assert msg.type == WSMsgType.PING
            await wait_until(lambda: not server.sessions)
            assert len(server.supervisor) == 0


class TestUpgradeRejection:
    """Rejected upgrades never produce a session."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/ws/", "/ws?ed=2048", "/other", "/"])
    async def test_wrong_target_rejected(self, path):
        server = make_server()
        async with relay_client(server) as client:
            with pytest.raises(aiohttp.ClientError):
                await client.ws_connect(path)

            assert len(server.supervisor) == 0
            assert server.sessions == frozenset()

    @pytest.mark.asyncio
    async def test_post_upgrade_rejected(self):
        server = make_server()
        headers = {
            "Upgrade": "websocket",
            "Connection": "Upgrade",
            "Sec-WebSocket-Version": "13",
            "Sec-WebSocket-Key": base64.b64encode(b"0123456789abcdef").decode(),
        }
        async with relay_client(server) as client:
            with pytest.raises(aiohttp.ClientError):
                await client.post("/ws", headers=headers)

            assert server.sessions == frozenset()


class TestHttpSurface:
    """Tests for the plain HTTP routes."""

    @pytest.mark.asyncio
    async def test_index(self):
        server = make_server()
        async with relay_client(server) as client:
            resp = await client.get("/")
            text = await resp.text()

        assert resp.status == 200
        assert "WS Path: /ws" in text
        assert "Mode: plain" in text

    @pytest.mark.asyncio
    async def test_subscription(self):
        server = make_server(sub_mode="both", domain="relay.example.com")
        async with relay_client(server) as client:
            resp = await client.get("/sub")
            body = await resp.text()

        assert resp.status == 200
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.headers["Content-Disposition"] == "inline"
        links = base64.b64decode(body.strip()).decode().split("\n")
        assert len(links) == 2
        assert links[0].startswith(f"vless://{UUID}@127.0.0.1:")
        assert links[0].endswith("path=%2Fws#Node-US-Test_ISP")
        assert links[1].startswith(f"vless://{UUID}@relay.example.com:443?")

    @pytest.mark.asyncio
    async def test_unknown_path_404(self):
        server = make_server()
        async with relay_client(server) as client:
            resp = await client.get("/nothing-here")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_metrics_disabled_by_default(self):
        server = make_server()
        async with relay_client(server) as client:
            resp = await client.get("/metrics")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_metrics_enabled(self):
        server = make_server(metrics_enabled=True)
        async with relay_client(server) as client:
            resp = await client.get("/metrics")
            text = await resp.text()

        assert resp.status == 200
        assert "conduit_active_sessions" in text
