"""Share-link generation for the subscription endpoint."""

from __future__ import annotations

import base64
import re
from urllib.parse import quote, urlsplit

from conduit.core.config import ServerConfig

_HOST_PORT = re.compile(r"^(?P<host>[^:]+):(?P<port>\d+)$")

MAX_PORT = 65535


def parse_host_header(host_header: str) -> tuple[str, int | None]:
    """Split a Host header into hostname and optional port.

    Accepts ``example.com``, ``example.com:8080`` and ``[::1]:3000``.
    """
    try:
        parts = urlsplit(f"http://{host_header}")
        hostname = parts.hostname
        port = parts.port
        if hostname:
            return hostname, port
    except ValueError:
        pass

    if host_header.startswith("["):
        idx = host_header.rfind("]:")
        if idx != -1:
            port_text = host_header[idx + 2 :]
            return host_header[1:idx], _port_or_none(port_text)
        return host_header, None

    match = _HOST_PORT.match(host_header)
    if match:
        return match.group("host"), _port_or_none(match.group("port"))
    return host_header, None


def _port_or_none(text: str) -> int | None:
    if not text.isdigit():
        return None
    port = int(text)
    return port if 0 < port <= MAX_PORT else None


def _format_host(hostname: str) -> str:
    return f"[{hostname}]" if ":" in hostname else hostname


def build_links(config: ServerConfig, host_header: str | None, label: str) -> str:
    """Newline-joined share links for the configured mode."""
    lines: list[str] = []
    final_name = f"{config.name}-{label or 'Unknown'}"
    ws_path = quote(config.relay_path, safe="")

    req_host, req_port = parse_host_header(host_header or f"{config.domain}:{config.port}")

    if config.sub_mode in ("plain", "both"):
        host = _format_host(req_host)
        port = req_port or config.port
        lines.append(
            f"vless://{config.uuid}@{host}:{port}"
            f"?encryption=none&type=ws&host={req_host}&path={ws_path}#{final_name}"
        )

    if config.sub_mode in ("tls", "both"):
        domain = config.domain
        lines.append(
            f"vless://{config.uuid}@{domain}:443"
            f"?encryption=none&security=tls&sni={domain}&fp=chrome&type=ws&host={domain}"
            f"&path={ws_path}#{final_name}"
        )

    return "\n".join(lines)


def encode_subscription(links: str) -> str:
    return base64.b64encode(links.encode("utf-8")).decode("ascii")
