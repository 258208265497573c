"""Conduit Server - Main entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from conduit.core.config import ServerConfig, flatten_config, load_config_from_file
from conduit.core.exceptions import ConfigurationError, format_error_for_user
from conduit.server.relay import RelayServer

console = Console()

BANNER = """
 ██████╗ ██████╗ ███╗   ██╗██████╗ ██╗   ██╗██╗████████╗
██╔════╝██╔═══██╗████╗  ██║██╔══██╗██║   ██║██║╚══██╔══╝
██║     ██║   ██║██╔██╗ ██║██║  ██║██║   ██║██║   ██║
██║     ██║   ██║██║╚██╗██║██║  ██║██║   ██║██║   ██║
╚██████╗╚██████╔╝██║ ╚████║██████╔╝╚██████╔╝██║   ██║
 ╚═════╝ ╚═════╝ ╚═╝  ╚═══╝╚═════╝  ╚═════╝ ╚═╝   ╚═╝
                   WEBSOCKET RELAY
"""


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


def build_config(config_file: str | None, overrides: dict[str, Any]) -> ServerConfig:
    """Merge file values, environment and CLI options (CLI wins, then file, then env)."""
    values: dict[str, Any] = {}
    if config_file:
        values.update(flatten_config(load_config_from_file(config_file)))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ServerConfig(**values)


@click.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--uuid", "-u", help="Client credential UUID (env: CONDUIT_UUID)")
@click.option("--port", "-p", type=int, help="Listening port (default: 3000)")
@click.option("--bind", help="Listening address (default: 0.0.0.0)")
@click.option("--ws-path", help="WebSocket path without slash (default: first 8 UUID chars)")
@click.option("--sub-path", help="Subscription path (default: sub)")
@click.option("--domain", "-d", help="Public domain for TLS share links")
@click.option("--name", help="Node name prefix for share links (default: Web)")
@click.option(
    "--sub-mode",
    type=click.Choice(["plain", "tls", "both"], case_sensitive=False),
    help="Share link mode (default: plain)",
)
@click.option(
    "--heartbeat-interval",
    type=float,
    help="Liveness probe interval in seconds (default: 30)",
)
@click.option(
    "--connect-timeout",
    type=float,
    help="Outbound connect timeout in seconds, 0 for OS default (default: 30)",
)
@click.option("--metrics/--no-metrics", default=None, help="Serve Prometheus metrics at /metrics")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    help="Log level (default: info)",
)
def main(
    config_file: str | None,
    uuid: str | None,
    port: int | None,
    bind: str | None,
    ws_path: str | None,
    sub_path: str | None,
    domain: str | None,
    name: str | None,
    sub_mode: str | None,
    heartbeat_interval: float | None,
    connect_timeout: float | None,
    metrics: bool | None,
    log_level: str | None,
):
    """Run the Conduit WebSocket relay server."""
    console.print(BANNER, style="cyan")

    try:
        config = build_config(
            config_file,
            {
                "uuid": uuid,
                "port": port,
                "bind": bind,
                "ws_path": ws_path,
                "sub_path": sub_path,
                "domain": domain,
                "name": name,
                "sub_mode": sub_mode,
                "heartbeat_interval": heartbeat_interval,
                "connect_timeout": connect_timeout,
                "metrics_enabled": metrics,
                "log_level": log_level,
            },
        )
        configure_logging(config.log_level)
        config.credential()
    except (ConfigurationError, ValidationError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(format_error_for_user(e))}")
        sys.exit(1)

    console.print(f"Listening on {config.bind}:{config.port}", style="yellow")
    console.print(f"WebSocket path: {config.relay_path}", style="dim")
    console.print(f"Subscription: http://<host>:{config.port}/{config.sub_path}", style="dim")
    console.print(f"Subscription mode: {config.sub_mode}", style="dim")
    console.print(f"Heartbeat interval: {config.heartbeat_interval}s", style="dim")
    if config.metrics_enabled:
        console.print("Metrics: enabled at /metrics", style="green")

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")


async def run_server(config: ServerConfig):
    """Run the relay server."""
    server = RelayServer(config)

    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")

        await asyncio.Event().wait()
    finally:
        await server.stop()


if __name__ == "__main__":
    main()
