"""Relay configuration.

Every field of ServerConfig can be set through a CONDUIT_-prefixed
environment variable (CONDUIT_WS_PATH=edge), a YAML/TOML file passed with
``--config``, or a CLI option. CLI options take precedence over the file,
and the file over the environment.
"""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from conduit.core.exceptions import ConfigurationError
from conduit.protocol.credential import Credential

logger = structlog.get_logger()

DEFAULT_UUID = "5efabea4-f6d4-91fd-b8f0-17e004c89c60"
SUB_MODES = ("plain", "tls", "both")

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_YAML_SUFFIXES = (".yaml", ".yml")


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML (.yaml/.yml) or TOML (.toml) settings file into a dict.

    Raises:
        FileNotFoundError: The path does not exist.
        ValueError: Unknown suffix, undecodable bytes, a syntax error, or a
            top level that is not a mapping.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    if path.suffix not in (*_YAML_SUFFIXES, ".toml"):
        raise ValueError(f"Unsupported config format: {path.suffix or '<none>'}")

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"{path} is not valid UTF-8: {e}") from e

    if path.suffix == ".toml":
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return data


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Join nested sections into field names: ``{"isp": {"lookup_url": u}}`` -> ``isp_lookup_url``."""
    flat: dict[str, Any] = {}
    for key, value in config.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_config(value, name))
        else:
            flat[name] = value
    return flat


class ServerConfig(BaseSettings):
    """Relay server configuration.

    Values are fixed before the first connection is accepted and never
    change afterwards.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    uuid: str = Field(
        default=DEFAULT_UUID,
        repr=False,
        description="Client credential as a UUID string (16 bytes once hex decoded).",
    )
    domain: str = Field(
        default="example.com",
        description="Public domain, only used in TLS share links.",
    )
    ws_path: str = Field(
        default="",
        description="WebSocket relay path without the leading slash. Defaults to the first 8 UUID characters.",
    )
    sub_path: str = Field(
        default="sub",
        description="HTTP path serving the base64 subscription.",
    )
    name: str = Field(
        default="Web",
        description="Node name prefix used in share links.",
    )
    bind: str = Field(
        default="0.0.0.0",
        description="Listening address.",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Listening port.",
    )
    sub_mode: str = Field(
        default="plain",
        description="Share link mode: 'plain', 'tls' or 'both'.",
    )
    heartbeat_interval: float = Field(
        default=30.0,
        gt=0,
        description="Liveness probe interval (seconds).",
    )
    connect_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Outbound connect timeout (seconds). 0 leaves it to the OS.",
    )
    relay_chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Maximum bytes read from the outbound socket per relay step.",
    )
    ws_max_size: int = Field(
        default=16 * 1024 * 1024,
        ge=0,
        description="Maximum inbound WebSocket message size (bytes). 0 for unlimited.",
    )
    isp_lookup_url: str = Field(
        default="https://speed.cloudflare.com/meta",
        description="Metadata endpoint used to build the display label.",
    )
    isp_lookup_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Metadata lookup timeout (seconds).",
    )
    metrics_enabled: bool = Field(
        default=False,
        description="Serve Prometheus metrics at /metrics.",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )

    @field_validator("sub_mode", mode="before")
    @classmethod
    def _normalize_sub_mode(cls, value: Any) -> str:
        mode = str(value or "").lower()
        return mode if mode in SUB_MODES else "plain"

    @field_validator("ws_path", "sub_path", mode="before")
    @classmethod
    def _strip_slashes(cls, value: Any) -> str:
        return str(value or "").strip("/")

    @model_validator(mode="after")
    def _default_ws_path(self) -> ServerConfig:
        if not self.ws_path:
            self.ws_path = self.uuid[:8]
        return self

    @property
    def relay_path(self) -> str:
        """Exact request target admitted for WebSocket upgrades."""
        return f"/{self.ws_path}"

    @property
    def effective_connect_timeout(self) -> float | None:
        return self.connect_timeout or None

    def credential(self) -> Credential:
        """Decode the configured UUID into the 16-byte credential.

        Raises:
            ConfigurationError: If the UUID does not decode to exactly 16 bytes.
        """
        if not _UUID_PATTERN.match(self.uuid):
            logger.warning("UUID is not RFC 4122 formatted", uuid=self.uuid)
        try:
            return Credential.from_uuid(self.uuid)
        except ValueError as e:
            raise ConfigurationError(f"Invalid UUID {self.uuid!r}: {e}") from e
