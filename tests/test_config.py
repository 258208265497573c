"""Tests for configuration loading from environment variables and files."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from conduit.core.config import (
    DEFAULT_UUID,
    ServerConfig,
    flatten_config,
    load_config_from_file,
)
from conduit.core.exceptions import ConfigurationError


class TestServerConfig:
    """Test ServerConfig settings."""

    def test_default_values(self) -> None:
        """Test default values."""
        config = ServerConfig()
        assert config.uuid == DEFAULT_UUID
        assert config.port == 3000
        assert config.sub_path == "sub"
        assert config.sub_mode == "plain"
        assert config.heartbeat_interval == 30.0
        assert config.metrics_enabled is False

    def test_ws_path_defaults_to_uuid_prefix(self) -> None:
        config = ServerConfig(uuid="0123abcd-0000-4000-8000-000000000000")
        assert config.ws_path == "0123abcd"
        assert config.relay_path == "/0123abcd"

    def test_ws_path_slashes_stripped(self) -> None:
        config = ServerConfig(ws_path="/tunnel/", sub_path="/feed")
        assert config.relay_path == "/tunnel"
        assert config.sub_path == "feed"

    @pytest.mark.parametrize(
        "value,expected",
        [("plain", "plain"), ("TLS", "tls"), ("both", "both"), ("bogus", "plain"), ("", "plain")],
    )
    def test_sub_mode_normalized(self, value, expected) -> None:
        assert ServerConfig(sub_mode=value).sub_mode == expected

    def test_invalid_port_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=0)
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)

    def test_connect_timeout_zero_disables(self) -> None:
        assert ServerConfig(connect_timeout=0).effective_connect_timeout is None
        assert ServerConfig(connect_timeout=7.5).effective_connect_timeout == 7.5

    def test_env_override_port(self) -> None:
        """Test CONDUIT_PORT env var."""
        with patch.dict(os.environ, {"CONDUIT_PORT": "8443"}):
            config = ServerConfig()
            assert config.port == 8443

    def test_env_override_uuid_and_path(self) -> None:
        """Test CONDUIT_UUID and CONDUIT_WS_PATH env vars."""
        env = {
            "CONDUIT_UUID": "11111111-2222-4333-8444-555555555555",
            "CONDUIT_WS_PATH": "/edge",
        }
        with patch.dict(os.environ, env):
            config = ServerConfig()
            assert config.uuid == env["CONDUIT_UUID"]
            assert config.relay_path == "/edge"

    def test_env_override_metrics_enabled(self) -> None:
        """Test CONDUIT_METRICS_ENABLED env var."""
        with patch.dict(os.environ, {"CONDUIT_METRICS_ENABLED": "true"}):
            assert ServerConfig().metrics_enabled is True

    def test_uuid_hidden_from_repr(self) -> None:
        assert DEFAULT_UUID not in repr(ServerConfig())


class TestCredential:
    """Tests for ServerConfig.credential."""

    def test_decodes_default_uuid(self) -> None:
        credential = ServerConfig().credential()
        assert credential.value == bytes.fromhex(DEFAULT_UUID.replace("-", ""))

    def test_accepts_non_rfc_uuid(self) -> None:
        # version nibble 9 is not RFC 4122, still 16 bytes
        config = ServerConfig(uuid="5efabea4-f6d4-91fd-b8f0-17e004c89c60")
        assert len(config.credential().value) == 16

    @pytest.mark.parametrize("uuid", ["not-a-uuid", "1234", "5efabea4f6d491fdb8f017e004c89c"])
    def test_bad_uuid_raises(self, uuid: str) -> None:
        with pytest.raises(ConfigurationError):
            ServerConfig(uuid=uuid).credential()


class TestConfigFiles:
    """Tests for file-based configuration."""

    def test_load_yaml(self, tmp_path) -> None:
        path = tmp_path / "conduit.yaml"
        path.write_text("port: 8080\nserver:\n  name: Edge\n", encoding="utf-8")
        assert load_config_from_file(path) == {"port": 8080, "server": {"name": "Edge"}}

    def test_load_toml(self, tmp_path) -> None:
        path = tmp_path / "conduit.toml"
        path.write_text('ws_path = "relay"\nport = 9000\n', encoding="utf-8")
        assert load_config_from_file(path) == {"ws_path": "relay", "port": 9000}

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config_from_file(path) == {}

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path) -> None:
        path = tmp_path / "conduit.ini"
        path.write_text("port=1", encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("port: [1, 2\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_flatten_config(self) -> None:
        nested = {"port": 1, "isp": {"lookup": {"url": "http://x"}}}
        assert flatten_config(nested) == {"port": 1, "isp_lookup_url": "http://x"}

