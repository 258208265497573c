"""Core configuration and error types."""

from conduit.core.config import (
    ServerConfig,
    flatten_config,
    load_config_from_file,
)
from conduit.core.exceptions import (
    ConduitError,
    ConfigurationError,
    CredentialMismatch,
    HandshakeMalformed,
    HandshakeTooShort,
    HeartbeatTimeout,
    NonBinaryHandshake,
    OutboundConnectFailed,
    RelayIOError,
    TransportRejected,
    TruncatedAddress,
    UnsupportedAddressType,
    UnsupportedCommand,
    UnsupportedVersion,
)

__all__ = [
    # Config
    "ServerConfig",
    "load_config_from_file",
    "flatten_config",
    # Errors
    "ConduitError",
    "ConfigurationError",
    "TransportRejected",
    "HandshakeMalformed",
    "HandshakeTooShort",
    "UnsupportedVersion",
    "CredentialMismatch",
    "UnsupportedAddressType",
    "UnsupportedCommand",
    "TruncatedAddress",
    "NonBinaryHandshake",
    "OutboundConnectFailed",
    "RelayIOError",
    "HeartbeatTimeout",
]
