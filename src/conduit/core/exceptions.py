"""Error taxonomy for the relay.

Every per-connection error is terminal to its own session only. The handshake
errors all end the same way from the client's point of view (the transport is
closed without a reply) but stay distinguishable for logging and tests.
"""

from __future__ import annotations


class ConduitError(Exception):
    """Base class for all relay errors."""

    code = "conduit_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ConfigurationError(ConduitError):
    """Invalid static startup configuration. The only fatal condition."""

    code = "configuration_error"


class TransportRejected(ConduitError):
    """Upgrade request refused by the admission gate."""

    code = "transport_rejected"


class HandshakeMalformed(ConduitError):
    """First message of a session could not be decoded into a connect request."""

    code = "handshake_malformed"


class HandshakeTooShort(HandshakeMalformed):
    code = "too_short"


class UnsupportedVersion(HandshakeMalformed):
    code = "unsupported_version"


class CredentialMismatch(HandshakeMalformed):
    code = "credential_mismatch"


class UnsupportedAddressType(HandshakeMalformed):
    code = "unsupported_address_type"


class TruncatedAddress(HandshakeMalformed):
    code = "truncated_address"


class UnsupportedCommand(HandshakeMalformed):
    code = "unsupported_command"


class NonBinaryHandshake(HandshakeMalformed):
    code = "non_binary"


class OutboundConnectFailed(ConduitError):
    """Outbound TCP connection to the requested destination failed."""

    code = "connect_failed"


class RelayIOError(ConduitError):
    """Either side of an established relay failed mid-stream."""

    code = "relay_io_error"


class HeartbeatTimeout(ConduitError):
    """Transport missed a full liveness probe cycle."""

    code = "heartbeat_timeout"


def format_error_for_user(error: BaseException) -> str:
    """Render an exception as a one-line message for console output."""
    if isinstance(error, ConduitError):
        return error.message
    return f"{type(error).__name__}: {error}"
