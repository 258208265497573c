"""Relay server components: admission, sessions and liveness supervision."""

from conduit.server.gate import GateDecision, UpgradeGate, is_upgrade_request
from conduit.server.liveness import HeartbeatState, LivenessSupervisor
from conduit.server.relay import RelayServer, upgrade_gate_middleware
from conduit.server.session import RelaySession, SessionState
from conduit.server.transport import OutboundStream, WebSocketTransport, open_outbound

__all__ = [
    "GateDecision",
    "UpgradeGate",
    "is_upgrade_request",
    "HeartbeatState",
    "LivenessSupervisor",
    "RelayServer",
    "upgrade_gate_middleware",
    "RelaySession",
    "SessionState",
    "OutboundStream",
    "WebSocketTransport",
    "open_outbound",
]
