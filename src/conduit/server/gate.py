"""Admission gate for WebSocket upgrade requests.

Runs before any session object exists. A rejected upgrade gets no HTTP
response at all: the caller aborts the raw connection.

Example:
    gate = UpgradeGate(path="/5efabea4")

    try:
        gate.admit(request.method, request.raw_path)
    except TransportRejected:
        request.transport.abort()
"""

from __future__ import annotations

from dataclasses import dataclass

from conduit.core.exceptions import TransportRejected


@dataclass
class GateDecision:
    """Result of an upgrade admission check."""

    allowed: bool
    reason: str


@dataclass(frozen=True)
class UpgradeGate:
    """Exact-match method and path check.

    The target is compared verbatim: ``/path/`` and ``/path?x=1`` are both
    different from ``/path``.
    """

    path: str
    method: str = "GET"

    def check(self, method: str, target: str) -> GateDecision:
        if method != self.method:
            return GateDecision(allowed=False, reason="method")
        if target != self.path:
            return GateDecision(allowed=False, reason="path")
        return GateDecision(allowed=True, reason="admitted")

    def is_allowed(self, method: str, target: str) -> bool:
        return self.check(method, target).allowed

    def admit(self, method: str, target: str) -> None:
        """Raise TransportRejected, carrying the reason, unless the upgrade may proceed."""
        decision = self.check(method, target)
        if not decision.allowed:
            raise TransportRejected(decision.reason)


def is_upgrade_request(headers) -> bool:
    """True when the request asks for a WebSocket upgrade."""
    return headers.get("Upgrade", "").lower() == "websocket"
