from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

SESSIONS_TOTAL = Counter(
    "conduit_sessions_total",
    "Finished relay sessions",
    ["outcome"],  # relayed, handshake_malformed, connect_failed, ack_failed, heartbeat_timeout
)

ACTIVE_SESSIONS = Gauge(
    "conduit_active_sessions",
    "Sessions currently awaiting handshake, connecting or relaying",
)

BYTES_RELAYED = Counter(
    "conduit_bytes_relayed_total",
    "Bytes copied between the WebSocket and the outbound socket",
    ["direction"],  # upstream: client -> destination, downstream: destination -> client
)

UPGRADES_REJECTED = Counter(
    "conduit_upgrades_rejected_total",
    "Upgrade requests refused before a session was created",
    ["reason"],
)

HEARTBEAT_TERMINATIONS = Counter(
    "conduit_heartbeat_terminations_total",
    "Transports terminated after missing a liveness probe cycle",
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
