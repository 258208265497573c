from conduit.observability.metrics import (
    ACTIVE_SESSIONS,
    BYTES_RELAYED,
    HEARTBEAT_TERMINATIONS,
    SESSIONS_TOTAL,
    UPGRADES_REJECTED,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "ACTIVE_SESSIONS",
    "BYTES_RELAYED",
    "HEARTBEAT_TERMINATIONS",
    "SESSIONS_TOTAL",
    "UPGRADES_REJECTED",
    "generate_metrics",
    "get_content_type",
]
