from conduit.subscription.ispinfo import (
    UNKNOWN_LABEL,
    LabelCache,
    LabelState,
    fetch_isp_label,
)
from conduit.subscription.links import build_links, encode_subscription, parse_host_header

__all__ = [
    "UNKNOWN_LABEL",
    "LabelCache",
    "LabelState",
    "fetch_isp_label",
    "build_links",
    "encode_subscription",
    "parse_host_header",
]
