"""
Forwarding Relay

Relays calls under a routing prefix to a single upstream API with:
- the server-held credential injected as Authorization
- a fixed, sanitized outbound header set
- live passthrough of text/event-stream responses
- upstream failures relayed verbatim, local failures as 500 {"error": ...}
"""

from .models import InboundRequest, OutboundRequest, RelayBody, RelayConfig
from .relay import ForwardingRelay, create_upstream_client
from .route import create_router

__all__ = [
    "ForwardingRelay",
    "InboundRequest",
    "OutboundRequest",
    "RelayBody",
    "RelayConfig",
    "create_router",
    "create_upstream_client",
]
