# Upstream Agent Service
# Duplex WebSocket link for relayed sessions, HTTP client for one-shot calls

from llamabot_relay.upstream.connection import (
    Transport,
    UpstreamConnection,
    UpstreamConnectionFactory,
    build_ssl_context,
    resolve_upstream_url,
)
from llamabot_relay.upstream.client import LlamaBotClient

__all__ = [
    "Transport",
    "UpstreamConnection",
    "UpstreamConnectionFactory",
    "build_ssl_context",
    "resolve_upstream_url",
    "LlamaBotClient",
]
