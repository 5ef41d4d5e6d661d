"""
Upstream Connection

Opens and owns the duplex connection to the upstream agent service.

TLS policy (LLAMABOT_ENV):
- production: peer verification on, named CA bundle if configured
- staging: peer verification on, client certificate presented
- development: verification off (local agent servers with self-signed certs)

A missing upstream URL is not an error: connect() logs and returns None so
the client channel keeps working without an agent.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Protocol
from urllib.parse import urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from llamabot_relay.config import RelayEnvironment, RelaySettings
from llamabot_relay.errors import UpstreamConnectionError, UpstreamIOError
from llamabot_relay.protocol.frames import encode_frame

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Minimal duplex transport (satisfied by a websockets client connection)."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


def resolve_upstream_url(url: str, secure: bool) -> str:
    """
    Apply the secure flag to the configured URL.

    "localhost:8000/ws" and "ws://host/ws" both become wss:// when secure,
    ws:// otherwise.
    """
    scheme = "wss" if secure else "ws"
    if "://" not in url:
        url = f"{scheme}://{url}"
    parts = urlsplit(url)
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


def build_ssl_context(settings: RelaySettings) -> ssl.SSLContext | None:
    """
    Build the TLS policy for the upstream connection.

    Returns:
        SSLContext for secure connections, None for plain ws://
    """
    if not settings.secure:
        return None

    if settings.environment == RelayEnvironment.DEVELOPMENT:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("Upstream TLS verification disabled (development)")
        return ctx

    ctx = ssl.create_default_context(cafile=settings.ca_bundle)
    if settings.environment == RelayEnvironment.STAGING:
        if not settings.client_cert:
            raise UpstreamConnectionError(
                settings.websocket_url or "",
                "staging requires LLAMABOT_CLIENT_CERT",
            )
        ctx.load_cert_chain(settings.client_cert, keyfile=settings.client_key)
    return ctx


class UpstreamConnection:
    """
    An open upstream link, exclusively owned by one relay session.

    Only the outbound dispatcher reads; the inbound adapter and the heartbeat
    both write, so writes go through a per-connection lock to keep frames
    from interleaving.
    """

    def __init__(self, transport: Transport, connection_id: str):
        self.connection_id = connection_id
        self._transport = transport
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._transport_closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> str:
        return "disconnected" if self._closed else "connected"

    async def send_frame(self, frame: dict[str, Any]) -> None:
        """
        Write one frame.

        Raises:
            UpstreamIOError: If the connection is closed or the write fails
        """
        if self._closed:
            raise UpstreamIOError(f"Upstream connection {self.connection_id} is closed")
        data = encode_frame(frame)
        async with self._write_lock:
            try:
                await self._transport.send(data)
            except (ConnectionClosed, OSError) as e:
                self._closed = True
                raise UpstreamIOError(f"Upstream write failed: {e}") from e

    async def receive(self) -> bytes:
        """
        Block until the next chunk of upstream data arrives.

        Raises:
            UpstreamIOError: If the connection closed or the read failed
        """
        if self._closed:
            raise UpstreamIOError(f"Upstream connection {self.connection_id} is closed")
        try:
            data = await self._transport.recv()
        except (ConnectionClosed, OSError) as e:
            self._closed = True
            raise UpstreamIOError(f"Upstream read failed: {e}") from e
        return data.encode("utf-8") if isinstance(data, str) else data

    async def close(self) -> None:
        """Close the underlying transport. Safe to call more than once."""
        self._closed = True
        if self._transport_closed:
            return
        self._transport_closed = True
        await self._transport.close()


class UpstreamConnectionFactory:
    """Creates UpstreamConnections from settings."""

    def __init__(self, settings: RelaySettings, open_timeout: float = 10.0):
        self._settings = settings
        self._open_timeout = open_timeout

    @property
    def configured(self) -> bool:
        return bool(self._settings.websocket_url)

    async def connect(self, connection_id: str) -> UpstreamConnection | None:
        """
        Open a connection for a session.

        Returns:
            The connection, or None if no upstream URL is configured

        Raises:
            UpstreamConnectionError: If the upstream is unreachable or TLS fails
        """
        if not self._settings.websocket_url:
            logger.warning(
                "LLAMABOT_WEBSOCKET_URL is not set; skipping upstream setup "
                f"for session {connection_id}"
            )
            return None

        url = resolve_upstream_url(self._settings.websocket_url, self._settings.secure)
        kwargs: dict[str, Any] = {"open_timeout": self._open_timeout}
        try:
            ssl_context = build_ssl_context(self._settings)
        except OSError as e:
            raise UpstreamConnectionError(url, f"TLS setup failed: {e}") from e
        if ssl_context is not None:
            kwargs["ssl"] = ssl_context

        try:
            transport = await websockets.connect(url, **kwargs)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise UpstreamConnectionError(url, f"{type(e).__name__}: {e}") from e

        logger.info(f"Upstream connected: {url} (session: {connection_id})")
        return UpstreamConnection(transport, connection_id)
