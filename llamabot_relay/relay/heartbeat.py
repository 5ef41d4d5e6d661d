"""
Heartbeat Task

Keeps the upstream link alive by writing a ping frame at a fixed interval.

There is no retry or backoff: a failed write ends the loop and fires
on_failed so the session's supervisor tears the session down (the relay does
not reconnect within a session).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from llamabot_relay.errors import UpstreamIOError
from llamabot_relay.protocol.frames import FrameType
from llamabot_relay.upstream.connection import UpstreamConnection

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 30.0


class HeartbeatTask:
    """Periodic upstream ping for one session."""

    def __init__(
        self,
        connection: UpstreamConnection,
        interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL,
        on_failed: Callable[[UpstreamIOError], Awaitable[None]] | None = None,
    ):
        self._connection = connection
        self._interval = interval_seconds
        self._on_failed = on_failed
        self.pings_sent = 0

    async def run(self) -> None:
        """Ping until the connection closes or a write fails."""
        while not self._connection.closed:
            try:
                await self._connection.send_frame({
                    "type": FrameType.PING.value,
                    "connection_id": self._connection.connection_id,
                    "connection_state": self._connection.state,
                })
            except UpstreamIOError as e:
                logger.warning(
                    f"Heartbeat stopped for {self._connection.connection_id}: {e}"
                )
                if self._on_failed is not None:
                    await self._on_failed(e)
                return
            self.pings_sent += 1
            await asyncio.sleep(self._interval)

        logger.debug(f"Heartbeat loop exited for {self._connection.connection_id}")
