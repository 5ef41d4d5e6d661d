"""
Outbound Dispatcher

Reads the upstream connection for the lifetime of a session, decodes frames
and republishes them to the client channel as normalised envelopes.

An upstream hang-up (connection closed or reset, read failure) ends the loop
quietly; tearing the session down is the supervisor's job.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from llamabot_relay.errors import UpstreamIOError
from llamabot_relay.protocol.envelope import envelope_from_frame
from llamabot_relay.protocol.frames import FrameDecoder
from llamabot_relay.upstream.connection import UpstreamConnection

if TYPE_CHECKING:
    from llamabot_relay.transport.channel import ClientChannel

logger = logging.getLogger(__name__)


class OutboundDispatcher:
    """Upstream -> client pump for one session."""

    def __init__(
        self,
        connection: UpstreamConnection,
        channel: "ClientChannel",
        session_id: str,
        on_finished: Callable[[], Awaitable[None]] | None = None,
    ):
        self._connection = connection
        self._channel = channel
        self._session_id = session_id
        self._on_finished = on_finished
        self._decoder = FrameDecoder()
        self.frames_published = 0

    async def run(self) -> None:
        """
        Pump frames until the upstream hangs up.

        Cancellation propagates to the caller; I/O errors end the loop and
        fire on_finished so the session is torn down.
        """
        try:
            while not self._connection.closed:
                data = await self._connection.receive()
                for frame in self._decoder.feed(data):
                    await self._publish(frame)
        except UpstreamIOError as e:
            logger.warning(f"Upstream hung up for session {self._session_id}: {e}")

        for frame in self._decoder.finish():
            await self._publish(frame)

        if self._on_finished is not None:
            await self._on_finished()

    async def _publish(self, frame: dict[str, Any]) -> None:
        envelope = envelope_from_frame(frame)
        try:
            await self._channel.publish(self._session_id, envelope)
        except Exception as e:
            logger.error(
                f"Failed to publish {envelope.type} frame to session {self._session_id}: {e}"
            )
            return
        self.frames_published += 1
