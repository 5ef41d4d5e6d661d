"""
Session Relay Supervisor

Owns one client session's upstream connection together with its outbound
dispatcher and heartbeat tasks.

Session Lifecycle:
1. IDLE - Created, nothing running
2. CONNECTING - Setup task opening the upstream connection
3. OPEN - Dispatcher and heartbeat running, messages relayed
4. CLOSING - Tasks being cancelled, connection being closed
5. CLOSED - Nothing left running

A failed upstream never rejects the client subscription: the client gets an
error envelope and keeps its channel. Teardown cancels every task and closes
the connection even when one of those steps fails.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from llamabot_relay.auth.hooks import RequestContext
from llamabot_relay.errors import UpstreamConnectionError, UpstreamIOError
from llamabot_relay.protocol.envelope import ClientEnvelope, create_connected, create_error
from llamabot_relay.relay.dispatcher import OutboundDispatcher
from llamabot_relay.relay.heartbeat import DEFAULT_HEARTBEAT_INTERVAL, HeartbeatTask
from llamabot_relay.relay.inbound import InboundAdapter
from llamabot_relay.upstream.connection import UpstreamConnection, UpstreamConnectionFactory

if TYPE_CHECKING:
    from llamabot_relay.transport.channel import ClientChannel

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    """Relay lifecycle states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionRelay:
    """
    Supervises the upstream side of one client session.

    Usage:
        relay = SessionRelay(session_id, channel, factory, inbound)
        await relay.open()                 # returns once setup is scheduled
        await relay.relay_inbound({"message": "hello"}, scope)
        await relay.close()
    """

    def __init__(
        self,
        session_id: str,
        channel: "ClientChannel",
        connection_factory: UpstreamConnectionFactory,
        inbound: InboundAdapter,
        heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL,
        on_closed: Callable[[str], None] | None = None,
    ):
        self.session_id = session_id
        self._channel = channel
        self._factory = connection_factory
        self._inbound = inbound
        self._heartbeat_interval = heartbeat_interval_seconds
        self._on_closed = on_closed

        self._state = RelayState.IDLE
        self._connection: UpstreamConnection | None = None
        self._setup_task: asyncio.Task | None = None
        self._dispatcher_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._closed_event = asyncio.Event()
        self.close_reason: str | None = None

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == RelayState.OPEN

    @property
    def connection(self) -> UpstreamConnection | None:
        return self._connection

    @property
    def dispatcher_task(self) -> asyncio.Task | None:
        return self._dispatcher_task

    @property
    def heartbeat_task(self) -> asyncio.Task | None:
        return self._heartbeat_task

    # === Lifecycle ===

    async def open(self) -> None:
        """
        Start connecting in the background.

        Returns as soon as the setup task is scheduled; the client channel
        is not held up by the upstream handshake.

        Raises:
            RuntimeError: If the relay was already opened or the setup task
                could not be spawned
        """
        if self._state != RelayState.IDLE:
            raise RuntimeError(f"Relay {self.session_id} already {self._state.value}")

        self._state = RelayState.CONNECTING
        try:
            self._setup_task = asyncio.create_task(
                self._setup(),
                name=f"relay_setup_{self.session_id}"
            )
        except Exception:
            self._mark_closed("setup task could not be spawned")
            raise

    async def wait_ready(self) -> RelayState:
        """Wait for the setup task to finish; returns the resulting state."""
        if self._setup_task is not None:
            try:
                await asyncio.shield(self._setup_task)
            except asyncio.CancelledError:
                if not self._setup_task.cancelled():
                    raise
        return self._state

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def _setup(self) -> None:
        try:
            connection = await self._factory.connect(self.session_id)
        except UpstreamConnectionError as e:
            logger.error(f"Upstream setup failed for session {self.session_id}: {e}")
            await self._publish(create_error(
                "Agent service is unavailable",
                error_code="UPSTREAM_UNAVAILABLE",
                details={"reason": e.reason},
            ))
            self._mark_closed("upstream unavailable")
            return
        except Exception as e:
            logger.error(f"Unexpected error during upstream setup for {self.session_id}: {e}")
            await self._publish(create_error(
                "Agent service is unavailable",
                error_code="UPSTREAM_UNAVAILABLE",
            ))
            self._mark_closed("upstream setup error")
            return

        if connection is None:
            await self._publish(create_error(
                "Agent service is not configured",
                error_code="UPSTREAM_NOT_CONFIGURED",
            ))
            self._mark_closed("upstream not configured")
            return

        if self._state != RelayState.CONNECTING:
            # close() won the race while the handshake was in flight
            await connection.close()
            return

        self._connection = connection
        self._state = RelayState.OPEN

        dispatcher = OutboundDispatcher(
            connection,
            self._channel,
            self.session_id,
            on_finished=self._on_upstream_finished,
        )
        heartbeat = HeartbeatTask(
            connection,
            self._heartbeat_interval,
            on_failed=self._on_upstream_write_failed,
        )
        self._dispatcher_task = asyncio.create_task(
            dispatcher.run(),
            name=f"relay_dispatcher_{self.session_id}"
        )
        self._heartbeat_task = asyncio.create_task(
            heartbeat.run(),
            name=f"relay_heartbeat_{self.session_id}"
        )

        logger.info(f"Relay open: {self.session_id}")
        await self._publish(create_connected(self.session_id))

    async def _on_upstream_finished(self) -> None:
        if self._state == RelayState.OPEN:
            await self._publish(create_error(
                "Agent connection closed",
                error_code="UPSTREAM_CLOSED",
            ))
            await self.close(reason="upstream closed")

    async def _on_upstream_write_failed(self, error: UpstreamIOError) -> None:
        if self._state == RelayState.OPEN:
            logger.error(f"Upstream write failed for session {self.session_id}: {error}")
            await self._publish(create_error(
                "Agent connection closed",
                error_code="UPSTREAM_CLOSED",
            ))
            await self.close(reason="upstream write failed")

    async def close(self, reason: str | None = None) -> None:
        """
        Tear the session down.

        Cancels the setup, dispatcher and heartbeat tasks and closes the
        upstream connection. Each step runs even if an earlier one failed.
        Safe to call more than once and from the relay's own tasks.
        """
        if self._state == RelayState.CLOSED:
            return
        if self._state == RelayState.CLOSING:
            if asyncio.current_task() not in (self._dispatcher_task, self._heartbeat_task):
                await self._closed_event.wait()
            return

        self._state = RelayState.CLOSING
        self.close_reason = reason
        logger.info(f"Closing relay {self.session_id} (reason: {reason})")

        await self._cancel_task(self._setup_task, "setup")
        await self._cancel_task(self._dispatcher_task, "dispatcher")
        await self._cancel_task(self._heartbeat_task, "heartbeat")

        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning(f"Error closing upstream for {self.session_id}: {e}")

        self._mark_closed(reason)

    async def _cancel_task(self, task: asyncio.Task | None, name: str) -> None:
        if task is None:
            return
        if task is asyncio.current_task():
            return
        if task.done():
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    f"Relay {name} task for {self.session_id} had failed: {task.exception()}"
                )
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Relay {name} task for {self.session_id} failed on cancel: {e}")

    def _mark_closed(self, reason: str | None) -> None:
        self._state = RelayState.CLOSED
        if self.close_reason is None:
            self.close_reason = reason
        self._closed_event.set()
        if self._on_closed is not None:
            try:
                self._on_closed(self.session_id)
            except Exception as e:
                logger.warning(f"on_closed callback failed for {self.session_id}: {e}")

    # === Messages ===

    async def relay_inbound(
        self,
        data: dict[str, Any],
        request_context: RequestContext,
    ) -> bool:
        """
        Relay one client message upstream.

        Never raises: failures are logged and published to the client as an
        error envelope. A message that cannot be built leaves the session
        open; a failed upstream write tears it down. Messages arriving while
        the upstream handshake is in flight wait for it to finish.

        Returns:
            True if the message was written upstream
        """
        if self._state == RelayState.CONNECTING:
            await self.wait_ready()

        if self._state != RelayState.OPEN or self._connection is None:
            await self._publish(create_error(
                "Agent is not connected",
                error_code="UPSTREAM_NOT_CONNECTED",
            ))
            return False

        try:
            await self._inbound.send(self._connection, data, request_context)
            return True
        except UpstreamIOError as e:
            await self._on_upstream_write_failed(e)
            return False
        except Exception as e:
            logger.error(f"Failed to relay message for session {self.session_id}: {e}")
            await self._publish(create_error(
                f"Failed to relay message: {e}",
                error_code="RELAY_FAILED",
            ))
            return False

    async def _publish(self, envelope: ClientEnvelope) -> None:
        try:
            await self._channel.publish(self.session_id, envelope)
        except Exception as e:
            logger.error(f"Failed to publish {envelope.type} to session {self.session_id}: {e}")

