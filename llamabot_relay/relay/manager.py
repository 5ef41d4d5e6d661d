"""
Relay Manager

Tracks the session relays of this process, keyed by session id.

Each relay is independent and single-owner; the manager only creates them,
looks them up and shuts them all down on application exit. A relay removes
itself from the manager when it closes.
"""

import asyncio
import logging

from llamabot_relay.auth.hooks import HostHooks
from llamabot_relay.auth.token import SessionTokenSigner
from llamabot_relay.prompts import PromptProvider
from llamabot_relay.relay.heartbeat import DEFAULT_HEARTBEAT_INTERVAL
from llamabot_relay.relay.inbound import (
    DEFAULT_AGENT_NAME,
    InboundAdapter,
    StateBuilderRegistry,
    default_state_builders,
)
from llamabot_relay.relay.supervisor import RelayState, SessionRelay
from llamabot_relay.transport.channel import ClientChannel
from llamabot_relay.upstream.connection import UpstreamConnectionFactory

logger = logging.getLogger(__name__)


class RelayManager:
    """Creates and tracks SessionRelays."""

    def __init__(
        self,
        channel: ClientChannel,
        connection_factory: UpstreamConnectionFactory,
        signer: SessionTokenSigner,
        prompts: PromptProvider,
        hooks: HostHooks | None = None,
        state_builders: StateBuilderRegistry | None = None,
        agent_name: str = DEFAULT_AGENT_NAME,
        heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        """
        Initialize the manager.

        Args:
            channel: Client-facing channel relays publish to
            connection_factory: Opens upstream connections
            signer: Issues per-message session tokens
            prompts: Agent system prompt provider
            hooks: Host user resolvers
            state_builders: Payload builder registry (process default if None)
            agent_name: Upstream agent selector
            heartbeat_interval_seconds: Interval between upstream pings
        """
        self._channel = channel
        self._factory = connection_factory
        self._signer = signer
        self._prompts = prompts
        self._hooks = hooks or HostHooks()
        self._builders = state_builders or default_state_builders
        self._agent_name = agent_name
        self._heartbeat_interval = heartbeat_interval_seconds

        # session_id -> SessionRelay
        self._relays: dict[str, SessionRelay] = {}

    async def open_session(self, session_id: str) -> SessionRelay:
        """
        Create a relay for a session and start connecting.

        The payload builder is resolved here, once per session.

        Raises:
            ValueError: If a relay already exists for the session
            RuntimeError: If the relay's setup task could not be spawned
        """
        if session_id in self._relays:
            raise ValueError(f"Relay for session {session_id} already exists")

        inbound = InboundAdapter(
            signer=self._signer,
            prompts=self._prompts,
            hooks=self._hooks,
            builder_factory=self._builders.resolve(),
            agent_name=self._agent_name,
        )
        relay = SessionRelay(
            session_id=session_id,
            channel=self._channel,
            connection_factory=self._factory,
            inbound=inbound,
            heartbeat_interval_seconds=self._heartbeat_interval,
            on_closed=self._forget,
        )
        self._relays[session_id] = relay
        try:
            await relay.open()
        except Exception:
            self._relays.pop(session_id, None)
            raise

        logger.info(f"Relay created for session {session_id}")
        return relay

    def get(self, session_id: str) -> SessionRelay | None:
        return self._relays.get(session_id)

    async def close_session(self, session_id: str, reason: str | None = None) -> bool:
        """Close a session's relay. Returns False if there was none."""
        relay = self._relays.get(session_id)
        if relay is None:
            return False
        await relay.close(reason=reason)
        self._relays.pop(session_id, None)
        return True

    def _forget(self, session_id: str) -> None:
        self._relays.pop(session_id, None)

    async def shutdown(self) -> None:
        """Close every relay."""
        relays = list(self._relays.values())
        if relays:
            await asyncio.gather(
                *(relay.close(reason="shutdown") for relay in relays),
                return_exceptions=True,
            )
        self._relays.clear()
        logger.info(f"Relay manager shut down ({len(relays)} relays closed)")

    @property
    def session_count(self) -> int:
        """Number of tracked relays."""
        return len(self._relays)

    @property
    def open_count(self) -> int:
        """Number of relays with a live upstream connection."""
        return sum(1 for r in self._relays.values() if r.state == RelayState.OPEN)
