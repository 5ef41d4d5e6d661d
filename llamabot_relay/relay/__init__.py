# Session Relay
# Per-session supervisor with its inbound adapter, outbound dispatcher and
# heartbeat, plus the one-shot streaming adapter

from llamabot_relay.relay.inbound import (
    DEFAULT_AGENT_NAME,
    DEFAULT_THREAD_ID,
    AgentStateBuilder,
    InboundAdapter,
    StateBuilderRegistry,
    StatePayload,
    default_state_builders,
)
from llamabot_relay.relay.dispatcher import OutboundDispatcher
from llamabot_relay.relay.heartbeat import DEFAULT_HEARTBEAT_INTERVAL, HeartbeatTask
from llamabot_relay.relay.supervisor import RelayState, SessionRelay
from llamabot_relay.relay.manager import RelayManager
from llamabot_relay.relay.streaming import EventStreamWriter, StreamingRequestAdapter

__all__ = [
    "DEFAULT_AGENT_NAME",
    "DEFAULT_THREAD_ID",
    "AgentStateBuilder",
    "InboundAdapter",
    "StateBuilderRegistry",
    "StatePayload",
    "default_state_builders",
    "OutboundDispatcher",
    "DEFAULT_HEARTBEAT_INTERVAL",
    "HeartbeatTask",
    "RelayState",
    "SessionRelay",
    "RelayManager",
    "EventStreamWriter",
    "StreamingRequestAdapter",
]
