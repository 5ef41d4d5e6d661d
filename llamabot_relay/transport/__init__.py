# Client Transport
# Browser-facing channel hub and per-connection outbound queues
# The FastAPI app (llamabot_relay.transport.app) is imported on its own to keep
# the relay core free of web-framework start-up code

from llamabot_relay.transport.queue import OutboundQueue, QueueFullError
from llamabot_relay.transport.channel import ChannelHub, ClientChannel

__all__ = ["OutboundQueue", "QueueFullError", "ChannelHub", "ClientChannel"]
