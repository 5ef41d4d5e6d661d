"""
Client Channel Hub

The client-facing side of the relay. Relays publish envelopes by session
key; the hub serialises them and hands them to that connection's outbound
queue. Inbound client messages are routed to the handler registered for the
session.

Publishing never raises into the relay: unknown sessions and full queues are
logged and the envelope is dropped.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

from llamabot_relay.protocol.envelope import ClientEnvelope
from llamabot_relay.transport.queue import OutboundQueue, QueueFullError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class ClientChannel(Protocol):
    """Pub/sub channel between the relay and browser clients."""

    async def publish(self, session_key: str, envelope: ClientEnvelope) -> None:
        ...

    def on_message(self, session_key: str, handler: MessageHandler) -> None:
        ...


class ChannelHub:
    """
    ClientChannel backed by one OutboundQueue per attached connection.

    Usage:
        hub = ChannelHub(max_queue_size=200)
        hub.attach(session_key, websocket.send_text)
        hub.on_message(session_key, handler)
        await hub.publish(session_key, create_pong())
        await hub.dispatch(session_key, {"message": "hi"})
        await hub.detach(session_key)
    """

    def __init__(self, max_queue_size: int = 200):
        self._max_queue_size = max_queue_size
        self._queues: dict[str, OutboundQueue] = {}
        self._handlers: dict[str, MessageHandler] = {}
        self.dropped_count = 0

    def attach(
        self,
        session_key: str,
        send_fn: Callable[[str], Awaitable[None]],
    ) -> OutboundQueue:
        """
        Register a client connection and start its writer task.

        Raises:
            ValueError: If the session key is already attached
        """
        if session_key in self._queues:
            raise ValueError(f"Session {session_key} already attached")
        queue = OutboundQueue(session_key, send_fn, self._max_queue_size)
        queue.start()
        self._queues[session_key] = queue
        logger.debug(f"Client attached: {session_key}")
        return queue

    async def detach(self, session_key: str) -> None:
        """Stop the connection's writer and forget its handler."""
        self._handlers.pop(session_key, None)
        queue = self._queues.pop(session_key, None)
        if queue:
            await queue.stop()
            logger.debug(f"Client detached: {session_key}")

    async def publish(self, session_key: str, envelope: ClientEnvelope) -> None:
        queue = self._queues.get(session_key)
        if queue is None or queue.closed:
            self.dropped_count += 1
            logger.warning(f"Dropping {envelope.type} envelope for closed or unknown session {session_key}")
            return
        try:
            queue.put_nowait(envelope.to_json())
        except QueueFullError as e:
            self.dropped_count += 1
            logger.warning(f"Dropping {envelope.type} envelope: {e}")

    def on_message(self, session_key: str, handler: MessageHandler) -> None:
        self._handlers[session_key] = handler

    async def dispatch(self, session_key: str, data: dict[str, Any]) -> bool:
        """
        Route one inbound client message to its session handler.

        Returns:
            False if no handler is registered for the session
        """
        handler = self._handlers.get(session_key)
        if handler is None:
            logger.warning(f"No message handler for session {session_key}")
            return False
        await handler(data)
        return True

    async def shutdown(self, flush_timeout: float = 1.0) -> None:
        """Flush what is still queued for each live connection, then stop every writer."""
        for session_key, queue in list(self._queues.items()):
            if not queue.closed:
                try:
                    await asyncio.wait_for(queue.drain(), timeout=flush_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Outbound queue for {session_key} not flushed before shutdown")
            await queue.stop()
        self._queues.clear()
        self._handlers.clear()

    @property
    def connection_count(self) -> int:
        """Number of attached client connections."""
        return len(self._queues)
