"""
Chat WebSocket Handler

Browser-facing side of a relayed session.

Connection lifecycle:
- accept -> allocate a session id -> attach an outbound queue
- open the session relay (the only failure that closes the socket, 1011)
- every received JSON object is relayed upstream
- disconnect -> close the relay -> detach the queue

Why accept before the upstream is ready?
- The client keeps its channel even when the agent is unreachable
- Setup errors reach the browser as error envelopes
"""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from llamabot_relay.protocol.envelope import create_error
from llamabot_relay.relay.manager import RelayManager
from llamabot_relay.transport.channel import ChannelHub

logger = logging.getLogger(__name__)


class ChatWebSocketHandler:
    """
    Handles chat WebSocket connections.

    Each connection owns exactly one SessionRelay for its lifetime.
    """

    def __init__(self, hub: ChannelHub, manager: RelayManager):
        """
        Initialize the handler.

        Args:
            hub: Client channel hub the relays publish to
            manager: Relay manager creating one relay per connection
        """
        self._hub = hub
        self._manager = manager

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Handle one WebSocket connection until the client disconnects."""
        await websocket.accept()

        session_id = uuid4().hex
        self._hub.attach(session_id, websocket.send_text)

        try:
            try:
                relay = await self._manager.open_session(session_id)
            except Exception as e:
                logger.error(f"Could not start relay for session {session_id}: {e}")
                await websocket.close(code=1011, reason="Relay could not be started")
                return

            async def handle_message(data: dict[str, Any]) -> None:
                await relay.relay_inbound(data, websocket.scope)

            self._hub.on_message(session_id, handle_message)
            logger.info(f"Chat session connected: {session_id}")

            while True:
                data = await self._receive_message(websocket, session_id)
                if data is None:
                    continue
                await self._hub.dispatch(session_id, data)

        except WebSocketDisconnect:
            logger.info(f"Chat session disconnected: {session_id}")

        except Exception as e:
            logger.error(f"WebSocket error for session {session_id}: {e}")

        finally:
            await self._manager.close_session(session_id, reason="client disconnected")
            await self._hub.detach(session_id)

    async def _receive_message(
        self,
        websocket: WebSocket,
        session_id: str,
    ) -> dict[str, Any] | None:
        """
        Receive and parse one client message.

        Returns:
            The parsed object, or None after publishing an error envelope

        Raises:
            WebSocketDisconnect: When the client goes away
        """
        text = await websocket.receive_text()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid message from session {session_id}: {e}")
            await self._hub.publish(
                session_id,
                create_error(f"Invalid JSON: {e}", error_code="INVALID_MESSAGE"),
            )
            return None

        if not isinstance(data, dict):
            await self._hub.publish(
                session_id,
                create_error("Message must be a JSON object", error_code="INVALID_MESSAGE"),
            )
            return None
        return data
