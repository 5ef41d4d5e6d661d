"""
Streaming Request Adapter

Half-duplex variant of the relay for one-shot chat turns: one HTTP request
in, one server-sent-event stream out. Every decoded upstream frame becomes
one "data: <json>" record.

No heartbeat is needed since the upstream call only lives as long as the
request. The output stream is closed exactly once on every exit path.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from llamabot_relay.auth.hooks import HostHooks, RequestContext
from llamabot_relay.auth.token import SessionTokenSigner
from llamabot_relay.prompts import PromptProvider
from llamabot_relay.protocol.envelope import create_error
from llamabot_relay.relay.inbound import (
    DEFAULT_AGENT_NAME,
    InboundAdapter,
    StateBuilderRegistry,
    default_state_builders,
)
from llamabot_relay.upstream.client import LlamaBotClient

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(data: dict[str, Any]) -> str:
    """Format one server-sent event record."""
    return f"data: {json.dumps(data)}\n\n"


class EventStreamWriter:
    """
    Queue-backed SSE response body.

    The adapter writes records; the HTTP layer iterates the writer. When the
    consumer stops iterating (client gone), the bound producer is cancelled.
    """

    def __init__(self):
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self._producer: asyncio.Task | None = None
        self.close_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, producer: asyncio.Task) -> None:
        """Attach the task writing into this stream."""
        self._producer = producer

    async def write(self, data: dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError("Event stream already closed")
        await self._queue.put(format_sse(data))

    def close(self) -> None:
        """Close the stream (idempotent)."""
        if self._closed:
            return
        self._closed = True
        self.close_count += 1
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            while True:
                record = await self._queue.get()
                if record is None:
                    break
                yield record
        finally:
            if self._producer is not None and not self._producer.done():
                self._producer.cancel()


class StreamingRequestAdapter:
    """Relays one chat turn from an HTTP request to an SSE stream."""

    def __init__(
        self,
        client: LlamaBotClient,
        signer: SessionTokenSigner,
        prompts: PromptProvider,
        hooks: HostHooks | None = None,
        state_builders: StateBuilderRegistry | None = None,
        agent_name: str = DEFAULT_AGENT_NAME,
    ):
        self._client = client
        self._signer = signer
        self._prompts = prompts
        self._hooks = hooks or HostHooks()
        self._builders = state_builders or default_state_builders
        self._agent_name = agent_name

    async def stream(
        self,
        writer: EventStreamWriter,
        message: str | None,
        thread_id: str | None,
        request_context: RequestContext,
    ) -> None:
        """
        Run one upstream call, writing each frame as an event.

        Errors become one final error event; the writer is always closed.
        """
        inbound = InboundAdapter(
            signer=self._signer,
            prompts=self._prompts,
            hooks=self._hooks,
            builder_factory=self._builders.resolve(),
            agent_name=self._agent_name,
        )
        try:
            payload = inbound.build_payload(
                {"message": message, "thread_id": thread_id},
                request_context,
            )
            async for frame in self._client.send_agent_message(payload):
                await writer.write(frame)
        except Exception as e:
            logger.error(f"Error in send_message action: {e}")
            if not writer.closed:
                await writer.write(create_error(str(e), error_code="STREAM_FAILED").to_wire())
        finally:
            writer.close()

    def start(
        self,
        message: str | None,
        thread_id: str | None,
        request_context: RequestContext,
    ) -> EventStreamWriter:
        """Spawn the upstream call and return the stream it writes to."""
        writer = EventStreamWriter()
        task = asyncio.create_task(
            self.stream(writer, message, thread_id, request_context),
            name="llamabot_send_message",
        )
        writer.bind(task)
        return writer
