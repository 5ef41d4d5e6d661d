"""
Upstream HTTP Client

Request-scoped calls to the upstream agent service:
- POST /llamabot-chat-message: one-shot chat turn, streamed back as
  newline-delimited JSON
- GET /threads, GET /chat-history/{thread_id}: conversation lookups
  (history lives upstream, never in the relay)
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from llamabot_relay.errors import UpstreamIOError
from llamabot_relay.protocol.frames import FrameDecoder

logger = logging.getLogger(__name__)


class LlamaBotClient:
    """
    httpx-based client for the upstream agent's HTTP API.

    The client is created per application and shared by all requests.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Upstream HTTP base URL
            timeout: Read timeout; None keeps long agent turns open
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def send_agent_message(self, payload: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """
        Send one chat turn and yield the upstream frames as they arrive.

        Raises:
            UpstreamIOError: On a non-200 response or a transport failure
        """
        decoder = FrameDecoder()
        try:
            async with self._http.stream("POST", "/llamabot-chat-message", json=payload) as response:
                if response.status_code != 200:
                    raise UpstreamIOError(
                        f"Upstream returned HTTP {response.status_code} for chat message"
                    )
                async for chunk in response.aiter_bytes():
                    logger.debug(f"[LlamaBot] Received chunk: {chunk[:200]!r}")
                    for frame in decoder.feed(chunk):
                        yield frame
        except httpx.HTTPError as e:
            raise UpstreamIOError(f"Upstream chat call failed: {e}") from e

        for frame in decoder.finish():
            yield frame

    async def get_threads(self) -> Any:
        """List conversation threads; [] on any failure."""
        try:
            response = await self._http.get("/threads")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching threads: {e}")
            return []

    async def get_chat_history(self, thread_id: str) -> Any:
        """Fetch the messages of a thread; [] on any failure."""
        if not thread_id or thread_id == "undefined":
            return []
        try:
            response = await self._http.get(f"/chat-history/{thread_id}")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching chat history: {e}")
            return []
