"""
Client Outbound Queue

Per-connection async outgoing queue with a single writer task.

Design:
- Each client connection gets a dedicated bounded asyncio.Queue
- A single writer coroutine drains the queue and sends to the socket, so
  envelopes from the dispatcher, heartbeat failures and setup errors never
  interleave mid-write
- A full queue is reported to the caller, which drops the envelope
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class QueueFullError(Exception):
    """Raised when the outbound queue is full (backpressure)."""
    def __init__(self, session_key: str, queue_size: int):
        self.session_key = session_key
        self.queue_size = queue_size
        super().__init__(f"Queue full for {session_key} (size={queue_size})")


class OutboundQueue:
    """
    Outbound message queue for a single client connection.

    Features:
    - Async queue with configurable max size
    - Single writer task to serialize socket sends
    - Non-blocking put with backpressure signaling
    """

    def __init__(
        self,
        session_key: str,
        send_fn: Callable[[str], Awaitable[None]],
        max_size: int = 200
    ):
        """
        Initialize the queue.

        Args:
            session_key: Client session the queue writes to
            send_fn: Async function sending one text message to the socket
            max_size: Max queue depth before backpressure
        """
        self.session_key = session_key
        self._send_fn = send_fn
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_size)
        self._writer_task: asyncio.Task | None = None
        self._closed = False
        self._max_size = max_size

    def start(self) -> None:
        """Start the writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(
                self._writer_loop(),
                name=f"client_writer_{self.session_key}"
            )

    async def stop(self) -> None:
        """Stop the writer task; queued messages not yet sent are discarded."""
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

        if self._writer_task:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None

    async def drain(self) -> None:
        """Wait until every queued message has been handed to the socket."""
        await self._queue.join()

    def put_nowait(self, message: str) -> None:
        """
        Put a message on the queue without blocking.

        Raises:
            QueueFullError: If queue is full (backpressure condition)
            RuntimeError: If the queue was stopped
        """
        if self._closed:
            raise RuntimeError(f"Queue closed for {self.session_key}")

        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            raise QueueFullError(self.session_key, self._max_size)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _writer_loop(self) -> None:
        while not self._closed:
            message = await self._queue.get()
            try:
                # None is the shutdown signal
                if message is None:
                    break
                await self._send_fn(message)
            except Exception as e:
                logger.warning(f"Send failed for {self.session_key}: {e}")
                # Socket is gone; stop accepting more
                self._closed = True
                break
            finally:
                self._queue.task_done()

        # Discard the backlog so drain() callers are released
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
