"""
Upstream Frame Codec

The upstream agent service speaks newline-delimited JSON: every frame is one
JSON object terminated by "\\n". Network reads split and merge frames
arbitrarily, so the decoder keeps the unterminated tail between reads.

Known limitation: two objects written without a separating newline form one
segment that does not decode. That segment is logged and dropped; it is not
split by brace matching.
"""

import json
import logging
from collections.abc import Iterator
from enum import Enum
from typing import Any

from llamabot_relay.errors import FrameDecodeError

logger = logging.getLogger(__name__)

FRAME_DELIMITER = b"\n"


class FrameType(str, Enum):
    """Discriminator values of upstream frames."""
    AI = "ai"
    TOOL = "tool"
    ERROR = "error"
    PONG = "pong"
    FINAL = "final"
    PING = "ping"  # relay -> upstream only


def decode_segment(segment: bytes) -> dict[str, Any]:
    """
    Decode one complete line into a frame.

    Raises:
        FrameDecodeError: If the line is not a JSON object
    """
    try:
        frame = json.loads(segment)
    except ValueError as e:
        raise FrameDecodeError(segment.decode("utf-8", errors="replace"), str(e))
    if not isinstance(frame, dict):
        raise FrameDecodeError(
            segment.decode("utf-8", errors="replace"),
            f"expected a JSON object, got {type(frame).__name__}",
        )
    return frame


def encode_frame(frame: dict[str, Any]) -> str:
    """Serialize a frame as one newline-terminated line."""
    return json.dumps(frame, separators=(",", ":")) + "\n"


class FrameDecoder:
    """
    Incremental newline-delimited JSON decoder.

    Usage:
        decoder = FrameDecoder()
        for chunk in chunks:
            for frame in decoder.feed(chunk):
                handle(frame)
        for frame in decoder.finish():
            handle(frame)
    """

    def __init__(self):
        self._buffer = bytearray()
        self.frames_decoded = 0
        self.frames_dropped = 0

    @property
    def pending(self) -> bytes:
        """Bytes retained for the next feed() call."""
        return bytes(self._buffer)

    def feed(self, data: bytes | str) -> Iterator[dict[str, Any]]:
        """
        Append data and yield every frame completed by it.

        Malformed lines are logged and skipped; the remaining lines still decode.
        The data is buffered immediately; frames are decoded as the result is
        iterated.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffer.extend(data)
        return self._drain()

    def _drain(self) -> Iterator[dict[str, Any]]:
        while True:
            index = self._buffer.find(FRAME_DELIMITER)
            if index < 0:
                break
            segment = bytes(self._buffer[:index])
            del self._buffer[:index + 1]
            if not segment.strip():
                continue
            try:
                frame = decode_segment(segment)
            except FrameDecodeError as e:
                self.frames_dropped += 1
                logger.error(f"{e} (segment={e.segment[:200]!r})")
                continue
            self.frames_decoded += 1
            yield frame

    def finish(self) -> list[dict[str, Any]]:
        """Decode whatever non-whitespace content remains at end of input."""
        remainder = bytes(self._buffer)
        self._buffer.clear()
        if not remainder.strip():
            return []
        try:
            frame = decode_segment(remainder)
        except FrameDecodeError as e:
            self.frames_dropped += 1
            logger.error(f"Final buffer parse error: {e.reason} (segment={e.segment[:200]!r})")
            return []
        self.frames_decoded += 1
        return [frame]
