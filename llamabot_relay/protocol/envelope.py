"""
Client Envelope Model

Every message published to the client-facing channel uses one envelope shape:
{type, content, ...}. Upstream frames are normalised into it by the
outbound dispatcher; the relay itself emits connection and error envelopes.

Why normalise?
- The browser renders on a single discriminator
- Protocol noise (pong payloads) stays out of the UI
- Unknown upstream frame types still reach the client unchanged
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from llamabot_relay.protocol.frames import FrameType


class EnvelopeType(str, Enum):
    """Envelope types emitted by the relay itself."""
    CONNECTED = "external_ws_pong"  # Upstream link is ready
    PONG = "pong"
    ERROR = "error"


class ClientEnvelope(BaseModel):
    """
    Normalised envelope delivered to the client channel.

    Extra keys from the upstream frame (id, tool_calls, base_message, ...)
    are carried through as-is.
    """
    model_config = ConfigDict(extra="allow")

    type: str = Field(
        ...,
        description="Discriminator copied from the upstream frame or set by the relay"
    )
    content: Any = Field(
        default=None,
        description="Frame content; absent for pong envelopes"
    )

    def _dump_exclude(self) -> set[str] | None:
        # content is dropped only when never given (pong); explicit nulls stay
        return None if "content" in self.model_fields_set else {"content"}

    def to_wire(self) -> dict[str, Any]:
        """Dict form sent to the client (unset content omitted)."""
        return self.model_dump(exclude=self._dump_exclude())

    def to_json(self) -> str:
        return self.model_dump_json(exclude=self._dump_exclude())


def envelope_from_frame(frame: dict[str, Any]) -> ClientEnvelope:
    """
    Map an upstream frame to a client envelope.

    - pong -> {type: "pong"} (content and any other keys dropped)
    - ai / tool / error / final / unknown -> original keys and values kept,
      including explicit nulls
    """
    frame_type = str(frame.get("type") or "unknown")
    if frame_type == FrameType.PONG.value:
        return create_pong()
    rest = {k: v for k, v in frame.items() if k != "type"}
    return ClientEnvelope(type=frame_type, **rest)


# === Convenience constructors for relay-originated envelopes ===

def create_pong() -> ClientEnvelope:
    """Minimal liveness envelope."""
    return ClientEnvelope(type=EnvelopeType.PONG.value)


def create_connected(session_id: str) -> ClientEnvelope:
    """Envelope telling the client the upstream agent link is ready."""
    return ClientEnvelope(
        type=EnvelopeType.CONNECTED.value,
        content="connected",
        session_id=session_id,
        connection_state="connected",
    )


def create_error(
    error_message: str,
    error_code: str = "RELAY_ERROR",
    details: dict[str, Any] | None = None,
) -> ClientEnvelope:
    """
    Create an error envelope.

    Used for upstream setup failures, failed message relays and invalid
    client messages.
    """
    extra: dict[str, Any] = {"error_code": error_code}
    if details:
        extra["details"] = details
    return ClientEnvelope(type=EnvelopeType.ERROR.value, content=error_message, **extra)
