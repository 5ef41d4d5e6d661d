# Wire Protocol
# Newline-delimited JSON upstream frames and normalised client envelopes

from llamabot_relay.protocol.frames import (
    FrameDecoder,
    FrameType,
    decode_segment,
    encode_frame,
)
from llamabot_relay.protocol.envelope import (
    ClientEnvelope,
    EnvelopeType,
    envelope_from_frame,
    create_connected,
    create_error,
    create_pong,
)

__all__ = [
    "FrameDecoder",
    "FrameType",
    "decode_segment",
    "encode_frame",
    "ClientEnvelope",
    "EnvelopeType",
    "envelope_from_frame",
    "create_connected",
    "create_error",
    "create_pong",
]
