"""Wire schemas and shared enums."""

from .broadcast_state import BroadcastState
from .media import (
    DtlsParameters,
    MediaKind,
    ProducerState,
    RouterCapabilities,
    RtpCodecCapability,
    RtpParameters,
    TransportDescriptor,
    TransportDirection,
    TransportState,
)

__all__ = [
    "BroadcastState",
    "DtlsParameters",
    "MediaKind",
    "ProducerState",
    "RouterCapabilities",
    "RtpCodecCapability",
    "RtpParameters",
    "TransportDescriptor",
    "TransportDirection",
    "TransportState",
]
