"""Media wire schemas exchanged with peers and the media engine.

Field names are snake_case in Python and camelCase on the wire so payloads
match what browser mediasoup-client sends and expects.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"

    def __str__(self) -> str:
        return self.value


class TransportDirection(str, Enum):
    """Which side of the bridge a transport serves."""

    INGRESS_SEND = "ingress-send"
    EGRESS_BRIDGE = "egress-bridge"

    def __str__(self) -> str:
        return self.value


class TransportState(str, Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class ProducerState(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RtpCodecCapability(WireModel):
    """A codec the router is able to receive and send."""

    kind: MediaKind
    mime_type: str
    clock_rate: int
    channels: int | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    preferred_payload_type: int | None = None
    rtcp_feedback: list[dict[str, Any]] = Field(default_factory=list)


class RouterCapabilities(WireModel):
    codecs: list[RtpCodecCapability] = Field(default_factory=list)
    header_extensions: list[dict[str, Any]] = Field(default_factory=list)

    def codec_for(self, kind: MediaKind) -> RtpCodecCapability | None:
        for codec in self.codecs:
            if codec.kind == kind:
                return codec
        return None


class IceParameters(WireModel):
    username_fragment: str
    password: str
    ice_lite: bool = True


class IceCandidate(WireModel):
    foundation: str
    priority: int
    ip: str
    port: int
    protocol: str = "udp"
    type: str = "host"


class DtlsFingerprint(WireModel):
    algorithm: str
    value: str


class DtlsParameters(WireModel):
    role: str = "auto"
    fingerprints: list[DtlsFingerprint] = Field(default_factory=list)


class TransportDescriptor(WireModel):
    """Connection parameters relayed to a peer for a new ingress transport."""

    id: str
    ice_parameters: IceParameters
    ice_candidates: list[IceCandidate]
    dtls_parameters: DtlsParameters


class RtpCodecParameters(WireModel):
    mime_type: str
    payload_type: int
    clock_rate: int
    channels: int | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    rtcp_feedback: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def codec_name(self) -> str:
        """Codec name without the media type prefix, e.g. ``opus`` for ``audio/opus``."""
        return self.mime_type.split("/", 1)[-1]


class RtpParameters(WireModel):
    codecs: list[RtpCodecParameters] = Field(default_factory=list)
    header_extensions: list[dict[str, Any]] = Field(default_factory=list)
    encodings: list[dict[str, Any]] = Field(default_factory=list)
    mid: str | None = None


__all__ = [
    "DtlsFingerprint",
    "DtlsParameters",
    "IceCandidate",
    "IceParameters",
    "MediaKind",
    "ProducerState",
    "RouterCapabilities",
    "RtpCodecCapability",
    "RtpCodecParameters",
    "RtpParameters",
    "TransportDescriptor",
    "TransportDirection",
    "TransportState",
]
