"""Session description for the transcoder.

The transcoder reads bridged RTP from the local ports of the bridging
transports. Each media line carries the payload type, codec name, clock rate
and (for audio) channel count negotiated for the consumer feeding that port.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.schemas.media import MediaKind, RtpParameters


@dataclass(frozen=True)
class MediaLine:
    kind: MediaKind
    port: int
    payload_type: int
    codec_name: str
    clock_rate: int
    channels: int | None = None

    @classmethod
    def from_rtp_parameters(cls, kind: MediaKind, port: int, rtp_parameters: RtpParameters) -> MediaLine:
        """Build a media line from the first negotiated codec of a consumer."""
        if not rtp_parameters.codecs:
            raise ValueError(f"No negotiated {kind} codec to describe")
        codec = rtp_parameters.codecs[0]
        return cls(
            kind=kind,
            port=port,
            payload_type=codec.payload_type,
            codec_name=codec.codec_name,
            clock_rate=codec.clock_rate,
            channels=codec.channels if kind == MediaKind.AUDIO else None,
        )

    @property
    def rtpmap(self) -> str:
        encoding = f"{self.codec_name}/{self.clock_rate}"
        if self.channels:
            encoding = f"{encoding}/{self.channels}"
        return f"a=rtpmap:{self.payload_type} {encoding}"

    def render(self) -> list[str]:
        return [
            f"m={self.kind.value} {self.port} RTP/AVP {self.payload_type}",
            self.rtpmap,
            "a=sendonly",
        ]


def build_session_description(address: str, audio: MediaLine, video: MediaLine) -> str:
    lines = [
        "v=0",
        f"o=- 0 0 IN IP4 {address}",
        "s=FFmpeg",
        f"c=IN IP4 {address}",
        "t=0 0",
        *audio.render(),
        *video.render(),
    ]
    return "\n".join(lines) + "\n"


__all__ = ["MediaLine", "build_session_description"]
