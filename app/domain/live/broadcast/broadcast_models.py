"""Broadcast pipeline settings and data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from app.app_config import AppEnvironConfig
from app.schemas.broadcast_state import BroadcastState
from app.schemas.media import MediaKind
from app.services.media_engine import Consumer, PlainTransport, PlainTransportOptions
from app.services.transcoder import TranscoderProcess


@dataclass(frozen=True)
class BroadcastSettings:
    bridge_options: PlainTransportOptions = field(default_factory=PlainTransportOptions)
    sdp_path: Path = Path("ffmpeg-sdp.sdp")
    # Seconds between writing the session description and launching the transcoder
    settle_delay: float = 0.1
    # Seconds to wait for the transcoder to exit after SIGKILL
    kill_timeout: float = 5.0

    @classmethod
    def from_config(cls, cfg: AppEnvironConfig) -> BroadcastSettings:
        return cls(
            bridge_options=PlainTransportOptions(
                listen_ip=cfg.BRIDGE_LISTEN_IP,
                rtcp_mux=cfg.BRIDGE_RTCP_MUX,
                comedia=cfg.BRIDGE_COMEDIA,
            ),
            sdp_path=cfg.SDP_FILE_PATH,
            settle_delay=max(0, cfg.SDP_SETTLE_DELAY_MS) / 1000,
        )


@dataclass(frozen=True)
class BroadcastSelection:
    """Producers chosen for the current run."""

    audio_producer_id: str
    video_producer_id: str

    def includes(self, producer_id: str) -> bool:
        return producer_id in (self.audio_producer_id, self.video_producer_id)


@dataclass
class BridgeResources:
    """Engine objects and process owned by one pipeline run."""

    transports: dict[MediaKind, PlainTransport] = field(default_factory=dict)
    consumers: dict[MediaKind, Consumer] = field(default_factory=dict)
    process: TranscoderProcess | None = None


class BroadcastStatus(BaseModel):
    state: BroadcastState
    audio_producer_id: str | None = None
    video_producer_id: str | None = None
    transcoder_pid: int | None = None
    runs: int = Field(default=0, description="Number of runs that reached ACTIVE")
    last_exit_code: int | None = Field(default=None, description="Exit code of the last transcoder")
    last_error: str | None = Field(default=None, description="Why the last start attempt failed")


__all__ = [
    "BridgeResources",
    "BroadcastSelection",
    "BroadcastSettings",
    "BroadcastStatus",
]
