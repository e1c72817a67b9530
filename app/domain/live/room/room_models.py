"""Room models."""

from pydantic import BaseModel, Field

from app.domain.live.broadcast.broadcast_models import BroadcastStatus


class RoomStatus(BaseModel):
    ready: bool = Field(description="Router created and capabilities available")
    peer_count: int = 0
    producer_count: int = 0
    has_audio_and_video: bool = False
    broadcast: BroadcastStatus
