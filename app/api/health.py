from fastapi import APIRouter, Request

from app.domain.live.room.room_domain import Room
from app.domain.live.room.room_models import RoomStatus
from app.shared.api.utils import ApiOut, ApiSuccess
from app.utils.app_errors import AppError, AppErrorCode

router = APIRouter()


def get_room(request: Request) -> Room:
    room: Room | None = getattr(request.app.state, "room", None)
    if room is None:
        raise AppError(errcode=AppErrorCode.E_NOT_READY, errmesg="Room is not initialised")
    return room


@router.get("/health", response_model=ApiSuccess)
async def health():
    return ApiSuccess(results="OK")


@router.get("/broadcast/status")
async def broadcast_status(request: Request) -> ApiOut[RoomStatus]:
    """Snapshot of the room: readiness, peers, producers and the broadcast pipeline."""
    return ApiOut[RoomStatus](results=get_room(request).status())
