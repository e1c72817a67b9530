"""Socket.IO signaling: maps peer events to room operations.

Every request event is acknowledged. The handler's return value is the ack
payload: the operation result on success, a ``SignalingFailure`` otherwise.
Errors never propagate to the Socket.IO server.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import socketio
from loguru import logger
from pydantic import ValidationError

from app.domain.live.room.room_domain import Room
from app.shared.api.utils import format_error
from app.utils.app_errors import AppError, AppErrorCode

from .schemas import ConnectTransportIn, ProduceIn, ProduceOut, SignalingFailure

Ack = dict[str, Any] | str


class SignalingDispatcher:
    EVENTS = (
        "getRouterRtpCapabilities",
        "createWebRtcTransport",
        "connectTransport",
        "produce",
    )

    def __init__(self, room: Room) -> None:
        self._room = room

    def register(self, sio: socketio.AsyncServer) -> None:
        sio.on("connect", self.on_connect)
        sio.on("disconnect", self.on_disconnect)
        sio.on("getRouterRtpCapabilities", self.get_router_rtp_capabilities)
        sio.on("createWebRtcTransport", self.create_webrtc_transport)
        sio.on("connectTransport", self.connect_transport)
        sio.on("produce", self.produce)
        logger.info(f"Signaling handlers registered: {', '.join(self.EVENTS)}")

    async def _handle(self, sid: str, event: str, call: Callable[[], Awaitable[Ack]]) -> Ack:
        try:
            return await call()
        except ValidationError as e:
            failure = SignalingFailure.from_app_error(
                AppError(
                    errcode=AppErrorCode.E_INVALID_PARAMS,
                    errmesg=f"Invalid {event} payload: {e.error_count()} errors",
                )
            )
            logger.warning(f"{failure.errcode} {failure.erresid} sid={sid} event={event} errors={e.errors()}")
        except AppError as e:
            failure = SignalingFailure.from_app_error(e)
            logger.warning(
                f"{e.errcode} {e.erresid} sid={sid} event={event} msg={e.errmesg} caller={e.caller_info}"
            )
        except Exception as e:
            failure = SignalingFailure.from_app_error(
                AppError(errcode=AppErrorCode.E_INTERNAL_ERROR, errmesg=f"Internal error handling {event}")
            )
            logger.error(f"{failure.errcode} {failure.erresid} sid={sid} event={event}\n{format_error(e)}")
        return failure.model_dump()

    # ==================== CONNECTION ====================

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        logger.info(f"Peer connected: {sid}")

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        logger.info(f"Peer disconnected: {sid} ({reason or 'unknown reason'})")
        try:
            await self._room.disconnect_peer(sid)
        except Exception as e:
            logger.error(f"Failed to clean up peer {sid}\n{format_error(e)}")

    # ==================== REQUESTS ====================

    async def get_router_rtp_capabilities(self, sid: str, data: Any = None) -> Ack:
        async def call() -> Ack:
            return self._room.get_capabilities().to_wire()

        return await self._handle(sid, "getRouterRtpCapabilities", call)

    async def create_webrtc_transport(self, sid: str, data: Any = None) -> Ack:
        async def call() -> Ack:
            descriptor = await self._room.create_ingress_transport(sid)
            return descriptor.to_wire()

        return await self._handle(sid, "createWebRtcTransport", call)

    async def connect_transport(self, sid: str, data: Any = None) -> Ack:
        async def call() -> Ack:
            params = ConnectTransportIn.model_validate(data)
            await self._room.connect_transport(sid, params.transport_id, params.dtls_parameters)
            return "connected"

        return await self._handle(sid, "connectTransport", call)

    async def produce(self, sid: str, data: Any = None) -> Ack:
        async def call() -> Ack:
            params = ProduceIn.model_validate(data)
            producer_id = await self._room.produce(
                sid, params.transport_id, params.kind, params.rtp_parameters
            )
            return ProduceOut(id=producer_id).to_wire()

        return await self._handle(sid, "produce", call)


def create_socketio_server(cors_allowed_origins: list[str] | str = "*") -> socketio.AsyncServer:
    """Socket.IO server that handles each peer's events one at a time, in arrival order."""
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=cors_allowed_origins,
        async_handlers=False,
        logger=False,
        engineio_logger=False,
    )


__all__ = ["SignalingDispatcher", "create_socketio_server"]
