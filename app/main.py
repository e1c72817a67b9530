import asyncio
import os
import time
import traceback
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager
from os import environ

import logfire
import socketio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.errors import app_error_handler, app_validation_exception_handler
from app.api.health import router as health_router
from app.api.signaling.dispatcher import SignalingDispatcher, create_socketio_server
from app.app_config import AppEnvironConfig, get_app_environ_config
from app.domain.live.broadcast.broadcast_models import BroadcastSettings
from app.domain.live.room.room_domain import Room
from app.services.media_engine import MediaEngine, WebRtcTransportOptions, WorkerSettings, load_media_engine
from app.services.transcoder import FFmpegLauncher, HlsOutputSettings
from app.shared.api.utils import ApiFailure, init_logger
from app.utils.app_errors import AppError, AppErrorCode


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )

            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            failure = ApiFailure(
                errcode=AppErrorCode.E_INTERNAL_ERROR.value,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(status_code=500, content=failure.model_dump())


def worker_settings_from_config(cfg: AppEnvironConfig) -> WorkerSettings:
    return WorkerSettings(
        rtc_min_port=cfg.RTC_MIN_PORT,
        rtc_max_port=cfg.RTC_MAX_PORT,
        log_level=cfg.ENGINE_LOG_LEVEL,
        log_tags=list(cfg.ENGINE_LOG_TAGS),
    )


def webrtc_options_from_config(cfg: AppEnvironConfig) -> WebRtcTransportOptions:
    return WebRtcTransportOptions(
        listen_ip=cfg.WEBRTC_LISTEN_IP,
        announced_ip=cfg.WEBRTC_ANNOUNCED_IP,
        enable_udp=cfg.WEBRTC_ENABLE_UDP,
        enable_tcp=cfg.WEBRTC_ENABLE_TCP,
        prefer_udp=cfg.WEBRTC_PREFER_UDP,
        max_incoming_bitrate=cfg.WEBRTC_MAX_INCOMING_BITRATE,
        initial_available_outgoing_bitrate=cfg.WEBRTC_INITIAL_OUTGOING_BITRATE,
    )


def build_room(engine: MediaEngine, cfg: AppEnvironConfig) -> Room:
    launcher = FFmpegLauncher(
        HlsOutputSettings(
            output_dir=cfg.HLS_OUTPUT_DIR,
            segment_seconds=cfg.HLS_SEGMENT_SECONDS,
            list_size=cfg.HLS_LIST_SIZE,
        ),
        binary=cfg.FFMPEG_BINARY,
    )
    return Room(
        engine,
        launcher,
        webrtc_options=webrtc_options_from_config(cfg),
        broadcast_settings=BroadcastSettings.from_config(cfg),
    )


def watch_engine_death(
    engine: MediaEngine,
    delay: float,
    exit_process: Callable[[int], object] = os._exit,
) -> None:
    """Exit the process shortly after the engine worker dies so a supervisor restarts us."""

    loop = asyncio.get_running_loop()

    def on_died() -> None:
        logger.critical(f"Media engine worker died, exiting in {delay}s")
        loop.call_later(delay, exit_process, 1)

    engine.on("died", on_died)


@asynccontextmanager
async def lifespan(server: FastAPI):
    init_logger()

    logger.info("Application startup...")

    cfg = get_app_environ_config()

    engine = load_media_engine(cfg.MEDIA_ENGINE_CLASS, worker_settings_from_config(cfg))
    await engine.start()
    watch_engine_death(engine, cfg.ENGINE_DEATH_EXIT_DELAY_SECONDS)

    room = build_room(engine, cfg)
    await room.init()

    server.state.engine = engine
    server.state.room = room
    SignalingDispatcher(room).register(sio)

    if cfg.LOGFIRE_ENABLE:
        logger.info("Logfire initializing")

        logfire.configure(
            token=cfg.LOGFIRE_TOKEN,
            service_name="webrtc-hls-bridge",
            service_version=environ.get("BUILD_COMMIT") or "dev",
        )

        logger.info("Logfire instrument fastapi")
        logfire.instrument_fastapi(server, capture_headers=True)

        logger.info("Logfire instrument pydantic")
        logfire.instrument_pydantic()

    yield

    logger.info("Application shutdown...")

    await room.close()
    await engine.close()


app = FastAPI(
    version="1.0",
    title="WebRTC HLS Bridge",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

DEBUG = get_app_environ_config().DEBUG
CORS_ORIGINS = get_app_environ_config().API_CORS_ORIGINS

app.add_middleware(HTTPLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,  # type: ignore
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, app_validation_exception_handler)  # type: ignore
app.add_exception_handler(AppError, app_error_handler)  # type: ignore

app.include_router(health_router)

sio = create_socketio_server("*" if CORS_ORIGINS == ["*"] else CORS_ORIGINS)

# Socket.IO on /socket.io, everything else (lifespan included) goes to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


def build_granian_kwargs():
    cfg = get_app_environ_config()
    kwargs = {
        "interface": "asgi",
        "address": cfg.API_HOST,
        "port": cfg.API_PORT,
        # One process: the room lives in memory
        "workers": 1,
        "reload": DEBUG,
    }

    return kwargs


if __name__ == "__main__":
    granian_kwargs = build_granian_kwargs()
    Granian("app.main:asgi_app", **granian_kwargs).serve()
