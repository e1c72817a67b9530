"""Media engine bindings.

Usage:
    from app.services.media_engine import load_media_engine

    engine = load_media_engine(
        "app.services.media_engine.demo_engine:DemoMediaEngine",
        WorkerSettings(rtc_min_port=40000, rtc_max_port=49999),
    )
    await engine.start()
    router = await engine.create_router(MEDIA_CODECS)
"""

from importlib import import_module

from loguru import logger

from app.utils.app_errors import AppError, AppErrorCode

from .base import (
    Consumer,
    EngineCallError,
    MediaEngine,
    PlainTransport,
    PlainTransportOptions,
    Producer,
    Router,
    Transport,
    TransportTuple,
    WebRtcTransport,
    WebRtcTransportOptions,
    WorkerSettings,
)


def load_media_engine(class_path: str, settings: WorkerSettings) -> MediaEngine:
    """Instantiate the engine class named by ``package.module:ClassName``."""
    module_name, _, class_name = class_path.partition(":")
    if not module_name or not class_name:
        raise AppError(
            errcode=AppErrorCode.E_NOT_READY,
            errmesg=f"Invalid media engine class path '{class_path}'",
        )

    try:
        engine_cls = getattr(import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise AppError(
            errcode=AppErrorCode.E_NOT_READY,
            errmesg=f"Cannot load media engine '{class_path}': {e}",
        ) from e

    if not (isinstance(engine_cls, type) and issubclass(engine_cls, MediaEngine)):
        raise AppError(
            errcode=AppErrorCode.E_NOT_READY,
            errmesg=f"'{class_path}' is not a MediaEngine",
        )

    logger.info(f"Using media engine {class_path}")
    return engine_cls(settings)


__all__ = [
    "Consumer",
    "EngineCallError",
    "MediaEngine",
    "PlainTransport",
    "PlainTransportOptions",
    "Producer",
    "Router",
    "Transport",
    "TransportTuple",
    "WebRtcTransport",
    "WebRtcTransportOptions",
    "WorkerSettings",
    "load_media_engine",
]
