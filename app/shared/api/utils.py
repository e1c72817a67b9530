import traceback
from functools import lru_cache
from os import environ
from pathlib import Path
from typing import Any, Generic, Literal, TypeVar
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, Field


def format_error(ex: BaseException) -> str:
    """Full traceback of an exception, for log lines."""
    return ''.join(traceback.format_exception(type(ex), ex, ex.__traceback__))


class ApiResponse(BaseModel):
    version: str | None = Field(default_factory=lambda: environ.get('BUILD_COMMIT', 'dev'))


class ApiSuccess(ApiResponse):
    success: Literal[True] = True
    results: Any = "OK"


T = TypeVar("T")


class ApiOut(ApiSuccess, Generic[T]):
    """Success envelope with typed results."""

    results: T  # type: ignore[valid-type]


class ApiFailure(ApiResponse):
    success: Literal[False] = False
    errcode: str = "E_INTERNAL_ERROR"
    erresid: str = Field(default_factory=lambda: uuid4().hex[:10])
    errmesg: str = "We are sorry, an error occurred."


@lru_cache
def get_worker_info():
    project_root = Path(__file__).parent.parent.parent.parent
    worker_name = environ.get('WORKER_NAME', project_root.name)

    parts = environ.get('BUILD_COMMIT', '').split('-')
    commit_id = parts[1] if len(parts) > 1 else 'dev'

    return worker_name, commit_id, uuid4().hex[:8]


def init_logger():
    import sys
    import logging
    from app.app_config import get_app_environ_config

    # socket.io / engine.io log through stdlib logging; keep them quiet
    for name in ('socketio', 'socketio.server', 'engineio', 'engineio.server'):
        logging.getLogger(name).setLevel(logging.ERROR)

    logger.remove()

    worker_name, commit_id, _ = get_worker_info()

    if get_app_environ_config().DEBUG:
        logger_level = 'DEBUG'
        logger_format = (
            f'<yellow>{worker_name}:{commit_id}</yellow> | '
            '<green>{time:MM-DD HH:mm:ss.SSS}</green> | '
            '<level>{level: <8}</level> | '
            '<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | '
            '<level>{message}</level>'
        )
    else:
        logger_level = 'INFO'
        logger_format = (
            f'{worker_name}:{commit_id} | '
            '{time:MM-DD HH:mm:ss.SSS} | '
            '{level: <8} | '
            '{name}:{function}:{line} | '
            '{message}'
        )
    logger.add(sys.stderr, level=logger_level, format=logger_format)
