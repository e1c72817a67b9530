"""Application error types shared by the domain, services and signaling layers."""

import inspect
from enum import Enum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_NOT_FOUND = "E_NOT_FOUND"
    E_NOT_READY = "E_NOT_READY"
    E_ENGINE_ERROR = "E_ENGINE_ERROR"
    E_PIPELINE_START_FAILED = "E_PIPELINE_START_FAILED"
    E_PROCESS_FAILURE = "E_PROCESS_FAILURE"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):
    """Error raised by application code.

    Carries a stable error code, a human readable message, a short random id
    that ties the peer-facing response to the log line, and the call site that
    raised it.
    """

    def __init__(
        self,
        errcode: AppErrorCode = AppErrorCode.E_INTERNAL_ERROR,
        errmesg: str = "We are sorry, an error occurred.",
    ) -> None:
        super().__init__(errmesg)
        self.errcode = AppErrorCode(errcode).value
        self.errmesg = errmesg
        self.erresid = uuid4().hex[:10]

        caller_frame = inspect.stack()[1]
        module = inspect.getmodule(caller_frame.frame)
        module_name = (
            module.__name__ if module and getattr(module, "__name__", None) else caller_frame.filename
        )
        self.caller_info = f"{module_name}:{caller_frame.function}:{caller_frame.lineno}"

    def __repr__(self) -> str:
        return f"AppError(errcode={self.errcode!r}, errmesg={self.errmesg!r})"


__all__ = ["AppError", "AppErrorCode"]
