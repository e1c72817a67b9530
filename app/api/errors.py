from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger

from app.shared.api.utils import ApiFailure
from app.utils.app_errors import AppError, AppErrorCode

_STATUS_CODES = {
    AppErrorCode.E_NOT_FOUND.value: 404,
    AppErrorCode.E_NOT_READY.value: 503,
    AppErrorCode.E_INVALID_PARAMS.value: 422,
}


async def app_error_handler(request: Request, exc: AppError) -> ORJSONResponse:
    """Convert AppError to ApiFailure, logging the call site captured when it was raised."""
    log_msg = f"{exc.errcode} {exc.erresid} msg={exc.errmesg} caller={exc.caller_info}"
    status_code = _STATUS_CODES.get(exc.errcode, 500)
    if status_code >= 500 and exc.errcode != AppErrorCode.E_NOT_READY.value:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    failure = ApiFailure(errcode=exc.errcode, errmesg=exc.errmesg, erresid=exc.erresid)
    return ORJSONResponse(status_code=status_code, content=failure.model_dump())


async def app_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    failure = ApiFailure(errcode=AppErrorCode.E_INVALID_PARAMS.value, errmesg=str(errors))
    logger.warning(
        f"{failure.errcode} {failure.erresid} path={request.url.path} method={request.method}"
    )
    return ORJSONResponse(status_code=422, content=failure.model_dump())
