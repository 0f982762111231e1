from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, ORJSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded

from caption_room.shared.api.utils import E_INVALID_PARAMS, ApiFailure, api_failure, make_response
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    Custom exception handler for AppError.
    Converts AppError to ApiFailure and returns via make_response.
    """
    # Log with the caller info captured when AppError was raised
    log_msg = f"{exc.errcode} {exc.erresid} msg={exc.errmesg} caller={exc.caller_info}"
    if exc.status_code >= 500:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    failure = ApiFailure(errcode=exc.errcode, errmesg=exc.errmesg, erresid=exc.erresid)
    return make_response(failure, status_code=exc.status_code)


async def app_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()

    logger.warning(
        "Validation error: path={} method={} errors={}",
        request.url.path,
        request.method,
        errors,
    )

    failure = api_failure(E_INVALID_PARAMS, errmesg=str(errors))

    return ORJSONResponse(status_code=HttpStatusCode.UNPROCESSABLE_ENTITY, content=failure.model_dump())


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit exceeded: path={} limit={}", request.url.path, exc.detail)

    failure = ApiFailure(
        errcode=AppErrorCode.E_RATE_LIMITED.value,
        errmesg=f"Rate limit exceeded: {exc.detail}",
    )
    return make_response(failure, status_code=HttpStatusCode.TOO_MANY_REQUESTS)
