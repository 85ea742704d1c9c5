"""
HTTP error vocabulary and its JSON rendering.

Every error response has the body {"message", "error_code", "status"}.
Domain errors (errors.CoreError) are converted here and nowhere else.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from message_service.errors import (
    CoreError,
    InvalidContent,
    MessageNotFound,
    ServiceUnavailable as CoreServiceUnavailable,
    Unhealthy,
)
from message_service.schemas import ErrorBody

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        self.message = message or self.message
        self.error_code = error_code
        super().__init__(self.message)

    def to_body(self) -> ErrorBody:
        return ErrorBody(message=self.message, error_code=self.error_code, status=self.status_code)


class BadRequest(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Bad request"


class Unauthorized(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized access"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Forbidden"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class Conflict(ApiError):
    """Reserved; no operation currently reports a conflict."""
    status_code = status.HTTP_409_CONFLICT
    message = "Conflict"

    def __init__(self, error_code: str, message: Optional[str] = None):
        super().__init__(message, error_code=error_code)


class InternalServerError(ApiError):
    pass


class ServiceUnavailable(ApiError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Service is unavailable"


def from_core_error(error: CoreError) -> ApiError:
    if isinstance(error, MessageNotFound):
        return NotFound(str(error))
    if isinstance(error, InvalidContent):
        return BadRequest(str(error))
    if isinstance(error, (Unhealthy, CoreServiceUnavailable)):
        return ServiceUnavailable(str(error))
    return InternalServerError()


def _render(error: ApiError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_body().model_dump())


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _render(exc)


async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    api_error = from_core_error(exc)
    if isinstance(api_error, InternalServerError):
        logger.error(f"Unhandled domain error: {exc!r}")
    return _render(api_error)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request"
    body = ErrorBody(
        message=message,
        error_code="validation_error",
        status=422,
    )
    return JSONResponse(status_code=body.status, content=body.model_dump())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
    return _render(InternalServerError())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(CoreError, core_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
