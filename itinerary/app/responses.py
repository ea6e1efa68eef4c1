"""Uniform ``{code, message, data}`` response envelope and error handlers."""

import logging
from typing import Any

import fastapi
import fastapi.encoders
import fastapi.exceptions
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# Envelope codes; the HTTP status carries the error class separately.
OK = 0
MISSING_IDS = 40001
INVALID_PAYLOAD = 40002
MISSING_PARAMETER = 40003
LOGIN_REQUIRED = 40100
PERMISSION_DENIED = 40300
TRIP_NOT_FOUND = 40400
EVENT_NOT_FOUND = 40401
DAY_NOT_FOUND = 40402
INTERNAL_ERROR = 50000


class ApiError(Exception):
    """A request failure rendered as an error envelope."""

    def __init__(
        self, status_code: int, code: int, message: str, data: Any = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.data = data


def envelope(code: int, message: str, data: Any = None) -> dict[str, Any]:
    return {'code': code, 'message': message, 'data': data}


def ok(data: Any = None, message: str = 'ok', status_code: int = 200) -> JSONResponse:
    """Success response."""
    return JSONResponse(envelope(OK, message, data), status_code=status_code)


def fail(status_code: int, code: int, message: str, data: Any = None) -> JSONResponse:
    """Error response."""
    return JSONResponse(envelope(code, message, data), status_code=status_code)


async def handle_api_error(request: fastapi.Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ApiError)
    return fail(exc.status_code, exc.code, exc.message, exc.data)


async def handle_validation_error(
    request: fastapi.Request, exc: Exception
) -> JSONResponse:
    assert isinstance(exc, fastapi.exceptions.RequestValidationError)
    return fail(
        400,
        INVALID_PAYLOAD,
        'Invalid request payload',
        fastapi.encoders.jsonable_encoder(exc.errors()),
    )


async def handle_unexpected_error(
    request: fastapi.Request, exc: Exception
) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return fail(500, INTERNAL_ERROR, 'Internal server error')


def install_handlers(app: fastapi.FastAPI) -> None:
    """Render every failure of *app* through the envelope."""
    app.add_exception_handler(ApiError, handle_api_error)
    app.add_exception_handler(
        fastapi.exceptions.RequestValidationError, handle_validation_error
    )
    app.add_exception_handler(Exception, handle_unexpected_error)
