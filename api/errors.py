"""Global exception handlers for FastAPI.

Typed AuthErrors pass through with their own code and status. Anything
unexpected becomes a generic 500, with the traceback logged and only
returned to clients outside production.
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from api.base import error_json, ErrorCodes
from auth.config import AuthConfig
from auth.exceptions import AuthError, RateLimitedError

logger = logging.getLogger(__name__)

_HTTP_STATUS_CODES = {
    400: ErrorCodes.BAD_REQUEST,
    401: ErrorCodes.UNAUTHORIZED,
    403: ErrorCodes.FORBIDDEN,
    404: ErrorCodes.NOT_FOUND,
    405: ErrorCodes.BAD_REQUEST,
    409: ErrorCodes.CONFLICT,
    429: ErrorCodes.TOO_MANY_REQUESTS,
}


def auth_error_json(request: Request, exc: AuthError) -> JSONResponse:
    """Render a typed auth error, adding Retry-After for rate limits."""
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return error_json(request, exc.status_code, exc.code, exc.message, headers=headers)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        message = error.get("msg", "Invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def register_error_handlers(app: FastAPI, config: AuthConfig) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return auth_error_json(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_json(request, 400, ErrorCodes.VALIDATION_ERROR, _validation_message(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCodes.INTERNAL_SERVER_ERROR)
        return error_json(request, exc.status_code, code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        stack = None
        if config.expose_error_details:
            stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return error_json(
            request,
            500,
            ErrorCodes.INTERNAL_SERVER_ERROR,
            "Something went wrong",
            stack=stack,
        )
