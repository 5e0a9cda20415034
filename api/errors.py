"""Error responses for the REST API.

Every error leaves the API as ``{"error": message}`` with the status code of
the exception class that produced it.
"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from errors import MarketplaceError, RateLimitedError

logger = logging.getLogger(__name__)


def http_error(error: MarketplaceError) -> HTTPException:
    """Convert a domain error to an HTTPException with its status code."""
    headers = None
    if isinstance(error, RateLimitedError) and error.reset_time is not None:
        headers = {'X-RateLimit-Reset': str(error.reset_time)}
    return HTTPException(status_code=error.status_code, detail=str(error), headers=headers)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
    return f"{location}: {first.get('msg')}" if location else first.get('msg', "Invalid request")


def register_error_handlers(app: FastAPI) -> None:
    """Install the handlers mapping every error to an {"error": ...} body."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={'error': exc.detail},
            headers=getattr(exc, 'headers', None)
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.warning(f"{request.method} {request.url.path} rejected: {message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={'error': message}
        )

    @app.exception_handler(MarketplaceError)
    async def handle_marketplace_error(request: Request, exc: MarketplaceError):
        http = http_error(exc)
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=http.status_code,
            content={'error': http.detail},
            headers=http.headers
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'error': "Internal server error"}
        )


__all__ = ['http_error', 'register_error_handlers']
