"""
Global error handling middleware.

Maps the application's exception hierarchy to JSON error responses of the
form ``{"error": <category>, "message": <text>}``.
"""

import time
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import SQLAlchemyError

from storefront.utils.logger import get_logger
from storefront.utils.exceptions import (
    StorefrontError,
    ValidationError,
    APIError,
    DatabaseError,
    AuthenticationError,
    PermissionDeniedError,
    NotFoundError,
    ConflictError,
    ConfigurationError,
)

logger = get_logger(__name__)


def error_response(exc: Exception) -> JSONResponse:
    """Build the JSON response for an exception raised by a handler."""
    if isinstance(exc, ValidationError):
        logger.warning(f"Validation error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation Error", "message": exc.message, "details": exc.details or None},
        )

    if isinstance(exc, AuthenticationError):
        logger.warning(f"Authentication error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Authentication Error", "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        )

    if isinstance(exc, PermissionDeniedError):
        logger.warning(f"Permission denied: {exc}")
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "Forbidden", "message": exc.message},
        )

    if isinstance(exc, NotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Not Found", "message": exc.message},
        )

    if isinstance(exc, ConflictError):
        logger.info(f"Conflict: {exc}")
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": "Conflict", "message": exc.message},
        )

    if isinstance(exc, APIError):
        logger.error(f"API error: {exc}")
        status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
        # Upstream credential failures must not look like the caller's own auth failing
        if status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
            status_code = status.HTTP_502_BAD_GATEWAY
        return JSONResponse(
            status_code=status_code,
            content={"error": "API Error", "message": exc.message},
        )

    if isinstance(exc, (DatabaseError, SQLAlchemyError)):
        logger.error(f"Database error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Database Error", "message": "A database error occurred"},
        )

    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Configuration Error", "message": exc.message},
        )

    if isinstance(exc, StorefrontError):
        logger.error(f"Storefront error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Error", "message": exc.message},
        )

    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error", "message": "An unexpected error occurred"},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware for consistent error handling and request logging.
    """

    async def dispatch(self, request: Request, call_next):
        """Process request with error handling."""
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            response = error_response(e)

        duration = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} - {response.status_code} - {duration:.3f}s"
        )
        return response


def register_exception_handlers(app: FastAPI) -> None:
    """
    Route application exceptions through ``error_response``.

    Exceptions raised inside threadpool endpoints reach FastAPI's exception
    middleware first, so the same mapping is installed there as well.
    """

    async def _handle(request: Request, exc: Exception) -> JSONResponse:
        return error_response(exc)

    app.add_exception_handler(StorefrontError, _handle)
    app.add_exception_handler(SQLAlchemyError, _handle)

    async def _handle_http(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": _HTTP_ERROR_NAMES.get(exc.status_code, "HTTP Error"), "message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        logger.warning(f"Request validation failed for {request.url.path}: {errors}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Validation Error",
                "message": f"{location}: {message}" if location else message,
                "details": jsonable_encoder(
                    [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors]
                ),
            },
        )

    app.add_exception_handler(StarletteHTTPException, _handle_http)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)


_HTTP_ERROR_NAMES = {
    status.HTTP_401_UNAUTHORIZED: "Authentication Error",
    status.HTTP_403_FORBIDDEN: "Forbidden",
    status.HTTP_404_NOT_FOUND: "Not Found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "Method Not Allowed",
    status.HTTP_409_CONFLICT: "Conflict",
}
