"""FastAPI exception handlers for relay exceptions.

Every error response has the shape ``{"success": false, "message": ...}``.
Provider details of a failed upload are logged here and never sent back.
"""

from __future__ import annotations

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.exceptions import (
    AllProvidersFailedError,
    AuthError,
    ConfigurationError,
    NoProvidersConfiguredError,
    RelayError,
    ServerMisconfiguredError,
    UnauthorizedError,
    UploadFailedError,
    ValidationError,
)

UPLOAD_FAILED_MESSAGE = "Upload failed on all accounts."
NO_PROVIDERS_MESSAGE = "Upload failed. No storage accounts are configured."


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


async def relay_exception_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Handle relay-specific exceptions."""
    if isinstance(exc, UnauthorizedError):
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    if isinstance(exc, ServerMisconfiguredError):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")

    if isinstance(exc, ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, exc.message)

    if isinstance(exc, AllProvidersFailedError):
        logger.error(
            "[ERROR] Upload failed on all accounts:\n{errors}",
            errors="\n".join(exc.errors),
        )
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, UPLOAD_FAILED_MESSAGE)

    if isinstance(exc, NoProvidersConfiguredError):
        logger.error("[ERROR] {message}", message=exc.message)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, NO_PROVIDERS_MESSAGE)

    if isinstance(exc, (UploadFailedError, AuthError, ConfigurationError)):
        logger.error("[ERROR] {type}: {message}", type=type(exc).__name__, message=exc.message)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Unexpected error")

    logger.error(
        "Relay exception: {type} - {message}",
        type=type(exc).__name__,
        message=str(exc),
        details=exc.details,
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Unexpected error")


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request to {path}: {errors}", path=request.url.path, errors=exc.errors())
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid input data")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return _error(exc.status_code, "Route not found")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled exception on {path}", path=request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Unexpected error")


__all__ = [
    "NO_PROVIDERS_MESSAGE",
    "UPLOAD_FAILED_MESSAGE",
    "http_exception_handler",
    "relay_exception_handler",
    "request_validation_handler",
    "unhandled_exception_handler",
]
