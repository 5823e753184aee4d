"""Exception handlers mapping ingestion errors to JSON responses."""
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import IngestionError
from ..core.logging import logger


async def ingestion_exception_handler(request: Request, exc: IngestionError):
    """Handle ingestion-specific exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"Ingestion error on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "type": type(exc).__name__,
            "details": exc.details,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with proper logging."""
    logger.warning(
        f"HTTP error: {exc.status_code} - {exc.detail}",
        extra={"path": str(request.url), "method": request.method},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "type": "http_error",
        },
        headers=getattr(exc, "headers", None),
    )


# Exception handler registry
exception_handlers = {
    IngestionError: ingestion_exception_handler,
    HTTPException: http_exception_handler,
}
