"""Request/response middleware."""
import time
from fastapi import Request
from ..core.logging import logger


async def add_process_time_header(request: Request, call_next):
    """
    Time each request, log it and expose the duration as ``X-Process-Time``.

    Args:
        request: FastAPI request object
        call_next: Next middleware callable

    Returns:
        Response with added processing time header
    """
    start_time = time.time()

    try:
        response = await call_next(request)
    except Exception as exc:
        process_time = time.time() - start_time
        logger.error(
            f"Request failed: {request.method} {request.url.path} "
            f"Time: {process_time:.3f}s Error: {exc}"
        )
        raise

    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = f"{process_time:.4f}"

    # Health probes are polled constantly
    log = logger.debug if request.url.path.endswith(("/health", "/ready")) else logger.info
    log(
        f"Request: {request.method} {request.url.path} "
        f"Status: {response.status_code} "
        f"Time: {process_time:.3f}s"
    )

    return response
