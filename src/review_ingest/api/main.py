"""
FastAPI application for bulk review ingestion.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time
from contextlib import asynccontextmanager

from ..core.config import settings
from ..core.logging import logger
from ..services.resumer import get_job_resumer
from .exceptions import exception_handlers
from .middleware import add_process_time_header
from .routes import health, queue


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    logger.info(f"Starting {settings.APP_NAME} API")
    try:
        resumed = await get_job_resumer().resume_running_jobs()
        if resumed:
            logger.info(f"Resuming {resumed} interrupted job(s) in the background")
    except Exception as e:
        logger.error(f"Job resume on startup failed: {e}", exc_info=True)
    yield
    logger.info(f"Shutting down {settings.APP_NAME} API")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Bulk review ingestion: catalog fetch, LLM review synthesis, resumable batch jobs",
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    exception_handlers=exception_handlers,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add custom middleware
app.middleware("http")(add_process_time_header)


# Include routers
app.include_router(
    queue.router,
    prefix=f"{settings.API_V1_PREFIX}/queue",
    tags=["queue"]
)

app.include_router(
    health.router,
    prefix=settings.API_V1_PREFIX,
    tags=["health"]
)


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.APP_VERSION
    }


# Root endpoint
@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Bulk review ingestion pipeline",
        "docs": "/docs",
        "health": "/health"
    }


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": "internal_error"
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "review_ingest.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
