"""Health check endpoints."""
from fastapi import APIRouter, Depends
from typing import Dict, Any
import psutil
import time

from ...core.config import settings
from ...core.security import verify_api_key
from ...services.job_store import JobStore
from ..dependencies import job_store


router = APIRouter()


@router.get("/health", summary="Basic health check")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.APP_VERSION,
        "service": settings.APP_NAME
    }


@router.get("/health/detailed", summary="Detailed health check")
async def detailed_health_check(
    api_key: str = Depends(verify_api_key),
    store: JobStore = Depends(job_store),
) -> Dict[str, Any]:
    """Detailed health check with system metrics and queue stats."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')

    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.APP_VERSION,
        "service": settings.APP_NAME,
        "system": {
            "memory_percent": memory.percent,
            "cpu_percent": psutil.cpu_percent(interval=None),
            "disk_percent": disk.percent
        },
        "queue": store.get_queue_stats(),
        "configuration": {
            "debug": settings.DEBUG,
            "default_batch_size": settings.DEFAULT_BATCH_SIZE,
            "default_max_retries": settings.DEFAULT_MAX_RETRIES,
            "stale_job_minutes": settings.STALE_JOB_MINUTES
        }
    }


@router.get("/health/ready", summary="Readiness check")
async def readiness_check(store: JobStore = Depends(job_store)) -> Dict[str, Any]:
    """Readiness check for load balancers."""
    store.get_queue_stats()
    return {
        "status": "ready",
        "timestamp": time.time()
    }
