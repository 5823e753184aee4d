"""Bulk job queue endpoints."""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from ...core.logging import logger
from ...core.security import verify_api_key
from ...models.job import JobStatus
from ...models.requests import BulkCreateRequest
from ...models.responses import (
    JobListResponse,
    JobResponse,
    JobStatusResponse,
    ProcessNextResponse,
)
from ...services.bulk_jobs import BulkJobService
from ...services.resumer import JobResumer
from ..dependencies import bulk_job_service, job_resumer


router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/bulk-create", response_model=JobResponse, status_code=201)
async def create_bulk_job(
    request: BulkCreateRequest,
    background_tasks: BackgroundTasks,
    service: BulkJobService = Depends(bulk_job_service),
):
    """
    Create a bulk review job.

    The catalog is queried up front; a query without results is rejected
    with 404 and no job is created.
    """
    job, candidates = await service.create_bulk_job(request)

    if request.start_immediately:
        background_tasks.add_task(service.run_job, job.id, candidates)
        message = f"Bulk job created for {job.total_items} items, processing started"
    else:
        message = f"Bulk job created for {job.total_items} items, waiting for a worker"

    logger.info(f"Created bulk job {job.id} ({request.category.value})")
    return JobResponse(
        job_id=job.id,
        status=job.status,
        message=message,
        total_items=job.total_items,
        total_batches=job.total_batches,
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
    service: BulkJobService = Depends(bulk_job_service),
    resumer: JobResumer = Depends(job_resumer),
):
    """List jobs with queue stats. Fails stuck jobs and resumes interrupted ones."""
    listing = service.list_jobs(status=status.value if status else None, limit=limit)
    resumed = await resumer.resume_running_jobs()

    return JobListResponse(
        jobs=[job.to_dict() for job in listing["jobs"]],
        stats=listing["stats"],
        reset_stuck_jobs=listing["reset_stuck_jobs"],
        resumed_jobs=resumed,
    )


@router.post("/process-next", response_model=ProcessNextResponse)
async def process_next(service: BulkJobService = Depends(bulk_job_service)):
    """Run the oldest pending job (cron-style worker entry point)."""
    job = await service.process_next_pending()
    if job is None:
        return ProcessNextResponse(processed=False, message="No pending jobs")

    return ProcessNextResponse(
        processed=True,
        message=f"Job {job.id} finished with status {job.status}",
        job=job.to_dict(),
    )


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job(job_id: str, service: BulkJobService = Depends(bulk_job_service)):
    """Get the status, progress and result of a job."""
    job = service.get_job(job_id)
    return JobStatusResponse(job=job.to_dict(), running=service.processor.is_running(job_id))


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, service: BulkJobService = Depends(bulk_job_service)):
    """Cancel a pending or running job. Running jobs stop before their next batch."""
    job = service.cancel_job(job_id)
    return JobResponse(
        job_id=job.id,
        status=job.status,
        message="Job cancelled",
        total_items=job.total_items,
        total_batches=job.total_batches,
    )
