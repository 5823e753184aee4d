"""API response schemas."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobResponse(BaseModel):
    """Response schema for job creation and actions."""
    job_id: str
    status: str
    message: str
    total_items: Optional[int] = None
    total_batches: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class JobStatusResponse(BaseModel):
    """Response schema for a job status query."""
    job: Dict[str, Any]
    running: bool = False


class JobListResponse(BaseModel):
    """Response schema for listing jobs."""
    jobs: List[Dict[str, Any]]
    stats: Dict[str, int]
    reset_stuck_jobs: int = 0
    resumed_jobs: int = 0


class ProcessNextResponse(BaseModel):
    """Response schema for the process-next worker endpoint."""
    processed: bool
    message: str
    job: Optional[Dict[str, Any]] = None
