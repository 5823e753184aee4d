"""Request-acceptance layer for bulk review jobs."""

import math
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import InvalidJobStateError, JobNotFoundError, NoItemsFoundError
from ..core.logging import logger
from ..models.catalog import CandidateItem
from ..models.requests import BulkCreateRequest
from ..utils.content_utils import unique_by_key
from .batch_processor import BatchProcessor, get_batch_processor
from .catalog import CatalogService, get_catalog_service
from .job_store import JobRecord, JobStore, get_job_store
from .reaper import StuckJobReaper, get_reaper


class BulkJobService:
    """Creates, runs, cancels and lists bulk jobs on behalf of operators."""

    def __init__(
        self,
        job_store: Optional[JobStore] = None,
        catalog: Optional[CatalogService] = None,
        processor: Optional[BatchProcessor] = None,
        reaper: Optional[StuckJobReaper] = None,
    ):
        self.job_store = job_store or get_job_store()
        self.catalog = catalog or get_catalog_service()
        self.processor = processor or get_batch_processor()
        self.reaper = reaper or get_reaper()

    async def create_bulk_job(
        self, request: BulkCreateRequest
    ) -> Tuple[JobRecord, List[CandidateItem]]:
        """
        Validate a request against the catalog and create a pending job.

        Returns:
            The new job and the candidates it was sized from

        Raises:
            CatalogError: If the catalog fetch fails
            NoItemsFoundError: If the query yields no candidates; no job is created
        """
        config = request.to_config()
        candidates = unique_by_key(
            await self.catalog.fetch_candidates(config.category, config.query_options)
        )
        if not candidates:
            raise NoItemsFoundError(config.category.value)

        job = self.job_store.create_job(
            config,
            job_type=request.job_type,
            total_items=len(candidates),
            total_batches=math.ceil(len(candidates) / config.batch_size),
        )
        return job, candidates

    async def run_job(
        self, job_id: str, candidates: Optional[List[CandidateItem]] = None
    ) -> JobRecord:
        """Run a pending job to completion."""
        self.get_job(job_id)
        return await self.processor.run_job(job_id, candidates=candidates)

    async def process_next_pending(self) -> Optional[JobRecord]:
        """Claim and run the oldest pending job, if any."""
        job = self.job_store.get_next_pending_job()
        if job is None:
            return None
        logger.info(f"Processing next pending job {job.id}")
        return await self.processor.run_job(job.id)

    def get_job(self, job_id: str) -> JobRecord:
        job = self.job_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def cancel_job(self, job_id: str) -> JobRecord:
        """
        Cancel a pending or processing job.

        A running job stops before its next batch.

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: Job already finished
        """
        job = self.get_job(job_id)
        if job.is_terminal:
            raise InvalidJobStateError(job_id, job.status, "cancel")

        cancelled = self.job_store.cancel_job(job_id)
        if cancelled is None:
            # Finished between the read and the update
            raise InvalidJobStateError(job_id, self.get_job(job_id).status, "cancel")

        self.processor.request_cancel(job_id)
        return cancelled

    def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> Dict[str, Any]:
        """List jobs and queue stats, failing stuck jobs first."""
        reset = self.reaper.reap()
        jobs = self.job_store.list_jobs(status=status, limit=limit)
        return {
            "jobs": jobs,
            "stats": self.job_store.get_queue_stats(),
            "reset_stuck_jobs": reset,
        }


# Singleton instance
_bulk_job_service_instance: Optional[BulkJobService] = None


def get_bulk_job_service() -> BulkJobService:
    """Get or create the singleton BulkJobService instance."""
    global _bulk_job_service_instance
    if _bulk_job_service_instance is None:
        _bulk_job_service_instance = BulkJobService()
    return _bulk_job_service_instance
