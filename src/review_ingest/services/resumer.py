"""
Crash recovery for bulk jobs.

Jobs left in ``processing`` by a previous process are continued once per
process lifetime.
"""

import asyncio
import threading
from typing import List, Optional

from ..core.logging import logger
from ..models.job import JobStatus
from .batch_processor import BatchProcessor, get_batch_processor
from .job_store import JobStore, get_job_store


class ResumeGuard:
    """Process-wide flag recording that the resume sweep already ran."""

    def __init__(self):
        self._resumed = False
        self._lock = threading.Lock()

    def has_resumed(self) -> bool:
        return self._resumed

    def mark_resumed(self):
        with self._lock:
            self._resumed = True

    def try_acquire(self) -> bool:
        """Mark the sweep as done; True only for the first caller."""
        with self._lock:
            if self._resumed:
                return False
            self._resumed = True
            return True


class JobResumer:
    """Continues interrupted jobs in the background."""

    def __init__(
        self,
        job_store: Optional[JobStore] = None,
        processor: Optional[BatchProcessor] = None,
        guard: Optional[ResumeGuard] = None,
    ):
        self.job_store = job_store or get_job_store()
        self.processor = processor or get_batch_processor()
        self.guard = guard or get_resume_guard()
        self._tasks: List[asyncio.Task] = []

    async def resume_running_jobs(self) -> int:
        """
        Start background runs for every job still in ``processing``.

        Only the first call in a process does anything; later calls return 0.
        Errors are logged, never raised.

        Returns:
            Number of jobs scheduled for resumption
        """
        if not self.guard.try_acquire():
            return 0

        try:
            jobs = self.job_store.get_jobs_by_status(JobStatus.PROCESSING)
            resumed = 0
            for job in jobs:
                if self.processor.is_running(job.id):
                    continue
                logger.info(
                    f"Resuming job {job.id} ({job.processed_items}/{job.total_items} processed)"
                )
                self._tasks.append(asyncio.create_task(self._resume_job(job.id)))
                resumed += 1

            if resumed:
                logger.info(f"Resumed {resumed} interrupted job(s)")
            return resumed
        except Exception as e:
            logger.error(f"Failed to resume running jobs: {e}", exc_info=True)
            return 0

    async def _resume_job(self, job_id: str):
        try:
            await self.processor.run_job(job_id, resume=True)
        except Exception as e:
            logger.error(f"Error resuming job {job_id}: {e}", exc_info=True)

    async def drain(self):
        """Wait for every resumed job to finish."""
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# Singleton instances
_resume_guard_instance: Optional[ResumeGuard] = None
_resumer_instance: Optional[JobResumer] = None


def get_resume_guard() -> ResumeGuard:
    """Get or create the process-wide ResumeGuard."""
    global _resume_guard_instance
    if _resume_guard_instance is None:
        _resume_guard_instance = ResumeGuard()
    return _resume_guard_instance


def get_job_resumer() -> JobResumer:
    """Get or create the singleton JobResumer instance."""
    global _resumer_instance
    if _resumer_instance is None:
        _resumer_instance = JobResumer()
    return _resumer_instance
