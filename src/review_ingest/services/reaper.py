"""Stuck-job reaper: fails jobs that stopped making progress."""

from datetime import datetime, timedelta
from typing import Optional

from ..core.config import settings
from ..core.logging import logger
from .job_store import JobStore, get_job_store


def stale_job_message(stale_after: timedelta) -> str:
    minutes = int(stale_after.total_seconds() // 60)
    return f"Job stuck in processing for more than {minutes} minutes - marked as failed"


class StuckJobReaper:
    """Marks ``processing`` jobs without recent updates as failed."""

    def __init__(self, job_store: Optional[JobStore] = None, stale_after: timedelta = None):
        self.job_store = job_store or get_job_store()
        self.stale_after = stale_after or timedelta(minutes=settings.STALE_JOB_MINUTES)

    def reap(self, now: Optional[datetime] = None) -> int:
        """
        Fail every job whose last update is older than the staleness window.

        Args:
            now: Reference time; defaults to the job store's clock

        Returns:
            Number of jobs that were reset (0 if the sweep itself failed)
        """
        now = now or self.job_store.clock()
        cutoff = now - self.stale_after

        try:
            reset = self.job_store.fail_stale_jobs(cutoff, stale_job_message(self.stale_after))
        except Exception as e:
            logger.error(f"Stuck-job sweep failed: {e}", exc_info=True)
            return 0

        if reset:
            logger.warning(f"Reset {reset} stuck job(s) older than {cutoff.isoformat()}")
        return reset


# Singleton instance
_reaper_instance: Optional[StuckJobReaper] = None


def get_reaper() -> StuckJobReaper:
    """Get or create the singleton StuckJobReaper instance."""
    global _reaper_instance
    if _reaper_instance is None:
        _reaper_instance = StuckJobReaper()
    return _reaper_instance
