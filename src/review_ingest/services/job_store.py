"""
SQLite-based store for bulk ingestion jobs.

Holds the durable Job Record (config snapshot, status, counters, result)
plus a per-item ledger so a job interrupted by a restart can be resumed
without re-attributing items it already finished.
"""

import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.config import settings
from ..core.logging import logger
from ..models.job import (
    BulkJobConfig,
    ItemOutcome,
    JobProgress,
    JobResult,
    JobStatus,
    JobType,
)
from ..models.synthesis import ContentRef


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO string, so stored timestamps compare lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


@dataclass
class JobRecord:
    """One bulk ingestion run: configuration, progress and result."""

    id: str
    job_type: str
    config: BulkJobConfig
    status: str
    progress: JobProgress
    total_items: int
    processed_items: int
    successful_items: int
    failed_items: int
    skipped_items: int
    current_batch: int
    total_batches: int
    result: Optional[JobResult]
    error: Optional[str]
    started_at: Optional[str]
    completed_at: Optional[str]
    created_at: str
    updated_at: str

    @property
    def progress_percent(self) -> float:
        """Get progress as percentage."""
        if self.total_items == 0:
            return 0.0
        return (self.processed_items / self.total_items) * 100

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "type": self.job_type,
            "config": self.config.model_dump(mode="json"),
            "status": self.status,
            "progress": self.progress.model_dump(mode="json"),
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "successful_items": self.successful_items,
            "failed_items": self.failed_items,
            "skipped_items": self.skipped_items,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "progress_percent": round(self.progress_percent, 1),
            "result": self.result.model_dump(mode="json") if self.result else None,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class ItemRecord:
    """Ledger entry for one processed candidate item."""

    job_id: str
    item_key: str
    item_name: str
    item_index: int
    outcome: str
    native_id: Optional[str]
    content_id: Optional[str]
    content_title: Optional[str]
    content_slug: Optional[str]
    error: Optional[str]
    processed_at: str


class JobStore:
    """
    SQLite-based service for persisting bulk jobs.

    Every mutation refreshes ``updated_at`` from ``clock``; the stuck-job
    reaper relies on that column moving forward while a job makes progress.
    """

    def __init__(self, db_path: str = None, clock: Callable[[], datetime] = None):
        """Initialize the job store."""
        self.db_path = db_path or settings.JOBS_DB_PATH
        self.clock = clock or utc_now
        self._ensure_db_directory()
        self._init_database()
        logger.info(f"JobStore initialized with database at {self.db_path}")

    def _ensure_db_directory(self):
        """Ensure the database directory exists."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _now(self) -> str:
        return to_iso(self.clock())

    def _init_database(self):
        """Initialize the database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS bulk_jobs (
                    id TEXT PRIMARY KEY,
                    job_type TEXT NOT NULL,
                    config TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    progress TEXT NOT NULL DEFAULT '{}',
                    total_items INTEGER DEFAULT 0,
                    processed_items INTEGER DEFAULT 0,
                    successful_items INTEGER DEFAULT 0,
                    failed_items INTEGER DEFAULT 0,
                    skipped_items INTEGER DEFAULT 0,
                    current_batch INTEGER DEFAULT 0,
                    total_batches INTEGER DEFAULT 0,
                    result TEXT,
                    error TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS job_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    item_key TEXT NOT NULL,
                    item_name TEXT NOT NULL,
                    item_index INTEGER NOT NULL,
                    outcome TEXT NOT NULL,
                    native_id TEXT,
                    content_id TEXT,
                    content_title TEXT,
                    content_slug TEXT,
                    error TEXT,
                    processed_at TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES bulk_jobs(id),
                    UNIQUE(job_id, item_key)
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_bulk_jobs_status ON bulk_jobs(status)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_job_items_job_id ON job_items(job_id)"
            )

            conn.commit()
            logger.info("Bulk job database schema initialized")

    # ==================== Job Management ====================

    def create_job(
        self,
        config: BulkJobConfig,
        job_type: JobType = JobType.BULK_CREATE,
        total_items: int = 0,
        total_batches: int = 0,
    ) -> JobRecord:
        """Create a new pending job."""
        now = self._now()
        job_id = str(uuid.uuid4())

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO bulk_jobs
                (id, job_type, config, status, progress, total_items, total_batches,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    job_id,
                    JobType(job_type).value,
                    config.model_dump_json(),
                    JobStatus.PENDING.value,
                    JobProgress(batch_total=total_batches).model_dump_json(),
                    total_items,
                    total_batches,
                    now,
                    now,
                ),
            )
            conn.commit()

        logger.info(
            f"Created {JobType(job_type).value} job {job_id} ({config.category.value}, {total_items} items)"
        )
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Get a job by ID."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM bulk_jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
            return self._row_to_job(row) if row else None

    def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> List[JobRecord]:
        """Get jobs, newest first, optionally filtered by status."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            if status:
                cursor.execute(
                    "SELECT * FROM bulk_jobs WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                    (status, limit),
                )
            else:
                cursor.execute(
                    "SELECT * FROM bulk_jobs ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def get_jobs_by_status(self, status: JobStatus) -> List[JobRecord]:
        """Get every job currently in ``status``, oldest first."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM bulk_jobs WHERE status = ? ORDER BY created_at ASC",
                (status.value,),
            )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def get_next_pending_job(self) -> Optional[JobRecord]:
        """Get the oldest pending job."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM bulk_jobs
                WHERE status = ?
                ORDER BY created_at ASC LIMIT 1
            """,
                (JobStatus.PENDING.value,),
            )
            row = cursor.fetchone()
            return self._row_to_job(row) if row else None

    def _row_to_job(self, row) -> JobRecord:
        """Convert a database row to a JobRecord."""
        result = row["result"]
        return JobRecord(
            id=row["id"],
            job_type=row["job_type"],
            config=BulkJobConfig.model_validate_json(row["config"]),
            status=row["status"],
            progress=JobProgress.model_validate_json(row["progress"] or "{}"),
            total_items=row["total_items"],
            processed_items=row["processed_items"],
            successful_items=row["successful_items"],
            failed_items=row["failed_items"],
            skipped_items=row["skipped_items"],
            current_batch=row["current_batch"],
            total_batches=row["total_batches"],
            result=JobResult.model_validate_json(result) if result else None,
            error=row["error"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ==================== Job State Transitions ====================

    def start_job(self, job_id: str, resume: bool = False) -> Optional[JobRecord]:
        """
        Claim a job for processing.

        A pending job moves to processing. With ``resume=True`` a job that is
        already processing (left behind by a crashed worker) may be claimed
        again. Terminal jobs are never claimed.

        Returns:
            The claimed job, or None if the job is missing or not claimable
        """
        now = self._now()
        allowed = [JobStatus.PENDING.value]
        if resume:
            allowed.append(JobStatus.PROCESSING.value)
        placeholders = ", ".join("?" for _ in allowed)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE bulk_jobs
                SET status = ?, started_at = COALESCE(started_at, ?), updated_at = ?
                WHERE id = ? AND status IN ({placeholders})
            """,
                (JobStatus.PROCESSING.value, now, now, job_id, *allowed),
            )
            conn.commit()
            claimed = cursor.rowcount > 0

        if not claimed:
            return None

        logger.info(f"{'Resumed' if resume else 'Started'} job {job_id}")
        return self.get_job(job_id)

    def set_totals(self, job_id: str, total_items: int, total_batches: int) -> bool:
        """Record the item/batch totals; a total that is already set is never changed."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE bulk_jobs
                SET total_items = ?, total_batches = ?, updated_at = ?
                WHERE id = ? AND total_items = 0
            """,
                (total_items, total_batches, self._now(), job_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def complete_job(self, job_id: str, result: JobResult) -> Optional[JobRecord]:
        """Write the final result and mark a processing job as completed."""
        now = self._now()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE bulk_jobs
                SET status = ?, result = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
            """,
                (
                    JobStatus.COMPLETED.value,
                    result.model_dump_json(),
                    now,
                    now,
                    job_id,
                    JobStatus.PROCESSING.value,
                ),
            )
            conn.commit()

        logger.info(f"Completed job {job_id}")
        return self.get_job(job_id)

    def store_result(self, job_id: str, result: JobResult) -> Optional[JobRecord]:
        """
        Attach the partial result of a cancelled run.

        Counters are settled from the item ledger, since progress writes stop
        once the job leaves ``processing``.
        """
        now = self._now()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE bulk_jobs
                SET result = ?,
                    processed_items = (SELECT COUNT(*) FROM job_items WHERE job_id = bulk_jobs.id),
                    successful_items = (SELECT COUNT(*) FROM job_items
                                        WHERE job_id = bulk_jobs.id AND outcome = ?),
                    failed_items = (SELECT COUNT(*) FROM job_items
                                    WHERE job_id = bulk_jobs.id AND outcome = ?),
                    skipped_items = (SELECT COUNT(*) FROM job_items
                                     WHERE job_id = bulk_jobs.id AND outcome = ?),
                    completed_at = COALESCE(completed_at, ?),
                    updated_at = ?
                WHERE id = ? AND status = ? AND result IS NULL
            """,
                (
                    result.model_dump_json(),
                    ItemOutcome.SUCCESSFUL.value,
                    ItemOutcome.FAILED.value,
                    ItemOutcome.SKIPPED.value,
                    now,
                    now,
                    job_id,
                    JobStatus.CANCELLED.value,
                ),
            )
            conn.commit()
        return self.get_job(job_id)

    def fail_job(self, job_id: str, error: str) -> Optional[JobRecord]:
        """Mark a pending or processing job as failed with a fatal error."""
        now = self._now()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE bulk_jobs
                SET status = ?, error = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status IN (?, ?)
            """,
                (JobStatus.FAILED.value, error, now, now, job_id, *ACTIVE_STATUSES),
            )
            conn.commit()

        logger.error(f"Job {job_id} failed: {error}")
        return self.get_job(job_id)

    def cancel_job(self, job_id: str) -> Optional[JobRecord]:
        """
        Cancel a pending or processing job.

        Returns:
            The cancelled job, or None if it was missing or already terminal
        """
        now = self._now()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE bulk_jobs
                SET status = ?, updated_at = ?
                WHERE id = ? AND status IN (?, ?)
            """,
                (JobStatus.CANCELLED.value, now, job_id, *ACTIVE_STATUSES),
            )
            conn.commit()
            cancelled = cursor.rowcount > 0

        if not cancelled:
            return None

        logger.info(f"Cancelled job {job_id}")
        return self.get_job(job_id)

    def fail_stale_jobs(self, cutoff: datetime, error: str) -> int:
        """
        Fail every processing job whose ``updated_at`` is older than ``cutoff``.

        Returns:
            Number of jobs that were reset
        """
        now = self._now()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE bulk_jobs
                SET status = ?, error = ?, completed_at = ?, updated_at = ?
                WHERE status = ? AND updated_at < ?
            """,
                (
                    JobStatus.FAILED.value,
                    error,
                    now,
                    now,
                    JobStatus.PROCESSING.value,
                    to_iso(cutoff),
                ),
            )
            conn.commit()
            return cursor.rowcount

    # ==================== Progress Tracking ====================

    def update_progress(
        self,
        job_id: str,
        processed_items: int = None,
        successful_items: int = None,
        failed_items: int = None,
        skipped_items: int = None,
        current_batch: int = None,
        progress: JobProgress = None,
    ) -> bool:
        """
        Update job counters and/or the current-item progress structure.

        Only jobs in ``processing`` are touched; returns False otherwise.
        """
        updates = ["updated_at = ?"]
        params: List[Any] = [self._now()]

        if processed_items is not None:
            updates.append("processed_items = ?")
            params.append(processed_items)
        if successful_items is not None:
            updates.append("successful_items = ?")
            params.append(successful_items)
        if failed_items is not None:
            updates.append("failed_items = ?")
            params.append(failed_items)
        if skipped_items is not None:
            updates.append("skipped_items = ?")
            params.append(skipped_items)
        if current_batch is not None:
            updates.append("current_batch = ?")
            params.append(current_batch)
        if progress is not None:
            updates.append("progress = ?")
            params.append(progress.model_dump_json())

        params.extend([job_id, JobStatus.PROCESSING.value])

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE bulk_jobs
                SET {", ".join(updates)}
                WHERE id = ? AND status = ?
            """,
                params,
            )
            conn.commit()
            return cursor.rowcount > 0

    def record_item_outcome(
        self,
        job_id: str,
        item_key: str,
        item_name: str,
        item_index: int,
        outcome: ItemOutcome,
        native_id: Optional[str] = None,
        content: Optional[ContentRef] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record how one candidate item was classified.

        An item is attributed once per job; returns False if the key is
        already in the ledger.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO job_items
                (job_id, item_key, item_name, item_index, outcome, native_id,
                 content_id, content_title, content_slug, error, processed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    job_id,
                    item_key,
                    item_name,
                    item_index,
                    outcome.value,
                    native_id,
                    content.id if content else None,
                    content.title if content else None,
                    content.slug if content else None,
                    error,
                    self._now(),
                ),
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_item_outcomes(self, job_id: str) -> List[ItemRecord]:
        """Get the item ledger for a job in item order."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM job_items WHERE job_id = ? ORDER BY item_index ASC",
                (job_id,),
            )
            return [
                ItemRecord(
                    job_id=row["job_id"],
                    item_key=row["item_key"],
                    item_name=row["item_name"],
                    item_index=row["item_index"],
                    outcome=row["outcome"],
                    native_id=row["native_id"],
                    content_id=row["content_id"],
                    content_title=row["content_title"],
                    content_slug=row["content_slug"],
                    error=row["error"],
                    processed_at=row["processed_at"],
                )
                for row in cursor.fetchall()
            ]

    def get_processed_item_keys(self, job_id: str) -> Set[str]:
        """Get keys of items that already have an outcome for a job."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT item_key FROM job_items WHERE job_id = ?", (job_id,)
            )
            return {row["item_key"] for row in cursor.fetchall()}

    # ==================== Stats & Cleanup ====================

    def get_queue_stats(self) -> Dict[str, int]:
        """Count jobs per status."""
        stats = {status.value: 0 for status in JobStatus}
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT status, COUNT(*) AS cnt FROM bulk_jobs GROUP BY status"
            )
            for row in cursor.fetchall():
                stats[row["status"]] = row["cnt"]
        stats["total"] = sum(stats.values())
        return stats

    def delete_job(self, job_id: str):
        """Delete a job and its item ledger."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM job_items WHERE job_id = ?", (job_id,))
            cursor.execute("DELETE FROM bulk_jobs WHERE id = ?", (job_id,))
            conn.commit()

        logger.info(f"Deleted job {job_id} and its item ledger")


# Singleton instance
_job_store_instance: Optional[JobStore] = None


def get_job_store() -> JobStore:
    """Get or create the singleton JobStore instance."""
    global _job_store_instance
    if _job_store_instance is None:
        _job_store_instance = JobStore()
    return _job_store_instance
