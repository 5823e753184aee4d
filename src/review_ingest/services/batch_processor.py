"""
Batch processor for bulk review ingestion jobs.

This processor:
- Fetches candidate items from the job's catalog
- Partitions them into fixed-size batches processed strictly in order
- Runs each item through the synthesizer with exponential backoff retry
- Classifies every item as successful, skipped or failed
- Persists counters and a per-item ledger after each item so the job can be
  polled while running and resumed after a restart
- Honours cancellation before each batch
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..core.config import settings
from ..core.exceptions import NoItemsFoundError, SynthesisError
from ..core.logging import logger
from ..models.catalog import CandidateItem
from ..models.job import (
    BulkJobConfig,
    ItemError,
    ItemMode,
    ItemOutcome,
    JobProgress,
    JobResult,
    JobStatus,
    JobType,
    ReviewRef,
)
from ..models.synthesis import ContentRef, SynthesisErrorKind, SynthesisResult
from ..utils.content_utils import partition_batches, unique_by_key
from ..utils.retry import RetryConfig, retry_with_backoff
from .catalog import CatalogService, get_catalog_service
from .job_store import JobRecord, JobStore, get_job_store
from .synthesizer import get_synthesizer

# ==================== Metrics ====================


@dataclass
class JobMetrics:
    """Track job performance metrics."""

    started_at: float = field(default_factory=time.time)
    items_successful: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    retries: int = 0
    batches_processed: int = 0

    def record_item(self, outcome: ItemOutcome, attempts: int):
        """Record an item result."""
        if outcome == ItemOutcome.SUCCESSFUL:
            self.items_successful += 1
        elif outcome == ItemOutcome.SKIPPED:
            self.items_skipped += 1
        else:
            self.items_failed += 1
        self.retries += max(attempts - 1, 0)

    @property
    def items_processed(self) -> int:
        return self.items_successful + self.items_skipped + self.items_failed

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.started_at

    @property
    def throughput(self) -> float:
        """Items per minute."""
        elapsed = self.elapsed_seconds
        return self.items_processed / elapsed * 60 if elapsed > 0 else 0

    def log_summary(self, job_id: str):
        """Log a summary of job metrics."""
        logger.info(
            f"Job {job_id} metrics: "
            f"{self.items_processed} items in {self.batches_processed} batches "
            f"over {self.elapsed_seconds:.1f}s ({self.throughput:.2f}/min), "
            f"Successful: {self.items_successful}, Skipped: {self.items_skipped}, "
            f"Failed: {self.items_failed}, Retries: {self.retries}"
        )


class CancellationToken:
    """Cooperative cancellation flag for one running job."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ItemProcessingResult:
    """Classified outcome of one candidate item."""

    item: CandidateItem
    index: int
    outcome: ItemOutcome
    attempts: int
    content: Optional[ContentRef] = None
    error: Optional[str] = None


@dataclass
class RunCounters:
    """Live counters of a run; ``processed`` always equals the sum of the others."""

    successful: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.successful + self.failed + self.skipped

    def apply(self, outcome: ItemOutcome):
        if outcome == ItemOutcome.SUCCESSFUL:
            self.successful += 1
        elif outcome == ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def classify(result: SynthesisResult) -> Tuple[ItemOutcome, Optional[str]]:
    """Map a final synthesis result to an item outcome and error message."""
    if result.success:
        return ItemOutcome.SUCCESSFUL, None
    if result.error_kind == SynthesisErrorKind.ALREADY_EXISTS:
        return ItemOutcome.SKIPPED, None
    return ItemOutcome.FAILED, result.error or "Unknown error"


class BatchProcessor:
    """
    Executes bulk jobs end-to-end.

    Item-level errors never abort a job; only a failed catalog fetch or an
    unexpected error outside the item loop marks the job as failed.
    """

    def __init__(
        self,
        job_store: Optional[JobStore] = None,
        catalog: Optional[CatalogService] = None,
        synthesizer=None,
        retry_base_delay: float = None,
        retry_max_delay: float = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.job_store = job_store or get_job_store()
        self.catalog = catalog or get_catalog_service()
        self.synthesizer = synthesizer or get_synthesizer()
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.RETRY_BASE_DELAY_MS / 1000
        )
        self.retry_max_delay = (
            retry_max_delay
            if retry_max_delay is not None
            else settings.RETRY_MAX_DELAY_MS / 1000
        )
        self.sleep = sleep

        # In-memory state for jobs running in this process
        self._tokens: Dict[str, CancellationToken] = {}
        self._running: Set[str] = set()

    def is_running(self, job_id: str) -> bool:
        """Check if a job is currently running in this process."""
        return job_id in self._running

    def request_cancel(self, job_id: str):
        """Ask a running job to stop before its next batch."""
        token = self._tokens.get(job_id)
        if token:
            token.cancel()
            logger.info(f"Cancellation requested for running job {job_id}")

    def _stop_reason(self, job_id: str, token: CancellationToken) -> Optional[str]:
        """Why the run must stop before its next batch, or None to carry on."""
        if token.is_cancelled:
            return JobStatus.CANCELLED.value
        job = self.job_store.get_job(job_id)
        if job is None:
            return "deleted"
        if job.status != JobStatus.PROCESSING.value:
            return job.status
        return None

    # ==================== Main Processing ====================

    async def run_job(
        self,
        job_id: str,
        resume: bool = False,
        candidates: Optional[List[CandidateItem]] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[JobRecord]:
        """
        Claim and run a job.

        Args:
            job_id: Job to run
            resume: Allow re-entering a job already in ``processing``
                (crash recovery)
            candidates: Pre-fetched candidate items; fetched from the catalog
                when omitted
            token: Cancellation token; one is created when omitted

        Returns:
            The job record after the run, or None if the job does not exist
        """
        if job_id in self._running:
            logger.warning(f"Job {job_id} is already running in this process")
            return self.job_store.get_job(job_id)

        job = self.job_store.start_job(job_id, resume=resume)
        if job is None:
            existing = self.job_store.get_job(job_id)
            if existing is None:
                logger.warning(f"Job {job_id} not found")
            else:
                logger.info(f"Job {job_id} is {existing.status}, not claiming it")
            return existing

        self._running.add(job_id)
        token = token or CancellationToken()
        self._tokens[job_id] = token

        try:
            await self._run(job, resume, candidates, token)
        except Exception as e:
            logger.error(f"Job {job_id} aborted: {e}", exc_info=True)
            self.job_store.fail_job(job_id, str(e) or e.__class__.__name__)
        finally:
            self._running.discard(job_id)
            self._tokens.pop(job_id, None)

        return self.job_store.get_job(job_id)

    async def _run(
        self,
        job: JobRecord,
        resume: bool,
        candidates: Optional[List[CandidateItem]],
        token: CancellationToken,
    ):
        config = job.config
        job_type = JobType(job.job_type)
        item_mode = config.resolved_item_mode(job_type)
        metrics = JobMetrics()

        if candidates is None:
            try:
                candidates = await self.catalog.fetch_candidates(
                    config.category, config.query_options
                )
            except Exception as e:
                logger.error(f"Catalog fetch for job {job.id} failed: {e}")
                self.job_store.fail_job(job.id, str(e))
                return

        unique = unique_by_key(candidates)
        if len(unique) < len(candidates):
            logger.warning(
                f"Job {job.id}: dropped {len(candidates) - len(unique)} duplicate candidate(s)"
            )
        candidates = unique

        # Item totals are fixed once known
        total_items = job.total_items
        total_batches = job.total_batches
        if total_items == 0:
            if not candidates:
                self.job_store.fail_job(
                    job.id, NoItemsFoundError(config.category.value).message
                )
                return
            total_items = len(candidates)
            total_batches = math.ceil(total_items / config.batch_size)
            self.job_store.set_totals(job.id, total_items, total_batches)

        # The ledger is the source of truth for what was already attributed
        counters = RunCounters()
        for record in self.job_store.get_item_outcomes(job.id):
            counters.apply(ItemOutcome(record.outcome))
        processed_keys = self.job_store.get_processed_item_keys(job.id)

        remaining = [
            (index, item)
            for index, item in enumerate(candidates, start=1)
            if item.key not in processed_keys
        ][: max(total_items - counters.processed, 0)]

        if resume:
            logger.info(
                f"Resuming job {job.id}: {counters.processed}/{total_items} already processed, "
                f"{len(remaining)} remaining"
            )
            self.job_store.update_progress(
                job.id,
                processed_items=counters.processed,
                successful_items=counters.successful,
                failed_items=counters.failed,
                skipped_items=counters.skipped,
            )

        batches = partition_batches(remaining, config.batch_size)
        batch_offset = max(total_batches - len(batches), 0)
        logger.info(
            f"Processing job {job.id}: {len(remaining)} items in {len(batches)} batches "
            f"(batch size {config.batch_size}, {item_mode.value})"
        )

        for position, batch in enumerate(batches):
            batch_number = batch_offset + position + 1

            stop_reason = self._stop_reason(job.id, token)
            if stop_reason:
                logger.info(f"Job {job.id} is {stop_reason}, stopping before batch {batch_number}")
                break

            self.job_store.update_progress(
                job.id,
                current_batch=batch_number,
                progress=JobProgress(batch_current=batch_number, batch_total=total_batches),
            )
            logger.info(
                f"Job {job.id}: batch {batch_number}/{total_batches} ({len(batch)} items)"
            )

            if item_mode == ItemMode.SEQUENTIAL:
                await self._process_sequential(job, batch, batch_number, total_batches, counters, metrics)
            else:
                await self._process_concurrent(job, batch, batch_number, total_batches, counters, metrics)

            metrics.batches_processed += 1

            if position < len(batches) - 1 and config.delay_between_batches > 0:
                await self.sleep(config.delay_between_batches / 1000)

        self._finalize(job.id, token.is_cancelled)
        metrics.log_summary(job.id)

    async def _process_concurrent(
        self,
        job: JobRecord,
        batch: List[Tuple[int, CandidateItem]],
        batch_number: int,
        total_batches: int,
        counters: RunCounters,
        metrics: JobMetrics,
    ):
        """Fire all items of a batch and record each outcome as it completes."""
        tasks = [
            self._process_item(job, index, item, batch_number, total_batches)
            for index, item in batch
        ]
        for next_done in asyncio.as_completed(tasks):
            result = await next_done
            self._record_outcome(job.id, result, counters, metrics)

    async def _process_sequential(
        self,
        job: JobRecord,
        batch: List[Tuple[int, CandidateItem]],
        batch_number: int,
        total_batches: int,
        counters: RunCounters,
        metrics: JobMetrics,
    ):
        """Process a batch one item at a time with a fixed delay in between."""
        for position, (index, item) in enumerate(batch):
            result = await self._process_item(job, index, item, batch_number, total_batches)
            self._record_outcome(job.id, result, counters, metrics)

            if position < len(batch) - 1 and job.config.delay_between_items > 0:
                await self.sleep(job.config.delay_between_items / 1000)

    async def _process_item(
        self,
        job: JobRecord,
        index: int,
        item: CandidateItem,
        batch_number: int,
        total_batches: int,
    ) -> ItemProcessingResult:
        """Synthesize one item with retry; never raises."""
        config: BulkJobConfig = job.config
        attempts = 0

        self.job_store.update_progress(
            job.id,
            progress=JobProgress(
                current_item=item.display_name,
                current_item_index=index,
                batch_current=batch_number,
                batch_total=total_batches,
            ),
        )

        async def attempt() -> SynthesisResult:
            nonlocal attempts
            attempts += 1
            try:
                return await self.synthesizer.synthesize(
                    item, status=config.status, skip_existing=config.skip_existing
                )
            except SynthesisError as e:
                return SynthesisResult.failure(e.kind, str(e))
            except Exception as e:
                return SynthesisResult.failure(
                    SynthesisErrorKind.TRANSIENT, str(e) or e.__class__.__name__
                )

        retry_config = RetryConfig(
            max_attempts=config.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

        try:
            result = await retry_with_backoff(
                attempt, retry_config, lambda r: r.is_retryable, sleep=self.sleep
            )
        except Exception as e:
            logger.error(f"Unexpected error processing {item.display_name}: {e}", exc_info=True)
            result = SynthesisResult.failure(SynthesisErrorKind.FATAL, str(e))

        outcome, error = classify(result)
        if outcome == ItemOutcome.FAILED:
            logger.warning(
                f"Job {job.id}: {item.display_name} failed after {attempts} attempt(s): {error}"
            )
        elif outcome == ItemOutcome.SKIPPED:
            logger.info(f"Job {job.id}: skipped {item.display_name} (already exists)")

        return ItemProcessingResult(
            item=item,
            index=index,
            outcome=outcome,
            attempts=attempts,
            content=result.content,
            error=error,
        )

    def _record_outcome(
        self,
        job_id: str,
        result: ItemProcessingResult,
        counters: RunCounters,
        metrics: JobMetrics,
    ):
        """Write the item to the ledger, then advance the job's counters."""
        recorded = self.job_store.record_item_outcome(
            job_id,
            item_key=result.item.key,
            item_name=result.item.display_name,
            item_index=result.index,
            outcome=result.outcome,
            native_id=str(result.item.native_id),
            content=result.content,
            error=result.error,
        )
        if not recorded:
            logger.warning(
                f"Job {job_id}: {result.item.display_name} is already in the ledger, not counted again"
            )
            return
        counters.apply(result.outcome)
        metrics.record_item(result.outcome, result.attempts)
        self.job_store.update_progress(
            job_id,
            processed_items=counters.processed,
            successful_items=counters.successful,
            failed_items=counters.failed,
            skipped_items=counters.skipped,
        )

    def build_result(self, job_id: str) -> JobResult:
        """Aggregate the item ledger into a job result."""
        result = JobResult()
        for record in self.job_store.get_item_outcomes(job_id):
            if record.outcome == ItemOutcome.SUCCESSFUL.value and record.content_id:
                result.reviews.append(
                    ReviewRef(
                        id=record.content_id,
                        title=record.content_title or record.item_name,
                        slug=record.content_slug or "",
                        native_id=record.native_id,
                    )
                )
            elif record.outcome == ItemOutcome.SKIPPED.value:
                result.skipped.append(record.item_name)
            elif record.outcome == ItemOutcome.FAILED.value:
                result.errors.append(
                    ItemError(item=record.item_name, error=record.error or "Unknown error")
                )
        return result

    def _finalize(self, job_id: str, cancelled: bool):
        result = self.build_result(job_id)
        job = self.job_store.get_job(job_id)

        if job is None:
            logger.warning(f"Job {job_id} disappeared while running")
            return

        if job.status == JobStatus.PROCESSING.value and cancelled:
            job = self.job_store.cancel_job(job_id) or self.job_store.get_job(job_id)

        if job.status == JobStatus.PROCESSING.value:
            self.job_store.complete_job(job_id, result)
            logger.info(
                f"Job {job_id} completed: {len(result.reviews)} created, "
                f"{len(result.skipped)} skipped, {len(result.errors)} failed"
            )
        elif job.status == JobStatus.CANCELLED.value:
            # Cancelled jobs keep their status and carry the partial result
            self.job_store.store_result(job_id, result)
            logger.info(
                f"Job {job_id} cancelled after {len(result.reviews)} created, "
                f"{len(result.skipped)} skipped, {len(result.errors)} failed"
            )
        else:
            logger.warning(f"Job {job_id} was marked {job.status} while running, leaving it unchanged")


# Singleton instance
_batch_processor_instance: Optional[BatchProcessor] = None


def get_batch_processor() -> BatchProcessor:
    """Get or create the singleton BatchProcessor instance."""
    global _batch_processor_instance
    if _batch_processor_instance is None:
        _batch_processor_instance = BatchProcessor()
    return _batch_processor_instance
