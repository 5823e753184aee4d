"""Tests for the batch processor."""

from datetime import timedelta

import pytest

from conftest import FakeCatalog, make_config, make_items
from review_ingest.core.exceptions import (
    ContentAlreadyExistsError,
    FatalSynthesisError,
    NoItemsFoundError,
)
from review_ingest.models.job import ItemError, ItemMode, ItemOutcome, JobStatus, JobType
from review_ingest.models.synthesis import ContentRef, SynthesisErrorKind, SynthesisResult
from review_ingest.services.batch_processor import BatchProcessor, CancellationToken
from review_ingest.services.reaper import StuckJobReaper


def assert_counters_consistent(job):
    assert job.processed_items == job.successful_items + job.failed_items + job.skipped_items


@pytest.mark.asyncio
class TestEndToEnd:
    """Whole-job scenarios."""

    async def test_mixed_outcomes_across_three_batches(self, job_store, processor, synthesizer):
        synthesizer.behaviours = {
            3: ContentAlreadyExistsError(),
            5: Exception("Network error"),
        }
        job = job_store.create_job(make_config(batch_size=2, delay_between_batches=0, max_retries=1))

        finished = await processor.run_job(job.id)

        assert finished.status == JobStatus.COMPLETED.value
        assert finished.total_items == 5
        assert finished.processed_items == 5
        assert finished.successful_items == 3
        assert finished.skipped_items == 1
        assert finished.failed_items == 1
        assert finished.total_batches == 3
        assert synthesizer.batch_of == {1: 1, 2: 1, 3: 2, 4: 2, 5: 3}

        assert [r.native_id for r in finished.result.reviews] == ["1", "2", "4"]
        assert finished.result.skipped == ["Item 3"]
        assert finished.result.errors == [ItemError(item="Item 5", error="Network error")]
        assert finished.error is None
        assert finished.started_at is not None
        assert finished.completed_at is not None

    async def test_already_exists_result_is_skipped(self, job_store, processor, synthesizer):
        synthesizer.behaviours = {2: SynthesisResult.already_exists()}
        job = job_store.create_job(make_config())

        finished = await processor.run_job(job.id)

        assert finished.skipped_items == 1
        assert finished.result.skipped == ["Item 2"]

    async def test_counters_consistent_for_every_item_mode(self, job_store, processor, synthesizer):
        synthesizer.behaviours = {
            1: FatalSynthesisError("bad output"),
            2: ContentAlreadyExistsError(),
            4: [Exception("timeout"), None],
        }
        for mode in (ItemMode.CONCURRENT, ItemMode.SEQUENTIAL):
            synthesizer.behaviours[4] = [Exception("timeout"), None]
            job = job_store.create_job(make_config(item_mode=mode, max_retries=3))

            finished = await processor.run_job(job.id)

            assert_counters_consistent(finished)
            assert finished.processed_items == finished.total_items == 5
            assert (finished.successful_items, finished.skipped_items, finished.failed_items) == (3, 1, 1)

    async def test_progress_is_written_after_each_item(self, job_store, processor, synthesizer):
        snapshots = []

        def observe(item):
            running = job_store.get_jobs_by_status(JobStatus.PROCESSING)[0]
            snapshots.append((running.processed_items, running.progress.current_item))

        synthesizer.behaviours = {i: observe for i in range(1, 6)}
        job = job_store.create_job(make_config(item_mode=ItemMode.SEQUENTIAL))

        await processor.run_job(job.id)

        assert snapshots == [
            (0, "Item 1"),
            (1, "Item 2"),
            (2, "Item 3"),
            (3, "Item 4"),
            (4, "Item 5"),
        ]

    async def test_prefetched_candidates_skip_catalog(self, job_store, processor, catalog):
        job = job_store.create_job(make_config(), total_items=3, total_batches=2)

        finished = await processor.run_job(job.id, candidates=make_items(3))

        assert catalog.calls == 0
        assert finished.processed_items == 3

    async def test_duplicate_candidates_are_processed_once(self, job_store, synthesizer, sleep):
        items = make_items(3)
        catalog = FakeCatalog(items=items + [items[0]])
        processor = BatchProcessor(
            job_store=job_store, catalog=catalog, synthesizer=synthesizer, sleep=sleep
        )
        job = job_store.create_job(make_config(batch_size=2))

        finished = await processor.run_job(job.id)

        assert sorted(synthesizer.calls) == [1, 2, 3]
        assert finished.total_items == 3
        assert finished.total_batches == 2
        assert finished.processed_items == finished.successful_items == 3
        assert sorted(r.native_id for r in finished.result.reviews) == ["1", "2", "3"]
        assert finished.result.skipped == []


@pytest.mark.asyncio
class TestRetry:
    """Per-item retry with exponential backoff."""

    async def test_transient_failures_then_success(self, job_store, processor, synthesizer, sleep):
        synthesizer.behaviours = {1: [Exception("timeout"), Exception("timeout"), None]}
        job = job_store.create_job(make_config(max_retries=3), total_items=1, total_batches=1)

        finished = await processor.run_job(job.id, candidates=make_items(1))

        assert synthesizer.calls_for(1) == 3
        assert finished.successful_items == 1
        assert finished.failed_items == 0
        assert sleep.delays == [2.0, 4.0]

    async def test_already_exists_consumes_a_single_attempt(self, job_store, processor, synthesizer, sleep):
        synthesizer.behaviours = {1: ContentAlreadyExistsError()}
        job = job_store.create_job(make_config(max_retries=5), total_items=1, total_batches=1)

        finished = await processor.run_job(job.id, candidates=make_items(1))

        assert synthesizer.calls_for(1) == 1
        assert finished.skipped_items == 1
        assert sleep.delays == []

    async def test_exhausted_retries_record_last_error(self, job_store, processor, synthesizer, sleep):
        synthesizer.behaviours = {
            1: [Exception("error 1"), Exception("error 2"), Exception("error 3")],
        }
        job = job_store.create_job(make_config(max_retries=3), total_items=2, total_batches=1)

        finished = await processor.run_job(job.id, candidates=make_items(2))

        assert synthesizer.calls_for(1) == 3
        assert synthesizer.calls_for(2) == 1
        assert finished.failed_items == 1
        assert finished.successful_items == 1
        assert finished.result.errors == [ItemError(item="Item 1", error="error 3")]
        assert sleep.delays == [2.0, 4.0]

    async def test_fatal_error_is_not_retried(self, job_store, processor, synthesizer):
        synthesizer.behaviours = {
            1: SynthesisResult.failure(SynthesisErrorKind.FATAL, "invalid JSON"),
        }
        job = job_store.create_job(make_config(max_retries=3), total_items=1, total_batches=1)

        finished = await processor.run_job(job.id, candidates=make_items(1))

        assert synthesizer.calls_for(1) == 1
        assert finished.result.errors[0].error == "invalid JSON"


@pytest.mark.asyncio
class TestBatching:
    """Batch partitioning, delays and item modes."""

    async def test_delay_between_batches_not_after_last(self, job_store, processor, sleep):
        job = job_store.create_job(make_config(batch_size=2, delay_between_batches=1500))

        await processor.run_job(job.id)

        assert sleep.delays == [1.5, 1.5]

    async def test_sequential_mode_waits_between_items(self, job_store, processor, sleep):
        job = job_store.create_job(
            make_config(batch_size=3, delay_between_items=500),
            job_type=JobType.MASS_CREATE,
        )

        await processor.run_job(job.id, candidates=make_items(3))

        assert sleep.delays == [0.5, 0.5]

    async def test_concurrent_mode_ignores_item_delay(self, job_store, processor, sleep):
        job = job_store.create_job(make_config(batch_size=3, delay_between_items=500))

        await processor.run_job(job.id, candidates=make_items(3))

        assert sleep.delays == []

    async def test_concurrent_outcomes_attributed_to_right_items(self, job_store, processor, synthesizer):
        synthesizer.behaviours = {
            2: Exception("only item 2 fails"),
        }
        job = job_store.create_job(make_config(batch_size=5))

        finished = await processor.run_job(job.id)

        by_key = {o.item_key: o for o in job_store.get_item_outcomes(job.id)}
        assert by_key["game:2"].outcome == ItemOutcome.FAILED.value
        assert by_key["game:2"].error == "only item 2 fails"
        assert all(
            by_key[f"game:{i}"].outcome == ItemOutcome.SUCCESSFUL.value for i in (1, 3, 4, 5)
        )
        assert finished.result.errors == [ItemError(item="Item 2", error="only item 2 fails")]


@pytest.mark.asyncio
class TestJobLevelFailures:
    """Errors that abort or prevent a run."""

    async def test_catalog_failure_fails_job(self, job_store, synthesizer, sleep, failing_catalog):
        processor = BatchProcessor(
            job_store=job_store, catalog=failing_catalog, synthesizer=synthesizer, sleep=sleep
        )
        job = job_store.create_job(make_config())

        finished = await processor.run_job(job.id)

        assert finished.status == JobStatus.FAILED.value
        assert "connection refused" in finished.error
        assert finished.processed_items == 0
        assert synthesizer.calls == []

    async def test_empty_catalog_fails_unsized_job(self, job_store, synthesizer, sleep):
        processor = BatchProcessor(
            job_store=job_store, catalog=FakeCatalog(items=[]), synthesizer=synthesizer, sleep=sleep
        )
        job = job_store.create_job(make_config())

        finished = await processor.run_job(job.id)

        assert finished.status == JobStatus.FAILED.value
        assert finished.error == NoItemsFoundError("game").message

    async def test_terminal_job_is_not_reprocessed(self, job_store, processor, synthesizer):
        job = job_store.create_job(make_config())
        await processor.run_job(job.id)
        calls = len(synthesizer.calls)

        again = await processor.run_job(job.id)
        resumed = await processor.run_job(job.id, resume=True)

        assert again.status == JobStatus.COMPLETED.value
        assert resumed.status == JobStatus.COMPLETED.value
        assert len(synthesizer.calls) == calls

    async def test_missing_job_returns_none(self, processor):
        assert await processor.run_job("missing") is None

    async def test_unexpected_error_outside_item_loop_fails_job(self, job_store, processor, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(processor, "build_result", broken)
        job = job_store.create_job(make_config())

        finished = await processor.run_job(job.id)

        assert finished.status == JobStatus.FAILED.value
        assert finished.error == "disk full"
        assert not processor.is_running(job.id)


@pytest.mark.asyncio
class TestCancellation:
    """Batch-granularity cancellation."""

    async def test_cancelled_status_stops_before_next_batch(self, job_store, processor, synthesizer):
        job = job_store.create_job(make_config(batch_size=2))
        synthesizer.behaviours = {2: lambda item: job_store.cancel_job(job.id) and None}

        finished = await processor.run_job(job.id)

        assert finished.status == JobStatus.CANCELLED.value
        assert sorted(synthesizer.calls) == [1, 2]
        assert finished.processed_items == 2
        assert finished.result is not None
        assert len(finished.result.reviews) == 2

    async def test_token_cancellation(self, job_store, processor, synthesizer):
        token = CancellationToken()
        synthesizer.behaviours = {3: lambda item: token.cancel()}
        job = job_store.create_job(make_config(batch_size=2))

        finished = await processor.run_job(job.id, token=token)

        assert finished.status == JobStatus.CANCELLED.value
        assert sorted(synthesizer.calls) == [1, 2, 3, 4]
        assert finished.processed_items == 4

    async def test_request_cancel_only_affects_running_jobs(self, processor):
        processor.request_cancel("not-running")

    async def test_reaped_job_stops_and_stays_failed(self, job_store, processor, synthesizer, clock):
        job = job_store.create_job(make_config(batch_size=2))
        reaper = StuckJobReaper(job_store, stale_after=timedelta(minutes=30))
        reaped = {}

        def reap_while_running(item):
            clock.advance(hours=2)
            reaped["count"] = reaper.reap()
            reaped["job"] = job_store.get_job(job.id)

        synthesizer.behaviours = {2: reap_while_running}

        finished = await processor.run_job(job.id)

        snapshot = reaped["job"]
        assert reaped["count"] == 1
        assert sorted(synthesizer.calls) == [1, 2]
        assert finished.status == JobStatus.FAILED.value
        assert finished.error.startswith("Job stuck in processing")
        assert finished.result is None
        assert finished.processed_items == snapshot.processed_items
        assert finished.current_batch == snapshot.current_batch == 1
        assert finished.progress == snapshot.progress
        assert finished.updated_at == snapshot.updated_at


@pytest.mark.asyncio
class TestResume:
    """Re-entering a job left in processing."""

    async def test_resume_skips_items_in_ledger(self, job_store, processor, synthesizer):
        job = job_store.create_job(make_config(batch_size=2), total_items=5, total_batches=3)
        job_store.start_job(job.id)
        for i in (1, 2):
            job_store.record_item_outcome(
                job.id,
                f"game:{i}",
                f"Item {i}",
                i,
                ItemOutcome.SUCCESSFUL,
                native_id=str(i),
                content=ContentRef(id=f"review-{i}", title=f"Item {i} Review", slug=f"item-{i}-review"),
            )
        # Counters lag behind the ledger, as after a crash between the two writes
        job_store.update_progress(job.id, processed_items=1, successful_items=1)

        finished = await processor.run_job(job.id, resume=True)

        assert sorted(synthesizer.calls) == [3, 4, 5]
        assert synthesizer.batch_of == {3: 2, 4: 2, 5: 3}
        assert finished.status == JobStatus.COMPLETED.value
        assert finished.processed_items == finished.successful_items == 5
        assert len(finished.result.reviews) == 5

    async def test_resume_requires_flag(self, job_store, processor, synthesizer):
        job = job_store.create_job(make_config())
        job_store.start_job(job.id)

        result = await processor.run_job(job.id)

        assert result.status == JobStatus.PROCESSING.value
        assert synthesizer.calls == []
