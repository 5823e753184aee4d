"""Tests for the SQLite job store."""

import logging
from datetime import timedelta

import pytest

from conftest import make_config
from review_ingest.models.job import (
    ItemOutcome,
    JobProgress,
    JobResult,
    JobStatus,
    JobType,
    ReviewRef,
)
from review_ingest.models.synthesis import ContentRef


class TestJobCreation:
    """Creating and reading jobs."""

    def test_create_and_get_job(self, job_store):
        config = make_config(batch_size=3)
        job = job_store.create_job(config, total_items=7, total_batches=3)

        assert job.status == JobStatus.PENDING.value
        assert job.job_type == JobType.BULK_CREATE.value
        assert job.total_items == 7
        assert job.total_batches == 3
        assert job.processed_items == 0
        assert job.started_at is None
        assert job.result is None

        loaded = job_store.get_job(job.id)
        assert loaded.config == config
        assert loaded.progress.batch_total == 3

    def test_creation_log_names_job_type(self, job_store, caplog):
        with caplog.at_level(logging.INFO, logger="review_ingest"):
            job = job_store.create_job(make_config(), job_type=JobType.MASS_CREATE)

        assert f"Created mass_create job {job.id}" in caplog.text
        assert "JobType" not in caplog.text

    def test_get_missing_job(self, job_store):
        assert job_store.get_job("does-not-exist") is None

    def test_to_dict_is_serializable(self, job_store):
        job = job_store.create_job(make_config(), total_items=4, total_batches=2)
        data = job.to_dict()

        assert data["type"] == "bulk_create"
        assert data["config"]["category"] == "game"
        assert data["progress_percent"] == 0.0

    def test_next_pending_job_is_oldest(self, job_store, clock):
        first = job_store.create_job(make_config())
        clock.advance(seconds=1)
        job_store.create_job(make_config())

        assert job_store.get_next_pending_job().id == first.id


class TestJobTransitions:
    """Lifecycle transitions."""

    def test_start_job_sets_processing_and_started_at(self, job_store, clock):
        job = job_store.create_job(make_config())
        clock.advance(minutes=1)

        started = job_store.start_job(job.id)

        assert started.status == JobStatus.PROCESSING.value
        assert started.started_at is not None
        assert started.updated_at > job.updated_at

    def test_processing_job_needs_resume_flag(self, job_store):
        job = job_store.create_job(make_config())
        first = job_store.start_job(job.id)

        assert job_store.start_job(job.id) is None

        resumed = job_store.start_job(job.id, resume=True)
        assert resumed.status == JobStatus.PROCESSING.value
        assert resumed.started_at == first.started_at

    @pytest.mark.parametrize("finish", ["complete", "fail", "cancel"])
    def test_terminal_jobs_are_never_restarted(self, job_store, finish):
        job = job_store.create_job(make_config())
        job_store.start_job(job.id)
        if finish == "complete":
            job_store.complete_job(job.id, JobResult())
        elif finish == "fail":
            job_store.fail_job(job.id, "boom")
        else:
            job_store.cancel_job(job.id)

        assert job_store.start_job(job.id) is None
        assert job_store.start_job(job.id, resume=True) is None

    def test_complete_job_writes_result(self, job_store):
        job = job_store.create_job(make_config())
        job_store.start_job(job.id)
        result = JobResult(reviews=[ReviewRef(id="r1", title="T", slug="t")], skipped=["X"])

        done = job_store.complete_job(job.id, result)

        assert done.status == JobStatus.COMPLETED.value
        assert done.completed_at is not None
        assert done.result == result

    def test_fail_job_records_error(self, job_store):
        job = job_store.create_job(make_config())
        job_store.start_job(job.id)

        failed = job_store.fail_job(job.id, "Failed to fetch items from IGDB: timeout")

        assert failed.status == JobStatus.FAILED.value
        assert failed.error == "Failed to fetch items from IGDB: timeout"

    def test_cancel_only_from_active_states(self, job_store):
        pending = job_store.create_job(make_config())
        assert job_store.cancel_job(pending.id).status == JobStatus.CANCELLED.value

        done = job_store.create_job(make_config())
        job_store.start_job(done.id)
        job_store.complete_job(done.id, JobResult())
        assert job_store.cancel_job(done.id) is None
        assert job_store.get_job(done.id).status == JobStatus.COMPLETED.value

    def test_complete_does_not_override_cancel(self, job_store):
        job = job_store.create_job(make_config())
        job_store.start_job(job.id)
        job_store.cancel_job(job.id)

        job_store.complete_job(job.id, JobResult())

        assert job_store.get_job(job.id).status == JobStatus.CANCELLED.value


class TestProgress:
    """Counters, totals and the item ledger."""

    def test_set_totals_only_once(self, job_store):
        job = job_store.create_job(make_config())

        assert job_store.set_totals(job.id, 5, 3) is True
        assert job_store.set_totals(job.id, 9, 5) is False

        loaded = job_store.get_job(job.id)
        assert (loaded.total_items, loaded.total_batches) == (5, 3)

    def test_update_progress_refreshes_updated_at(self, job_store, clock):
        job = job_store.create_job(make_config(), total_items=4, total_batches=2)
        job_store.start_job(job.id)
        clock.advance(minutes=5)

        job_store.update_progress(
            job.id,
            processed_items=2,
            successful_items=1,
            skipped_items=1,
            current_batch=1,
            progress=JobProgress(current_item="Item 2", current_item_index=2, batch_current=1, batch_total=2),
        )

        loaded = job_store.get_job(job.id)
        assert loaded.processed_items == 2
        assert loaded.successful_items == 1
        assert loaded.skipped_items == 1
        assert loaded.failed_items == 0
        assert loaded.current_batch == 1
        assert loaded.progress.current_item == "Item 2"
        assert loaded.updated_at == clock().isoformat(timespec="microseconds")
        assert loaded.progress_percent == 50.0

    def test_item_ledger(self, job_store):
        job = job_store.create_job(make_config())
        job_store.record_item_outcome(
            job.id, "game:2", "Item 2", 2, ItemOutcome.FAILED, native_id="2", error="Network error"
        )
        job_store.record_item_outcome(
            job.id,
            "game:1",
            "Item 1",
            1,
            ItemOutcome.SUCCESSFUL,
            native_id="1",
            content=ContentRef(id="r1", title="Item 1 Review", slug="item-1-review"),
        )

        outcomes = job_store.get_item_outcomes(job.id)
        assert [o.item_key for o in outcomes] == ["game:1", "game:2"]
        assert outcomes[0].content_slug == "item-1-review"
        assert outcomes[1].error == "Network error"
        assert job_store.get_processed_item_keys(job.id) == {"game:1", "game:2"}

    def test_recording_same_item_twice_keeps_first_entry(self, job_store):
        job = job_store.create_job(make_config())
        first = job_store.record_item_outcome(
            job.id,
            "game:1",
            "Item 1",
            1,
            ItemOutcome.SUCCESSFUL,
            content=ContentRef(id="r1", title="Item 1 Review", slug="item-1-review"),
        )
        second = job_store.record_item_outcome(job.id, "game:1", "Item 1", 4, ItemOutcome.SKIPPED)

        assert first is True
        assert second is False
        outcomes = job_store.get_item_outcomes(job.id)
        assert len(outcomes) == 1
        assert outcomes[0].outcome == ItemOutcome.SUCCESSFUL.value
        assert outcomes[0].content_id == "r1"

    def test_update_progress_leaves_finished_jobs_alone(self, job_store, clock):
        job = job_store.create_job(make_config(), total_items=4, total_batches=2)
        job_store.start_job(job.id)
        job_store.update_progress(job.id, processed_items=1, successful_items=1)
        job_store.fail_job(job.id, "Job stuck in processing")
        failed_at = job_store.get_job(job.id).updated_at
        clock.advance(minutes=5)

        updated = job_store.update_progress(
            job.id, processed_items=3, successful_items=3, current_batch=2
        )

        loaded = job_store.get_job(job.id)
        assert updated is False
        assert loaded.status == JobStatus.FAILED.value
        assert (loaded.processed_items, loaded.successful_items, loaded.current_batch) == (1, 1, 0)
        assert loaded.updated_at == failed_at

    def test_store_result_settles_cancelled_counters_from_ledger(self, job_store):
        job = job_store.create_job(make_config(), total_items=4, total_batches=2)
        job_store.start_job(job.id)
        job_store.record_item_outcome(job.id, "game:1", "Item 1", 1, ItemOutcome.SUCCESSFUL)
        job_store.record_item_outcome(job.id, "game:2", "Item 2", 2, ItemOutcome.FAILED, error="x")
        job_store.cancel_job(job.id)

        stored = job_store.store_result(job.id, JobResult())

        assert stored.status == JobStatus.CANCELLED.value
        assert stored.result is not None
        assert (stored.processed_items, stored.successful_items, stored.failed_items) == (2, 1, 1)

    def test_store_result_ignores_failed_jobs(self, job_store, clock):
        job = job_store.create_job(make_config())
        job_store.start_job(job.id)
        job_store.fail_job(job.id, "Job stuck in processing")
        failed_at = job_store.get_job(job.id).updated_at
        clock.advance(minutes=1)

        loaded = job_store.store_result(job.id, JobResult())

        assert loaded.result is None
        assert loaded.updated_at == failed_at


class TestStaleJobsAndStats:
    """Staleness sweep, stats and deletion."""

    def test_fail_stale_jobs(self, job_store, clock):
        stale = job_store.create_job(make_config())
        job_store.start_job(stale.id)
        clock.advance(hours=2)
        fresh = job_store.create_job(make_config())
        job_store.start_job(fresh.id)
        pending = job_store.create_job(make_config())

        reset = job_store.fail_stale_jobs(clock() - timedelta(minutes=30), "stuck")

        assert reset == 1
        assert job_store.get_job(stale.id).status == JobStatus.FAILED.value
        assert job_store.get_job(stale.id).error == "stuck"
        assert job_store.get_job(fresh.id).status == JobStatus.PROCESSING.value
        assert job_store.get_job(pending.id).status == JobStatus.PENDING.value

    def test_queue_stats(self, job_store):
        job_store.create_job(make_config())
        running = job_store.create_job(make_config())
        job_store.start_job(running.id)
        cancelled = job_store.create_job(make_config())
        job_store.cancel_job(cancelled.id)

        stats = job_store.get_queue_stats()

        assert stats["pending"] == 1
        assert stats["processing"] == 1
        assert stats["cancelled"] == 1
        assert stats["completed"] == 0
        assert stats["total"] == 3

    def test_list_jobs_filters_by_status(self, job_store):
        job_store.create_job(make_config())
        running = job_store.create_job(make_config())
        job_store.start_job(running.id)

        assert len(job_store.list_jobs()) == 2
        assert [j.id for j in job_store.list_jobs(status="processing")] == [running.id]
        assert [j.id for j in job_store.get_jobs_by_status(JobStatus.PROCESSING)] == [running.id]

    def test_delete_job_removes_ledger(self, job_store):
        job = job_store.create_job(make_config())
        job_store.record_item_outcome(job.id, "game:1", "Item 1", 1, ItemOutcome.SKIPPED)

        job_store.delete_job(job.id)

        assert job_store.get_job(job.id) is None
        assert job_store.get_item_outcomes(job.id) == []
