"""Pytest fixtures for review ingestion tests."""

import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

from review_ingest.core.exceptions import CatalogError
from review_ingest.models.catalog import CandidateItem, CatalogQuery, ReviewCategory
from review_ingest.models.job import BulkJobConfig, JobStatus, PublishStatus
from review_ingest.models.synthesis import ContentRef, SynthesisResult
from review_ingest.services.batch_processor import BatchProcessor
from review_ingest.services.content_store import ReviewStore
from review_ingest.services.job_store import JobStore
from review_ingest.utils.content_utils import generate_slug


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


class FakeCatalog:
    """Catalog returning a fixed item list, or raising a configured error."""

    def __init__(self, items: Optional[List[CandidateItem]] = None, error: Exception = None):
        self.items = items or []
        self.error = error
        self.calls = 0

    async def fetch_candidates(self, category: ReviewCategory, query: CatalogQuery):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.items)


class FakeSynthesizer:
    """
    Synthesizer driven by per-item behaviours.

    A behaviour is an exception (raised on every call), a SynthesisResult
    (returned on every call), a callable taking the item, or a list of such
    effects consumed one per call. Items without a behaviour succeed.
    """

    def __init__(self, job_store: Optional[JobStore] = None, behaviours: Dict[Any, Any] = None):
        self.job_store = job_store
        self.behaviours = behaviours or {}
        self.calls: List[Any] = []
        self.batch_of: Dict[Any, int] = {}

    async def synthesize(self, item, status=PublishStatus.DRAFT, skip_existing=True):
        self.calls.append(item.native_id)
        if self.job_store is not None:
            running = self.job_store.get_jobs_by_status(JobStatus.PROCESSING)
            if running:
                self.batch_of[item.native_id] = running[0].current_batch

        effect = self.behaviours.get(item.native_id)
        if isinstance(effect, list):
            effect = effect.pop(0) if effect else None
        if callable(effect) and not isinstance(effect, BaseException):
            effect = effect(item)
        if isinstance(effect, BaseException):
            raise effect
        if isinstance(effect, SynthesisResult):
            return effect

        return SynthesisResult.ok(
            ContentRef(
                id=f"review-{item.native_id}",
                title=f"{item.display_name} Review",
                slug=generate_slug(f"{item.display_name} review"),
            )
        )

    def calls_for(self, native_id) -> int:
        return self.calls.count(native_id)


def make_items(count: int, category: ReviewCategory = ReviewCategory.GAME) -> List[CandidateItem]:
    """Candidate items with native ids 1..count named 'Item N'."""
    return [
        CandidateItem(native_id=i, display_name=f"Item {i}", category=category, data={"id": i})
        for i in range(1, count + 1)
    ]


def make_config(**overrides) -> BulkJobConfig:
    """Job config with zero delays unless overridden."""
    values = {
        "category": ReviewCategory.GAME,
        "batch_size": 2,
        "delay_between_batches": 0,
        "delay_between_items": 0,
        "max_retries": 1,
    }
    values.update(overrides)
    return BulkJobConfig(**values)


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="review_ingest_test_"))
    yield temp_path
    if temp_path.exists():
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def job_store(temp_dir: Path, clock: FakeClock) -> JobStore:
    """JobStore on a temporary database with a manual clock."""
    return JobStore(db_path=str(temp_dir / "jobs.db"), clock=clock)


@pytest.fixture(scope="function")
def review_store(temp_dir: Path) -> ReviewStore:
    return ReviewStore(db_path=str(temp_dir / "reviews.db"))


@pytest.fixture(scope="function")
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(scope="function")
def catalog() -> FakeCatalog:
    return FakeCatalog(items=make_items(5))


@pytest.fixture(scope="function")
def synthesizer(job_store: JobStore) -> FakeSynthesizer:
    return FakeSynthesizer(job_store=job_store)


@pytest.fixture(scope="function")
def processor(
    job_store: JobStore,
    catalog: FakeCatalog,
    synthesizer: FakeSynthesizer,
    sleep: RecordingSleep,
) -> BatchProcessor:
    """BatchProcessor wired to fakes; retry waits of 2s, 4s, ... are recorded, not slept."""
    return BatchProcessor(
        job_store=job_store,
        catalog=catalog,
        synthesizer=synthesizer,
        retry_base_delay=2.0,
        retry_max_delay=60.0,
        sleep=sleep,
    )


@pytest.fixture(scope="function")
def failing_catalog() -> FakeCatalog:
    return FakeCatalog(error=CatalogError("IGDB", "connection refused"))
