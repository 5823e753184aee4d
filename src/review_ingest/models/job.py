"""Bulk job models: configuration snapshot, progress and terminal result."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import settings
from .catalog import CatalogQuery, ReviewCategory


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    """Kind of ingestion job."""
    BULK_CREATE = "bulk_create"
    MASS_CREATE = "mass_create"


class ItemMode(str, Enum):
    """How items inside one batch are dispatched."""
    CONCURRENT = "concurrent"
    SEQUENTIAL = "sequential"


class PublishStatus(str, Enum):
    """Publish status given to created reviews."""
    DRAFT = "draft"
    PUBLISHED = "published"


class ItemOutcome(str, Enum):
    """Classification of one processed candidate item."""
    SUCCESSFUL = "successful"
    SKIPPED = "skipped"
    FAILED = "failed"


class BulkJobConfig(BaseModel):
    """Immutable snapshot of a bulk ingestion request."""

    model_config = ConfigDict(frozen=True)

    category: ReviewCategory = ReviewCategory.GAME
    query_options: CatalogQuery = Field(default_factory=CatalogQuery)
    batch_size: int = Field(default=settings.DEFAULT_BATCH_SIZE, ge=1, le=100)
    delay_between_batches: int = Field(
        default=settings.DEFAULT_DELAY_BETWEEN_BATCHES_MS, ge=0,
        description="Milliseconds to wait between batches",
    )
    delay_between_items: int = Field(
        default=settings.DEFAULT_DELAY_BETWEEN_ITEMS_MS, ge=0,
        description="Milliseconds to wait between items in sequential mode",
    )
    status: PublishStatus = PublishStatus.DRAFT
    skip_existing: bool = True
    max_retries: int = Field(default=settings.DEFAULT_MAX_RETRIES, ge=1, le=10)
    item_mode: Optional[ItemMode] = Field(
        None, description="Defaults to concurrent for bulk_create, sequential for mass_create",
    )

    def resolved_item_mode(self, job_type: JobType) -> ItemMode:
        if self.item_mode is not None:
            return self.item_mode
        if job_type == JobType.MASS_CREATE:
            return ItemMode.SEQUENTIAL
        return ItemMode.CONCURRENT


class JobProgress(BaseModel):
    """Fine-grained progress of a running job (what is being worked on now)."""
    current_item: Optional[str] = None
    current_item_index: Optional[int] = None
    batch_current: int = 0
    batch_total: int = 0


class ReviewRef(BaseModel):
    """Reference to a review created by a job."""
    id: str
    title: str
    slug: str
    native_id: Optional[str] = None


class ItemError(BaseModel):
    """Per-item failure recorded in a job result."""
    item: str
    error: str


class JobResult(BaseModel):
    """Terminal result of a job, written once when the job finishes."""
    reviews: List[ReviewRef] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    errors: List[ItemError] = Field(default_factory=list)
