"""API request schemas."""
from typing import Optional

from pydantic import BaseModel, Field

from ..core.config import settings
from .catalog import CatalogQuery, ReviewCategory
from .job import BulkJobConfig, ItemMode, JobType, PublishStatus


class BulkCreateRequest(BaseModel):
    """Request schema for creating a bulk review job."""
    category: ReviewCategory = ReviewCategory.GAME
    query_options: CatalogQuery = Field(default_factory=CatalogQuery)
    total_limit: Optional[int] = Field(
        None, ge=1, le=10000, description="Overrides query_options.limit"
    )
    batch_size: int = Field(default=settings.DEFAULT_BATCH_SIZE, ge=1, le=100)
    delay_between_batches: int = Field(default=settings.DEFAULT_DELAY_BETWEEN_BATCHES_MS, ge=0)
    delay_between_items: int = Field(default=settings.DEFAULT_DELAY_BETWEEN_ITEMS_MS, ge=0)
    status: PublishStatus = PublishStatus.DRAFT
    skip_existing: bool = True
    max_retries: int = Field(default=settings.DEFAULT_MAX_RETRIES, ge=1, le=10)
    job_type: JobType = JobType.BULK_CREATE
    item_mode: Optional[ItemMode] = None
    start_immediately: bool = Field(True, description="Start processing in the background")

    def to_config(self) -> BulkJobConfig:
        """Freeze the request into a job configuration."""
        query = self.query_options
        if self.total_limit is not None:
            query = query.model_copy(update={"limit": self.total_limit})
        return BulkJobConfig(
            category=self.category,
            query_options=query,
            batch_size=self.batch_size,
            delay_between_batches=self.delay_between_batches,
            delay_between_items=self.delay_between_items,
            status=self.status,
            skip_existing=self.skip_existing,
            max_retries=self.max_retries,
            item_mode=self.item_mode,
        )
