"""Review ingestion services."""

from .batch_processor import BatchProcessor, get_batch_processor
from .bulk_jobs import BulkJobService, get_bulk_job_service
from .catalog import CatalogService, get_catalog_service
from .content_store import ReviewStore, get_review_store
from .job_store import JobStore, get_job_store
from .reaper import StuckJobReaper, get_reaper
from .resumer import JobResumer, ResumeGuard, get_job_resumer, get_resume_guard
from .synthesizer import ReviewSynthesizer, get_synthesizer

__all__ = [
    "BatchProcessor",
    "get_batch_processor",
    "BulkJobService",
    "get_bulk_job_service",
    "CatalogService",
    "get_catalog_service",
    "ReviewStore",
    "get_review_store",
    "JobStore",
    "get_job_store",
    "StuckJobReaper",
    "get_reaper",
    "JobResumer",
    "ResumeGuard",
    "get_job_resumer",
    "get_resume_guard",
    "ReviewSynthesizer",
    "get_synthesizer",
]
