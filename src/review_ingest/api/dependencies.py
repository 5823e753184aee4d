"""FastAPI dependency providers for the ingestion services."""
from ..services.bulk_jobs import BulkJobService, get_bulk_job_service
from ..services.job_store import JobStore, get_job_store
from ..services.resumer import JobResumer, get_job_resumer


def bulk_job_service() -> BulkJobService:
    return get_bulk_job_service()


def job_resumer() -> JobResumer:
    return get_job_resumer()


def job_store() -> JobStore:
    return get_job_store()
