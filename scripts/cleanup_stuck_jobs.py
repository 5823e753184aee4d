"""Fail bulk jobs stuck in 'processing' without recent progress."""
import argparse
import sys
from datetime import timedelta

from review_ingest.core.config import settings
from review_ingest.models.job import JobStatus
from review_ingest.services.job_store import JobStore
from review_ingest.services.reaper import StuckJobReaper


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", default=None, help="Path to the jobs database")
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.STALE_JOB_MINUTES,
        help="Staleness threshold in minutes",
    )
    args = parser.parse_args()

    store = JobStore(db_path=args.db)
    processing = store.get_jobs_by_status(JobStatus.PROCESSING)
    print(f"Found {len(processing)} job(s) in 'processing'")
    for job in processing:
        print(f"  {job.id} | {job.processed_items}/{job.total_items} | updated {job.updated_at}")

    reaper = StuckJobReaper(store, stale_after=timedelta(minutes=args.minutes))
    reset = reaper.reap()
    print(f"\nReset {reset} stuck job(s) older than {args.minutes} minutes")

    sys.exit(0)


if __name__ == "__main__":
    main()
