"""Show bulk jobs, queue stats and optionally one job's item ledger."""
import argparse
import sys

from review_ingest.services.job_store import JobStore


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", default=None, help="Path to the jobs database")
    parser.add_argument("--status", default=None, help="Only show jobs with this status")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--items", metavar="JOB_ID", help="Print the item ledger of a job")
    args = parser.parse_args()

    try:
        store = JobStore(db_path=args.db)

        stats = store.get_queue_stats()
        print("=== Queue ===")
        print("  " + " | ".join(f"{name}: {count}" for name, count in stats.items()))

        print("\n=== Jobs ===")
        jobs = store.list_jobs(status=args.status, limit=args.limit)
        if not jobs:
            print("No jobs found in database")
        for job in jobs:
            print(
                f"  ID: {job.id[:8]}... | {job.config.category.value:<8} | {job.status:<10} | "
                f"{job.processed_items}/{job.total_items} "
                f"(ok {job.successful_items}, skip {job.skipped_items}, fail {job.failed_items}) | "
                f"batch {job.current_batch}/{job.total_batches} | updated {job.updated_at}"
            )
            if job.error:
                print(f"      error: {job.error}")

        if args.items:
            print(f"\n=== Items of {args.items} ===")
            for record in store.get_item_outcomes(args.items):
                detail = record.content_slug or record.error or ""
                print(f"  #{record.item_index:<5} {record.outcome:<10} {record.item_name:<40} {detail}")

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
