"""Main entry point for the review ingestion API."""

import os
import uvicorn

from review_ingest.core.config import settings
from review_ingest.core.logging import logger


def main():
    """Run the review ingestion API server."""
    logger.info("Starting review ingestion API server")

    # Dev mode: enable auto-reload (set DEV_MODE=1 or UVICORN_RELOAD=1)
    dev_mode = os.environ.get("DEV_MODE", "0") == "1" or os.environ.get("UVICORN_RELOAD", "0") == "1"

    if dev_mode:
        logger.info("Running in DEV MODE with auto-reload enabled")
        uvicorn.run(
            "review_ingest.api.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["src"],
            reload_excludes=["*.db", "*.log", "storage/*", "logs/*"],
            log_level=settings.LOG_LEVEL.lower(),
        )
    else:
        # Jobs run inside the API process and the resume guard is per
        # process, so production runs a single worker
        logger.info("Running in PRODUCTION MODE")
        uvicorn.run(
            "review_ingest.api.main:app",
            host="0.0.0.0",
            port=8000,
            reload=False,
            log_level=settings.LOG_LEVEL.lower(),
        )


if __name__ == "__main__":
    main()
