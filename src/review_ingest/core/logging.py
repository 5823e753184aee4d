"""Logging configuration."""
import logging
import sys
from pathlib import Path
from .config import settings


def setup_logging():
    """Configure application logging."""

    # Create logs directory
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Configure formatters
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    # File handler
    file_handler = logging.FileHandler(log_dir / "ingest.log")
    file_handler.setFormatter(formatter)

    logger = logging.getLogger("review_ingest")
    logger.setLevel(getattr(logging, settings.LOG_LEVEL))

    # setup_logging() may be called again from scripts
    if not logger.handlers:
        logger.addHandler(console_handler)
        logger.addHandler(file_handler)

    return logger


logger = setup_logging()
