"""
SQLite-based store for generated reviews.

The ingestion pipeline only needs a small slice of the review model: lookup
by catalog id (for skip-existing), slug uniqueness and insertion.
"""

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.config import settings
from ..core.exceptions import ContentAlreadyExistsError
from ..core.logging import logger
from ..models.catalog import ReviewCategory
from ..models.job import PublishStatus
from ..models.synthesis import ContentRef, GeneratedReview
from .job_store import to_iso, utc_now


@dataclass
class ReviewRecord:
    """A persisted review."""

    id: str
    category: str
    native_id: str
    title: str
    slug: str
    status: str
    content: str
    score: int
    pros: List[str] = field(default_factory=list)
    cons: List[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_ref(self) -> ContentRef:
        return ContentRef(id=self.id, title=self.title, slug=self.slug)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "native_id": self.native_id,
            "title": self.title,
            "slug": self.slug,
            "status": self.status,
            "content": self.content,
            "score": self.score,
            "pros": self.pros,
            "cons": self.cons,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ReviewStore:
    """SQLite-based persistence for review content records."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or settings.REVIEWS_DB_PATH
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info(f"ReviewStore initialized with database at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        """Initialize the database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    id TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    native_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL DEFAULT 'draft',
                    content TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    pros TEXT NOT NULL DEFAULT '[]',
                    cons TEXT NOT NULL DEFAULT '[]',
                    raw TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(category, native_id)
                )
            """)
            conn.commit()

    def _row_to_review(self, row) -> ReviewRecord:
        return ReviewRecord(
            id=row["id"],
            category=row["category"],
            native_id=row["native_id"],
            title=row["title"],
            slug=row["slug"],
            status=row["status"],
            content=row["content"],
            score=row["score"],
            pros=json.loads(row["pros"]),
            cons=json.loads(row["cons"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def find_by_native_id(
        self, category: ReviewCategory, native_id: Union[int, str]
    ) -> Optional[ReviewRecord]:
        """Find the review for a catalog item, if one exists."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM reviews WHERE category = ? AND native_id = ?",
                (category.value, str(native_id)),
            )
            row = cursor.fetchone()
            return self._row_to_review(row) if row else None

    def get_review(self, review_id: str) -> Optional[ReviewRecord]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM reviews WHERE id = ?", (review_id,))
            row = cursor.fetchone()
            return self._row_to_review(row) if row else None

    def slug_exists(self, slug: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM reviews WHERE slug = ?", (slug,))
            return cursor.fetchone() is not None

    def create_review(
        self,
        category: ReviewCategory,
        native_id: Union[int, str],
        review: GeneratedReview,
        slug: str,
        status: PublishStatus = PublishStatus.DRAFT,
    ) -> ReviewRecord:
        """
        Insert a review.

        Raises:
            ContentAlreadyExistsError: If the item already has a review
                (unique constraint on category + native id)
        """
        now = to_iso(utc_now())
        review_id = str(uuid.uuid4())

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO reviews
                    (id, category, native_id, title, slug, status, content, score,
                     pros, cons, raw, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        review_id,
                        category.value,
                        str(native_id),
                        review.title,
                        slug,
                        status.value,
                        review.content,
                        review.score,
                        json.dumps(review.pros),
                        json.dumps(review.cons),
                        review.model_dump_json(),
                        now,
                        now,
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            if self.find_by_native_id(category, native_id) is not None:
                raise ContentAlreadyExistsError() from e
            raise

        logger.debug(f"Created review {review_id} ({slug})")
        return self.get_review(review_id)

    def count_reviews(self, category: Optional[ReviewCategory] = None) -> int:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            if category:
                cursor.execute(
                    "SELECT COUNT(*) FROM reviews WHERE category = ?", (category.value,)
                )
            else:
                cursor.execute("SELECT COUNT(*) FROM reviews")
            return cursor.fetchone()[0]


# Singleton instance
_review_store_instance: Optional[ReviewStore] = None


def get_review_store() -> ReviewStore:
    """Get or create the singleton ReviewStore instance."""
    global _review_store_instance
    if _review_store_instance is None:
        _review_store_instance = ReviewStore()
    return _review_store_instance
