"""Slug and name helpers for generated reviews."""
import re
import secrets
from typing import Any, Dict, List


def generate_slug(title: str) -> str:
    """
    Turn a title into a URL slug.

    Lower-cases the title, collapses every run of non ``[a-z0-9]`` characters
    into a single hyphen and strips leading/trailing hyphens.

    Args:
        title: Review or item title

    Returns:
        URL-safe slug (may be empty for titles without ASCII alphanumerics)
    """
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower())
    return slug.strip("-")


def unique_slug_suffix() -> str:
    """Short random suffix appended to a slug that is already taken."""
    return secrets.token_hex(3)[:5]


def display_name(data: Dict[str, Any]) -> str:
    """Best display name for a raw catalog record."""
    for key in ("name", "title", "title_en", "original_title", "original_name"):
        value = data.get(key)
        if value:
            return str(value)
    return "Unknown"


def partition_batches(items: List[Any], batch_size: int) -> List[List[Any]]:
    """Split ``items`` into consecutive batches; the last one may be shorter."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]


def unique_by_key(items: List[Any]) -> List[Any]:
    """Drop items whose ``key`` was already seen, keeping the first occurrence."""
    seen = set()
    unique = []
    for item in items:
        if item.key in seen:
            continue
        seen.add(item.key)
        unique.append(item)
    return unique
