"""Catalog query and candidate item models."""
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class ReviewCategory(str, Enum):
    """Kind of content a bulk job produces reviews for."""
    GAME = "game"
    MOVIE = "movie"
    SERIES = "series"
    HARDWARE = "hardware"
    PRODUCT = "product"


class SortBy(str, Enum):
    """Catalog sort keys."""
    POPULARITY = "popularity"
    RATING = "rating"
    RELEASE_DATE = "release_date"
    NAME = "name"


class SortOrder(str, Enum):
    """Catalog sort direction."""
    ASC = "asc"
    DESC = "desc"


class CatalogQuery(BaseModel):
    """Filters passed to an external catalog when fetching candidates."""
    genre_id: Optional[int] = Field(None, description="Catalog-native genre id")
    platform_id: Optional[int] = Field(None, description="IGDB platform id (games only)")
    release_year: Optional[int] = Field(None, ge=1900, le=2100)
    min_rating: Optional[float] = Field(None, ge=0, le=100)
    sort_by: SortBy = SortBy.POPULARITY
    order: SortOrder = SortOrder.DESC
    limit: int = Field(50, ge=1, le=10000, description="Maximum number of candidates to fetch")
    names: list[str] = Field(
        default_factory=list,
        description="Explicit item names for hardware/product categories",
    )


class CandidateItem(BaseModel):
    """An entry from an external catalog eligible for review synthesis."""
    native_id: Union[int, str] = Field(..., description="Catalog-native identifier")
    display_name: str
    category: ReviewCategory
    data: Dict[str, Any] = Field(default_factory=dict, description="Raw catalog payload")

    @property
    def key(self) -> str:
        """Stable key used to attribute outcomes to this item."""
        return f"{self.category.value}:{self.native_id}"
