"""Content synthesis results."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SynthesisErrorKind(str, Enum):
    """Why a synthesis attempt did not produce a review."""
    ALREADY_EXISTS = "already_exists"
    TRANSIENT = "transient"
    FATAL = "fatal"


class ContentRef(BaseModel):
    """Identity of a persisted review."""
    id: str
    title: str
    slug: str


class SynthesisResult(BaseModel):
    """Outcome of one synthesize() call."""
    success: bool
    content: Optional[ContentRef] = None
    error_kind: Optional[SynthesisErrorKind] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, content: ContentRef) -> "SynthesisResult":
        return cls(success=True, content=content)

    @classmethod
    def failure(cls, kind: SynthesisErrorKind, error: str) -> "SynthesisResult":
        return cls(success=False, error_kind=kind, error=error)

    @classmethod
    def already_exists(cls) -> "SynthesisResult":
        return cls.failure(SynthesisErrorKind.ALREADY_EXISTS, "Already exists")

    @property
    def is_retryable(self) -> bool:
        return not self.success and self.error_kind == SynthesisErrorKind.TRANSIENT


class GeneratedReview(BaseModel):
    """Review content produced by the language model."""
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    score: int = Field(..., ge=0, le=100)
