"""LLM-powered review synthesis for candidate items."""

import asyncio
import json
from typing import Any, Dict, Optional

from openai import OpenAI
from pydantic import ValidationError

from ..core.config import settings
from ..core.exceptions import ContentAlreadyExistsError, FatalSynthesisError
from ..core.logging import logger
from ..models.catalog import CandidateItem, ReviewCategory
from ..models.job import PublishStatus
from ..models.synthesis import GeneratedReview, SynthesisErrorKind, SynthesisResult
from ..utils.content_utils import generate_slug, unique_slug_suffix
from .content_store import ReviewStore, get_review_store


REVIEW_SYSTEM_PROMPT = """You are a passionate, experienced editor writing professional reviews for an entertainment and technology magazine.

Write in a professional, enthusiastic but objective tone. Never mention that the text was produced by an AI or a language model.

## CONTENT
- title: A catchy review headline
- content: Markdown with a short introduction, several analysis sections with headings and a conclusion
- pros: Three to five concrete strengths
- cons: Three to five concrete weaknesses
- score: Overall rating from 0 to 100

## OUTPUT FORMAT
Return valid JSON only, no markdown code blocks:
{
  "title": "...",
  "content": "...",
  "pros": ["..."],
  "cons": ["..."],
  "score": 0
}"""

CATEGORY_NOUNS = {
    ReviewCategory.GAME: "video game",
    ReviewCategory.MOVIE: "movie",
    ReviewCategory.SERIES: "TV series",
    ReviewCategory.HARDWARE: "hardware product",
    ReviewCategory.PRODUCT: "product",
}

# Catalog fields worth passing to the model as context
CONTEXT_FIELDS = (
    "summary",
    "overview",
    "first_release_date",
    "release_date",
    "first_air_date",
    "genres",
    "platforms",
)


class ReviewGenerator:
    """Generates review content with an OpenAI-compatible chat model."""

    def __init__(self, client: Optional[OpenAI] = None):
        self.client = client or OpenAI(
            base_url=settings.LLM_BASE_URL,
            api_key=settings.LLM_API_KEY or "not-set",
        )
        self.model = settings.LLM_MODEL_NAME
        logger.info(f"ReviewGenerator initialized with model: {self.model}")

    def build_user_prompt(self, item: CandidateItem) -> str:
        context_lines = []
        for field in CONTEXT_FIELDS:
            value = item.data.get(field)
            if not value:
                continue
            if isinstance(value, list):
                value = ", ".join(
                    v.get("name", str(v)) if isinstance(v, dict) else str(v) for v in value
                )
            context_lines.append(f"{field}: {value}")
        context = "\n".join(context_lines) or "N/A"

        return f"""Write a review of the {CATEGORY_NOUNS[item.category]} "{item.display_name}" in {settings.LLM_REVIEW_LANGUAGE}.

CONTEXT:
---
{context}
---

Return only valid JSON."""

    async def generate(self, item: CandidateItem) -> GeneratedReview:
        """
        Generate review content for one item.

        Raises:
            FatalSynthesisError: If the model output is not a valid review
        """
        user_prompt = self.build_user_prompt(item)

        # Make synchronous call in thread pool to avoid blocking
        loop = asyncio.get_event_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": REVIEW_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=settings.LLM_TEMPERATURE,
                max_tokens=settings.LLM_MAX_TOKENS,
                response_format={"type": "json_object"},
            ),
        )

        response_text = response.choices[0].message.content or ""
        data = self._parse_llm_response(response_text)

        try:
            return GeneratedReview.model_validate(data)
        except ValidationError as e:
            raise FatalSynthesisError(
                f"Generated review for {item.display_name} is invalid: {e.error_count()} error(s)"
            ) from e

    def _parse_llm_response(self, response_text: str) -> Dict[str, Any]:
        """Parse LLM response text into JSON."""
        text = response_text.strip()
        if "```json" in text:
            text = text.split("```json")[1].split("```")[0]
        elif text.startswith("```"):
            parts = text.split("```")
            if len(parts) >= 2:
                text = parts[1]

        try:
            data = json.loads(text.strip())
        except json.JSONDecodeError as e:
            raise FatalSynthesisError(f"Failed to parse LLM response as JSON: {e}") from e

        if not isinstance(data, dict):
            raise FatalSynthesisError("LLM response is not a JSON object")
        return data


class ReviewSynthesizer:
    """Produces and persists one review per candidate item."""

    def __init__(
        self,
        review_store: Optional[ReviewStore] = None,
        generator: Optional[ReviewGenerator] = None,
    ):
        self.review_store = review_store or get_review_store()
        self.generator = generator or ReviewGenerator()

    def _unique_slug(self, title: str, item: CandidateItem) -> str:
        slug = generate_slug(title) or generate_slug(item.display_name)
        if not slug:
            slug = f"{item.category.value}-{generate_slug(str(item.native_id))}"
        if self.review_store.slug_exists(slug):
            slug = f"{slug}-{unique_slug_suffix()}"
        return slug

    async def synthesize(
        self,
        item: CandidateItem,
        status: PublishStatus = PublishStatus.DRAFT,
        skip_existing: bool = True,
    ) -> SynthesisResult:
        """
        Generate and persist a review for ``item``.

        Returns an ``already_exists`` result when the item already has a
        review and ``skip_existing`` is set, and a ``fatal`` result for
        unusable model output. Network and API errors are raised to the
        caller, which treats them as transient.
        """
        if skip_existing:
            existing = self.review_store.find_by_native_id(item.category, item.native_id)
            if existing is not None:
                logger.debug(f"Review for {item.display_name} already exists ({existing.slug})")
                return SynthesisResult.already_exists()

        try:
            generated = await self.generator.generate(item)
        except FatalSynthesisError as e:
            return SynthesisResult.failure(SynthesisErrorKind.FATAL, str(e))

        slug = self._unique_slug(generated.title, item)

        try:
            record = self.review_store.create_review(
                item.category, item.native_id, generated, slug, status=status
            )
        except ContentAlreadyExistsError:
            if skip_existing:
                return SynthesisResult.already_exists()
            return SynthesisResult.failure(
                SynthesisErrorKind.FATAL, f"A review for {item.display_name} already exists"
            )

        logger.info(f"Created review '{record.title}' ({record.slug}) for {item.display_name}")
        return SynthesisResult.ok(record.to_ref())


# Singleton instance
_synthesizer_instance: Optional[ReviewSynthesizer] = None


def get_synthesizer() -> ReviewSynthesizer:
    """Get or create the singleton ReviewSynthesizer instance."""
    global _synthesizer_instance
    if _synthesizer_instance is None:
        _synthesizer_instance = ReviewSynthesizer()
    return _synthesizer_instance
