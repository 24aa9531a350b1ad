"""OpenAI-backed article rewriting and category review.

Both calls request JSON-mode output and validate it against the packaged
schemas before anything is built from it. A response that is empty, not JSON,
or the wrong shape raises SummarizationError; there is no retry.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional

from openai import OpenAI

from .config import Settings
from .errors import SummarizationError
from .models import FAQ, CategoryCount, CategorySuggestion, SummaryResult
from .schema import CATEGORY_SUGGESTION_SCHEMA, SUMMARY_SCHEMA, validate_payload

LOGGER = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
SUMMARY_PROMPT = "summarize_article.txt"
REVIEW_PROMPT = "review_categories.txt"

SUMMARY_SYSTEM_PROMPT = (
    "You are a professional news summarizer for Indian readers. Always focus on "
    "India's perspective and ensure headlines mention India prominently. "
    "Respond with valid JSON only."
)
REVIEW_SYSTEM_PROMPT = "You are a content categorization expert. Respond only with valid JSON."

INDIA_KEYWORDS = (
    "india",
    "indian",
    "delhi",
    "mumbai",
    "kolkata",
    "chennai",
    "bangalore",
    "bengaluru",
    "hyderabad",
    "pune",
    "ahmedabad",
    "modi",
)


def build_client(api_key: Optional[str] = None) -> OpenAI:
    """Create an OpenAI client; separated for easier testing."""
    return OpenAI(api_key=api_key)


def _require_api_key(settings: Settings) -> str:
    if not settings.openai_api_key:
        raise RuntimeError(
            "OPENAI_API_KEY is required. Set it in the environment or .env file."
        )
    return settings.openai_api_key


def _load_prompt_file(filename: str) -> str:
    return (PROMPTS_DIR / filename).read_text(encoding="utf-8")


def _supports_temperature(model: str) -> bool:
    # Reasoning models reject the temperature parameter.
    return not model.startswith(("gpt-5", "o1", "o3", "o4"))


def _response_text_or_raise(response: object, *, step: str) -> str:
    """Extract response text or raise a clear error when output is missing."""
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text

    status = getattr(response, "status", None)
    if status == "incomplete":
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) if details else None
        hint = ""
        if reason == "max_output_tokens":
            hint = " Increase MAX_TOKENS or set it to 0 to remove the cap."
        raise SummarizationError(f"{step} response incomplete (reason={reason}).{hint}")

    err = getattr(response, "error", None)
    if err:
        raise SummarizationError(f"{step} response error: {err}")

    raise SummarizationError(f"{step} response missing output text.")


def _decode_json(text: str, *, step: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        LOGGER.debug("%s returned non-JSON output: %r", step, text[:500])
        raise SummarizationError(f"{step} returned non-JSON output: {exc}") from exc


def mentions_india(heading: str) -> bool:
    lowered = heading.lower()
    return any(keyword in lowered for keyword in INDIA_KEYWORDS)


def parse_summary_payload(text: str) -> SummaryResult:
    """Decode and validate a summary response; raise SummarizationError if unusable."""
    payload = _decode_json(text, step="Summarizer")
    try:
        validate_payload(payload, SUMMARY_SCHEMA)
    except ValueError as exc:
        raise SummarizationError(str(exc)) from exc

    result = SummaryResult(
        summary=payload["summary"].strip(),
        key_points=[point.strip() for point in payload["tldr"]],
        faqs=[
            FAQ(question=faq["question"].strip(), answer=faq["answer"].strip())
            for faq in payload["faqs"]
        ],
        heading=payload["heading"].strip(),
        category=payload["category"].strip(),
    )
    if not mentions_india(result.heading):
        LOGGER.warning("Heading does not mention India prominently: %s", result.heading)
    return result


class Summarizer:
    """Rewrites raw article text into a SummaryResult."""

    def __init__(
        self,
        client: OpenAI,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, client: OpenAI | None = None) -> "Summarizer":
        client = client or build_client(_require_api_key(settings))
        return cls(
            client,
            model=settings.summarizer_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )

    def _request_kwargs(self, system_prompt: str, user_prompt: str, temperature: float) -> dict:
        request_kwargs = {
            "model": self.model,
            "input": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "text": {"format": {"type": "json_object"}},
        }
        if self.max_tokens and self.max_tokens > 0:
            request_kwargs["max_output_tokens"] = self.max_tokens
        if _supports_temperature(self.model):
            request_kwargs["temperature"] = temperature
        return request_kwargs

    def summarize(self, body_text: str) -> SummaryResult:
        prompt = f"{_load_prompt_file(SUMMARY_PROMPT)}\nArticle to summarize:\n{body_text}"
        response = self.client.responses.create(
            **self._request_kwargs(SUMMARY_SYSTEM_PROMPT, prompt, self.temperature)
        )
        text_output = _response_text_or_raise(response, step="Summarizer")
        return parse_summary_payload(text_output)


def _suggestion_items(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("suggestions", "merges"):
            if isinstance(payload.get(key), list):
                return payload[key]
    raise SummarizationError("Category review response is not a list of suggestions.")


class CategoryReviewer:
    """Asks the model which category labels are duplicates of each other."""

    def __init__(self, summarizer: Summarizer, *, temperature: float = 0.1) -> None:
        self.summarizer = summarizer
        self.temperature = temperature

    def suggest_merges(self, categories: Iterable[CategoryCount]) -> List[CategorySuggestion]:
        categories = list(categories)
        if not categories:
            return []
        by_name = {c.name.strip().lower(): c for c in categories}
        listing = ", ".join(f'"{c.name}" ({c.count} articles)' for c in categories)
        prompt = f"{_load_prompt_file(REVIEW_PROMPT)}\nCategories to analyze:\n{listing}"

        response = self.summarizer.client.responses.create(
            **self.summarizer._request_kwargs(REVIEW_SYSTEM_PROMPT, prompt, self.temperature)
        )
        text_output = _response_text_or_raise(response, step="Category review")
        items = _suggestion_items(_decode_json(text_output, step="Category review"))

        suggestions: List[CategorySuggestion] = []
        for item in items:
            try:
                validate_payload(item, CATEGORY_SUGGESTION_SCHEMA)
            except ValueError as exc:
                LOGGER.warning("Dropping malformed category suggestion %r: %s", item, exc)
                continue
            existing = by_name.get(item["originalCategory"].strip().lower())
            if existing is None:
                LOGGER.info("Dropping suggestion for unknown category %r", item["originalCategory"])
                continue
            target = item["suggestedCategory"].strip()
            if target == existing.name:
                continue
            suggestions.append(
                CategorySuggestion(
                    original_category=existing.name,
                    suggested_category=target,
                    reason=item.get("reason", ""),
                    confidence=item.get("confidence", "medium"),
                    article_count=existing.count,
                )
            )
        return suggestions
