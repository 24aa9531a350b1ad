"""Batch ingestion: fetch -> filter new -> summarize -> slugify -> persist -> mark.

Articles are handled one at a time in the order the upstream API returns
them. A failure on one article is logged and counted, and the batch moves on;
only a failed fetch (or an unexpected error outside the per-article loop)
ends the run early.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol

from bs4 import BeautifulSoup

from .content_store import ContentStore
from .errors import FetchError
from .guardian import DateLike
from .ledger import ProcessedLedger
from .models import Article, SummaryResult, UpstreamArticle
from .slugs import DEFAULT_MAX_COLLISIONS, DEFAULT_MAX_LENGTH, resolve_unique_slug

LOGGER = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class ArticleFetcher(Protocol):
    def fetch_all_articles(
        self, query: str, *, from_date: DateLike = None, to_date: DateLike = None
    ) -> List[UpstreamArticle]: ...


class ArticleSummarizer(Protocol):
    def summarize(self, body_text: str) -> SummaryResult: ...


class Stage(str, Enum):
    FETCHING = "fetching"
    FILTERING = "filtering"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Progress:
    stage: Stage
    current: int
    total: int
    message: str
    current_title: str | None = None
    processed: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class BatchStats:
    stage: Stage = Stage.FETCHING
    total_fetched: int = 0
    already_processed: int = 0
    newly_processed: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    slugs: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


ProgressCallback = Callable[[Progress], None]


def extract_body_text(article: UpstreamArticle) -> str | None:
    """Return the article body as plain text with collapsed whitespace."""
    raw = article.body_text or article.body_html
    if not raw:
        return None
    text = BeautifulSoup(raw, "html.parser").get_text(" ")
    return _WHITESPACE.sub(" ", text).strip() or None


def build_article(upstream: UpstreamArticle, summary: SummaryResult, slug: str) -> Article:
    return Article(
        slug=slug,
        title=summary.heading,
        category=summary.category,
        published_at=upstream.published_at,
        original_url=upstream.url,
        guardian_id=upstream.id,
        content=summary.summary,
        key_points=summary.key_points,
        faqs=summary.faqs,
        thumbnail=upstream.thumbnail,
        section=upstream.section,
        pillar_name=upstream.pillar_name,
    )


class IngestionOrchestrator:
    """Runs one ingestion batch against injected fetcher, summarizer and stores."""

    def __init__(
        self,
        fetcher: ArticleFetcher,
        summarizer: ArticleSummarizer,
        store: ContentStore,
        ledger: ProcessedLedger,
        *,
        item_delay: float = 1.0,
        min_body_length: int = 100,
        slug_max_length: int = DEFAULT_MAX_LENGTH,
        slug_max_collisions: int = DEFAULT_MAX_COLLISIONS,
        sleep: Callable[[float], None] = time.sleep,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.store = store
        self.ledger = ledger
        self.item_delay = item_delay
        self.min_body_length = min_body_length
        self.slug_max_length = slug_max_length
        self.slug_max_collisions = slug_max_collisions
        self._sleep = sleep
        self._timer = timer

    def usable_body(self, upstream: UpstreamArticle) -> Optional[str]:
        """Plain-text body, or None when it is missing or too short to summarize."""
        body = extract_body_text(upstream)
        if not body or len(body) <= self.min_body_length:
            LOGGER.info(
                "Skipping %s: body text missing or not longer than %d characters.",
                upstream.id,
                self.min_body_length,
            )
            return None
        return body

    def summarize_and_store(self, upstream: UpstreamArticle, body: str) -> Article:
        """
        Summarize one article, give it a free slug, store it and mark it processed.

        Raises on any failure; the ledger is only updated after the article is stored.
        """
        summary = self.summarizer.summarize(body)
        slug = resolve_unique_slug(
            summary.heading,
            self.store.exists,
            max_length=self.slug_max_length,
            max_collisions=self.slug_max_collisions,
        )
        article = build_article(upstream, summary, slug)
        return self.store.create_processed(article, self.ledger)

    def run(
        self,
        query: str,
        *,
        from_date: DateLike = None,
        to_date: DateLike = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchStats:
        started = self._timer()
        stats = BatchStats()

        def report(message: str, *, current: int = 0, total: int = 0, title: str | None = None):
            if on_progress is None:
                return
            on_progress(
                Progress(
                    stage=stats.stage,
                    current=current,
                    total=total,
                    message=message,
                    current_title=title,
                    processed=stats.newly_processed,
                    skipped=stats.already_processed + stats.skipped,
                    errors=stats.errors,
                )
            )

        report("Fetching articles from the Guardian API...")
        try:
            fetched = self.fetcher.fetch_all_articles(
                query, from_date=from_date, to_date=to_date
            )
        except FetchError as exc:
            stats.stage = Stage.FAILED
            stats.elapsed_seconds = self._timer() - started
            LOGGER.error("Fetch failed; no articles processed: %s", exc)
            report(f"Fetch failed: {exc}")
            raise

        stats.total_fetched = len(fetched)
        stats.stage = Stage.FILTERING
        report(
            f"Found {len(fetched)} articles. Checking for duplicates...", total=len(fetched)
        )
        pending: List[UpstreamArticle] = []
        for upstream in fetched:
            if self.ledger.is_processed(upstream.id):
                stats.already_processed += 1
            else:
                pending.append(upstream)
        LOGGER.info(
            "Fetched %d articles: %d already processed, %d new.",
            stats.total_fetched,
            stats.already_processed,
            len(pending),
        )

        stats.stage = Stage.PROCESSING
        total = len(pending)
        report(f"Processing {total} new articles...", total=total)
        summarized_before = False
        for index, upstream in enumerate(pending, start=1):
            report(
                f"Processing article {index}/{total}",
                current=index - 1,
                total=total,
                title=upstream.title,
            )
            try:
                body = self.usable_body(upstream)
                if body is None:
                    stats.skipped += 1
                else:
                    if summarized_before:
                        self._sleep(self.item_delay)
                    summarized_before = True
                    article = self.summarize_and_store(upstream, body)
                    stats.newly_processed += 1
                    stats.slugs.append(article.slug)
                    LOGGER.info("Stored article %s from %s", article.slug, upstream.id)
            except Exception as exc:
                stats.errors += 1
                message = f"Failed to process article {upstream.id}: {exc}"
                stats.error_messages.append(message)
                LOGGER.error("%s (title=%r)", message, upstream.title, exc_info=True)
            report(
                f"Processed {index}/{total} articles",
                current=index,
                total=total,
                title=upstream.title,
            )

        stats.stage = Stage.COMPLETED
        stats.elapsed_seconds = self._timer() - started
        report(
            f"Completed: {stats.newly_processed} new, {stats.already_processed} already "
            f"processed, {stats.skipped} skipped, {stats.errors} errors.",
            current=total,
            total=total,
        )
        LOGGER.info(
            "Batch complete in %.1fs: fetched=%d already=%d new=%d skipped=%d errors=%d",
            stats.elapsed_seconds,
            stats.total_fetched,
            stats.already_processed,
            stats.newly_processed,
            stats.skipped,
            stats.errors,
        )
        return stats
