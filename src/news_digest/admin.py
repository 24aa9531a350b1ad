"""Administrative operations shared by the CLI and the HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .content_store import ContentStore
from .errors import NewsDigestError
from .ledger import ProcessedLedger
from .models import Article, CategorySuggestion
from .summarizer import CategoryReviewer

LOGGER = logging.getLogger(__name__)


@dataclass
class MergeDetail:
    from_category: str
    to_category: str
    articles_updated: int = 0
    error: Optional[str] = None


@dataclass
class MergeReport:
    merged_count: int = 0
    articles_updated: int = 0
    details: List[MergeDetail] = field(default_factory=list)


def delete_article(store: ContentStore, ledger: ProcessedLedger, slug: str) -> Article:
    """
    Permanently remove an article and release its upstream id.

    A later ingestion run over the same dates will fetch and rewrite it again.
    """
    article = store.hard_delete(slug)
    if ledger.unmark(article.guardian_id):
        LOGGER.info("Released %s for reprocessing", article.guardian_id)
    return article


def merge_categories(
    store: ContentStore, merges: Iterable[Tuple[str, str]]
) -> MergeReport:
    """Apply each (from, to) rename in order; a failed rename does not stop the rest."""
    report = MergeReport()
    for from_category, to_category in merges:
        detail = MergeDetail(from_category=from_category, to_category=to_category)
        try:
            detail.articles_updated = store.rename_category(from_category, to_category)
        except (NewsDigestError, ValueError) as exc:
            detail.error = str(exc)
            LOGGER.error("Merge %r -> %r failed: %s", from_category, to_category, exc)
        else:
            report.merged_count += 1
            report.articles_updated += detail.articles_updated
        report.details.append(detail)
    return report


def analyze_categories(
    store: ContentStore, reviewer: CategoryReviewer
) -> List[CategorySuggestion]:
    categories = store.list_categories()
    if len(categories) < 2:
        return []
    return reviewer.suggest_merges(categories)


def collect_stats(store: ContentStore, ledger: ProcessedLedger) -> Dict[str, Dict[str, int]]:
    content = store.stats()
    content["categories"] = len(store.list_categories())
    return {"articles": content, "processed": ledger.stats()}
