"""Content store interface and the front-matter file backend.

Each article lives in `<content_dir>/<slug>.md`: a YAML front-matter block with
the metadata, followed by the rewritten body text. Queries load every file and
filter in memory, which is fine at the few-thousand-article scale of the site.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from .errors import ArticleNotFoundError, DuplicateSlugError, PersistenceError
from .file_lock import atomic_write_text, locked_path
from .ledger import ProcessedLedger
from .models import Article, ArticlePage, CategoryCount

LOGGER = logging.getLogger(__name__)

FRONT_MATTER_DELIMITER = "---"
ARTICLE_SUFFIX = ".md"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(articles: List[Article]) -> List[Article]:
    return sorted(articles, key=lambda a: a.published_at, reverse=True)


def _paginate(articles: List[Article], page: int, page_size: int) -> ArticlePage:
    if page < 1:
        raise ValueError("page must be >= 1.")
    if page_size < 1:
        raise ValueError("page_size must be >= 1.")
    start = (page - 1) * page_size
    return ArticlePage(
        items=articles[start : start + page_size],
        total=len(articles),
        page=page,
        page_size=page_size,
    )


def _matches(article: Article, term: str) -> bool:
    return (
        term in article.title.lower()
        or term in article.content.lower()
        or term in article.category.lower()
    )


class ContentStore(ABC):
    """
    Storage contract for published articles.

    Backends implement the primitive reads and writes; the query helpers here
    work over `all_articles()` and may be overridden with native queries.
    """

    @abstractmethod
    def create(self, article: Article) -> Article:
        """Persist a new article; raise DuplicateSlugError if the slug is taken."""

    @abstractmethod
    def get_by_slug(self, slug: str) -> Optional[Article]: ...

    @abstractmethod
    def all_articles(self) -> List[Article]:
        """Every stored article, hidden ones included, newest first."""

    @abstractmethod
    def save(self, article: Article) -> Article:
        """Overwrite an existing article; raise ArticleNotFoundError if absent."""

    @abstractmethod
    def hard_delete(self, slug: str) -> Article:
        """Remove an article permanently and return what was removed."""

    @abstractmethod
    def rename_category(self, old_name: str, new_name: str) -> int:
        """
        Rewrite `old_name` (case-insensitive) to `new_name` on every article.

        Either every matching article is updated or none is; returns the count.
        """

    def exists(self, slug: str) -> bool:
        return self.get_by_slug(slug) is not None

    def create_processed(self, article: Article, ledger: ProcessedLedger) -> Article:
        """Persist an article, then record its upstream id in the ledger."""
        created = self.create(article)
        ledger.mark_processed(created.guardian_id, created.slug)
        return created

    def published_articles(self) -> List[Article]:
        return [a for a in self.all_articles() if not a.is_deleted]

    def list_published(self, page: int = 1, page_size: int = 20) -> ArticlePage:
        return _paginate(self.published_articles(), page, page_size)

    def list_all(self, page: int = 1, page_size: int = 20) -> ArticlePage:
        return _paginate(self.all_articles(), page, page_size)

    def search(self, query: str, *, include_deleted: bool = False) -> List[Article]:
        """Case-insensitive substring match over title, body and category."""
        term = query.strip().lower()
        pool = self.all_articles() if include_deleted else self.published_articles()
        if not term:
            return pool
        return [a for a in pool if _matches(a, term)]

    def list_articles(
        self,
        page: int = 1,
        page_size: int = 20,
        *,
        search: str | None = None,
        include_deleted: bool = False,
    ) -> ArticlePage:
        """Admin listing: optional search, optional hidden articles, paginated."""
        if search and search.strip():
            return _paginate(self.search(search, include_deleted=include_deleted), page, page_size)
        if include_deleted:
            return self.list_all(page, page_size)
        return self.list_published(page, page_size)

    def list_by_category(self, name: str) -> List[Article]:
        wanted = name.strip().lower()
        return [a for a in self.published_articles() if a.category.strip().lower() == wanted]

    def list_categories(self) -> List[CategoryCount]:
        counts = Counter(a.category for a in self.published_articles())
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0].lower()))
        return [CategoryCount(name=name, count=count) for name, count in ordered]

    def set_visibility(self, slug: str, hidden: bool) -> Article:
        article = self.get_by_slug(slug)
        if article is None:
            raise ArticleNotFoundError(slug)
        if article.is_deleted == hidden:
            return article
        updated = article.model_copy(
            update={"is_deleted": hidden, "deleted_at": _utc_now() if hidden else None}
        )
        return self.save(updated)

    def toggle_visibility(self, slug: str) -> Article:
        article = self.get_by_slug(slug)
        if article is None:
            raise ArticleNotFoundError(slug)
        return self.set_visibility(slug, not article.is_deleted)

    def stats(self, now: datetime | None = None) -> Dict[str, int]:
        now = now or _utc_now()
        articles = self.all_articles()
        published = [a for a in articles if not a.is_deleted]
        yesterday = now - timedelta(days=1)
        return {
            "total": len(articles),
            "published": len(published),
            "hidden": len(articles) - len(published),
            "recent": sum(1 for a in published if a.published_at >= yesterday),
        }


def dump_article(article: Article) -> str:
    """Render an article as front matter plus body text."""
    metadata = article.model_dump(mode="json", exclude={"content"})
    header = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True)
    return f"{FRONT_MATTER_DELIMITER}\n{header}{FRONT_MATTER_DELIMITER}\n\n{article.content}\n"


def _split_front_matter(text: str) -> Tuple[str, str]:
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        raise ValueError("missing opening front-matter delimiter")
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONT_MATTER_DELIMITER:
            header = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            return header, body
    raise ValueError("missing closing front-matter delimiter")


def load_article(text: str) -> Article:
    """Parse front matter plus body text back into an Article."""
    header, body = _split_front_matter(text)
    metadata = yaml.safe_load(header) or {}
    if not isinstance(metadata, dict):
        raise ValueError("front matter is not a mapping")
    return Article.model_validate({**metadata, "content": body.strip("\n")})


class FileContentStore(ContentStore):
    """One front-matter file per article under a content directory."""

    def __init__(self, content_dir: Path) -> None:
        self.content_dir = Path(content_dir)
        self.content_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, slug: str) -> Path:
        if not slug or "/" in slug or "\\" in slug or slug.startswith("."):
            raise ValueError(f"Invalid slug: {slug!r}")
        return self.content_dir / f"{slug}{ARTICLE_SUFFIX}"

    def exists(self, slug: str) -> bool:
        # An unreadable file still occupies its slug.
        try:
            return self._path(slug).exists()
        except ValueError:
            return False

    def _read(self, path: Path) -> Article:
        return load_article(path.read_text(encoding="utf-8"))

    def _write(self, article: Article) -> None:
        try:
            atomic_write_text(self._path(article.slug), dump_article(article))
        except OSError as exc:
            raise PersistenceError(f"Could not write article {article.slug}: {exc}") from exc

    def create(self, article: Article) -> Article:
        with locked_path(self.content_dir):
            if self._path(article.slug).exists():
                raise DuplicateSlugError(article.slug)
            self._write(article)
        LOGGER.debug("Wrote article file for %s", article.slug)
        return article

    def get_by_slug(self, slug: str) -> Optional[Article]:
        try:
            path = self._path(slug)
        except ValueError:
            return None
        if not path.exists():
            return None
        try:
            return self._read(path)
        except (OSError, ValueError, yaml.YAMLError):
            LOGGER.exception("Could not read article file %s", path)
            return None

    def all_articles(self) -> List[Article]:
        articles: List[Article] = []
        for path in sorted(self.content_dir.glob(f"*{ARTICLE_SUFFIX}")):
            try:
                articles.append(self._read(path))
            except (OSError, ValueError, yaml.YAMLError):
                LOGGER.exception("Skipping unreadable article file %s", path)
        return _newest_first(articles)

    def save(self, article: Article) -> Article:
        with locked_path(self.content_dir):
            if not self._path(article.slug).exists():
                raise ArticleNotFoundError(article.slug)
            self._write(article)
        return article

    def hard_delete(self, slug: str) -> Article:
        with locked_path(self.content_dir):
            article = self.get_by_slug(slug)
            if article is None:
                raise ArticleNotFoundError(slug)
            try:
                self._path(slug).unlink()
            except OSError as exc:
                raise PersistenceError(f"Could not delete article {slug}: {exc}") from exc
        LOGGER.info("Deleted article file for %s", slug)
        return article

    def rename_category(self, old_name: str, new_name: str) -> int:
        wanted = old_name.strip().lower()
        new_name = new_name.strip()
        if not new_name:
            raise ValueError("new category name must not be empty.")
        with locked_path(self.content_dir):
            matching = [a for a in self.all_articles() if a.category.strip().lower() == wanted]
            written: List[Article] = []
            try:
                for article in matching:
                    self._write(article.model_copy(update={"category": new_name}))
                    written.append(article)
            except PersistenceError:
                LOGGER.error(
                    "Category rename %r -> %r failed after %d of %d articles; rolling back.",
                    old_name,
                    new_name,
                    len(written),
                    len(matching),
                )
                for original in written:
                    try:
                        self._write(original)
                    except PersistenceError:
                        LOGGER.exception(
                            "Could not restore category on %s during rollback", original.slug
                        )
                raise
        LOGGER.info("Renamed category %r -> %r on %d articles", old_name, new_name, len(matching))
        return len(matching)
