"""Relational content store and ledger backed by SQLAlchemy.

Three tables: `guardian_articles` keeps the raw upstream record,
`article_summaries` holds the rewritten article linked one-to-one to it, and
`processed_articles` is the dedup ledger. When the store and the ledger share
an engine, the article rows and the ledger row are written in one transaction.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship

from .content_store import ContentStore, _paginate
from .errors import ArticleNotFoundError, DuplicateSlugError, PersistenceError
from .ledger import Clock, ProcessedLedger, utc_now
from .models import FAQ, Article, ArticlePage, CategoryCount, ProcessedRecord

LOGGER = logging.getLogger(__name__)

Base = declarative_base()


class GuardianArticleRow(Base):
    __tablename__ = "guardian_articles"

    id = Column(String(255), primary_key=True)
    title = Column(String(500), nullable=False)
    web_url = Column(String(2048), nullable=False)
    section = Column(String(255))
    pillar_name = Column(String(255))
    thumbnail = Column(String(2048))
    published_at = Column(DateTime(timezone=True), nullable=False, index=True)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    summary = relationship(
        "ArticleSummaryRow",
        back_populates="guardian_article",
        uselist=False,
        cascade="all, delete-orphan",
    )


class ArticleSummaryRow(Base):
    __tablename__ = "article_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    guardian_article_id = Column(
        String(255), ForeignKey("guardian_articles.id"), unique=True, nullable=False
    )
    slug = Column(String(255), unique=True, nullable=False, index=True)
    heading = Column(String(500), nullable=False)
    summary = Column(Text, nullable=False)
    tldr = Column(JSON, nullable=False, default=list)
    faqs = Column(JSON, nullable=False, default=list)
    category = Column(String(255), nullable=False, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    guardian_article = relationship("GuardianArticleRow", back_populates="summary")


class ProcessedArticleRow(Base):
    __tablename__ = "processed_articles"

    guardian_id = Column(String(255), primary_key=True)
    slug = Column(String(255), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, index=True)


def create_db_engine(url: str) -> Engine:
    """Create an engine and make sure the tables exist."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return engine


@contextmanager
def _transaction(engine: Engine, action: str) -> Iterator[Session]:
    try:
        with Session(engine, expire_on_commit=False) as session, session.begin():
            yield session
    except (ArticleNotFoundError, DuplicateSlugError):
        raise
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Database error while {action}: {exc}") from exc


def _to_article(row: ArticleSummaryRow) -> Article:
    raw = row.guardian_article
    return Article(
        slug=row.slug,
        title=row.heading,
        category=row.category,
        published_at=raw.published_at,
        original_url=raw.web_url,
        guardian_id=raw.id,
        content=row.summary,
        key_points=list(row.tldr or []),
        faqs=[FAQ.model_validate(faq) for faq in row.faqs or []],
        thumbnail=raw.thumbnail,
        section=raw.section,
        pillar_name=raw.pillar_name,
        is_deleted=bool(row.is_deleted),
        deleted_at=row.deleted_at,
    )


def _summary_query():
    return (
        select(ArticleSummaryRow)
        .join(ArticleSummaryRow.guardian_article)
        .order_by(GuardianArticleRow.published_at.desc(), ArticleSummaryRow.id.desc())
    )


class SqlLedger(ProcessedLedger):
    """Ledger stored in the `processed_articles` table."""

    def __init__(self, engine: Engine, *, clock: Clock = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock()

    def _add(self, session: Session, guardian_id: str, slug: str) -> None:
        if session.get(ProcessedArticleRow, guardian_id) is None:
            session.add(
                ProcessedArticleRow(guardian_id=guardian_id, slug=slug, processed_at=self._clock())
            )

    def is_processed(self, guardian_id: str) -> bool:
        with Session(self.engine) as session:
            return session.get(ProcessedArticleRow, guardian_id) is not None

    def mark_processed(self, guardian_id: str, slug: str) -> None:
        with _transaction(self.engine, "marking processed") as session:
            self._add(session, guardian_id, slug)

    def unmark(self, guardian_id: str) -> bool:
        with _transaction(self.engine, "unmarking processed") as session:
            result = session.execute(
                delete(ProcessedArticleRow).where(ProcessedArticleRow.guardian_id == guardian_id)
            )
            return result.rowcount > 0

    def records(self) -> List[ProcessedRecord]:
        with Session(self.engine) as session:
            rows = session.scalars(
                select(ProcessedArticleRow).order_by(ProcessedArticleRow.processed_at)
            ).all()
            return [
                ProcessedRecord(guardian_id=r.guardian_id, slug=r.slug, processed_at=r.processed_at)
                for r in rows
            ]

    def count(self) -> int:
        with Session(self.engine) as session:
            return session.execute(
                select(func.count()).select_from(ProcessedArticleRow)
            ).scalar_one()

    def cleanup_old_entries(self, days_old: int = 90) -> int:
        cutoff = self._clock() - timedelta(days=days_old)
        # SQLite drops tzinfo on write; compare against a naive cutoff there.
        if self.engine.dialect.name == "sqlite":
            cutoff = cutoff.replace(tzinfo=None)
        with _transaction(self.engine, "cleaning up the ledger") as session:
            result = session.execute(
                delete(ProcessedArticleRow).where(ProcessedArticleRow.processed_at < cutoff)
            )
            removed = result.rowcount
        if removed:
            LOGGER.info("Removed %d ledger rows older than %d days", removed, days_old)
        return removed


class SqlContentStore(ContentStore):
    """Articles stored as raw-fetch rows linked to summary rows."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _insert(self, session: Session, article: Article) -> None:
        taken = session.scalar(
            select(ArticleSummaryRow.id).where(ArticleSummaryRow.slug == article.slug)
        )
        if taken is not None:
            raise DuplicateSlugError(article.slug)
        raw = session.get(GuardianArticleRow, article.guardian_id)
        if raw is None:
            raw = GuardianArticleRow(id=article.guardian_id)
            session.add(raw)
        elif raw.summary is not None:
            raise PersistenceError(
                f"Guardian article {article.guardian_id} already has a summary "
                f"({raw.summary.slug})."
            )
        raw.title = article.title
        raw.web_url = article.original_url
        raw.section = article.section
        raw.pillar_name = article.pillar_name
        raw.thumbnail = article.thumbnail
        raw.published_at = article.published_at
        session.add(
            ArticleSummaryRow(
                guardian_article=raw,
                slug=article.slug,
                heading=article.title,
                summary=article.content,
                tldr=list(article.key_points),
                faqs=[faq.model_dump() for faq in article.faqs],
                category=article.category,
                is_deleted=article.is_deleted,
                deleted_at=article.deleted_at,
            )
        )
        try:
            session.flush()
        except IntegrityError as exc:
            raise PersistenceError(
                f"Could not store article {article.slug} for {article.guardian_id}: {exc.orig}"
            ) from exc

    def create(self, article: Article) -> Article:
        with _transaction(self.engine, f"creating {article.slug}") as session:
            self._insert(session, article)
        return article

    def create_processed(self, article: Article, ledger: ProcessedLedger) -> Article:
        if not isinstance(ledger, SqlLedger) or ledger.engine is not self.engine:
            return super().create_processed(article, ledger)
        with _transaction(self.engine, f"creating {article.slug}") as session:
            self._insert(session, article)
            ledger._add(session, article.guardian_id, article.slug)
        return article

    def _row(self, session: Session, slug: str) -> Optional[ArticleSummaryRow]:
        return session.scalar(select(ArticleSummaryRow).where(ArticleSummaryRow.slug == slug))

    def get_by_slug(self, slug: str) -> Optional[Article]:
        with Session(self.engine) as session:
            row = self._row(session, slug)
            return _to_article(row) if row is not None else None

    def exists(self, slug: str) -> bool:
        with Session(self.engine) as session:
            return self._row(session, slug) is not None

    def all_articles(self) -> List[Article]:
        with Session(self.engine) as session:
            return [_to_article(row) for row in session.scalars(_summary_query()).all()]

    def published_articles(self) -> List[Article]:
        with Session(self.engine) as session:
            rows = session.scalars(
                _summary_query().where(ArticleSummaryRow.is_deleted.is_(False))
            ).all()
            return [_to_article(row) for row in rows]

    def list_published(self, page: int = 1, page_size: int = 20) -> ArticlePage:
        if page < 1 or page_size < 1:
            return _paginate([], page, page_size)
        visible = ArticleSummaryRow.is_deleted.is_(False)
        with Session(self.engine) as session:
            total = session.execute(
                select(func.count()).select_from(ArticleSummaryRow).where(visible)
            ).scalar_one()
            rows = session.scalars(
                _summary_query().where(visible).offset((page - 1) * page_size).limit(page_size)
            ).all()
            items = [_to_article(row) for row in rows]
        return ArticlePage(items=items, total=total, page=page, page_size=page_size)

    def list_categories(self) -> List[CategoryCount]:
        count = func.count(ArticleSummaryRow.id)
        with Session(self.engine) as session:
            rows = session.execute(
                select(ArticleSummaryRow.category, count)
                .where(ArticleSummaryRow.is_deleted.is_(False))
                .group_by(ArticleSummaryRow.category)
                .order_by(count.desc(), func.lower(ArticleSummaryRow.category))
            ).all()
        return [CategoryCount(name=name, count=total) for name, total in rows]

    def save(self, article: Article) -> Article:
        with _transaction(self.engine, f"updating {article.slug}") as session:
            row = self._row(session, article.slug)
            if row is None:
                raise ArticleNotFoundError(article.slug)
            row.heading = article.title
            row.summary = article.content
            row.tldr = list(article.key_points)
            row.faqs = [faq.model_dump() for faq in article.faqs]
            row.category = article.category
            row.is_deleted = article.is_deleted
            row.deleted_at = article.deleted_at
        return article

    def hard_delete(self, slug: str) -> Article:
        with _transaction(self.engine, f"deleting {slug}") as session:
            row = self._row(session, slug)
            if row is None:
                raise ArticleNotFoundError(slug)
            article = _to_article(row)
            session.delete(row.guardian_article)
        LOGGER.info("Deleted article rows for %s", slug)
        return article

    def rename_category(self, old_name: str, new_name: str) -> int:
        new_name = new_name.strip()
        if not new_name:
            raise ValueError("new category name must not be empty.")
        wanted = old_name.strip().lower()
        with _transaction(self.engine, f"renaming category {old_name!r}") as session:
            result = session.execute(
                update(ArticleSummaryRow)
                .where(func.lower(func.trim(ArticleSummaryRow.category)) == wanted)
                .values(category=new_name)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        LOGGER.info("Renamed category %r -> %r on %d articles", old_name, new_name, affected)
        return affected
