"""Data models for the news digest pipeline."""

import math
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def _assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UpstreamArticle(BaseModel):
    """An article as listed by the Guardian content API."""

    id: str = Field(..., description="Guardian content id, unique per source.")
    title: str
    published_at: datetime
    url: str
    section: Optional[str] = None
    pillar_name: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    thumbnail: Optional[str] = None

    @field_validator("published_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


class FAQ(BaseModel):
    question: str
    answer: str


class SummaryResult(BaseModel):
    """Parsed model output for one article."""

    summary: str
    key_points: List[str]
    faqs: List[FAQ]
    heading: str
    category: str


class Article(BaseModel):
    """A stored, AI-rewritten article."""

    slug: str
    title: str
    category: str
    published_at: datetime
    original_url: str
    guardian_id: str
    content: str = Field(..., description="Rewritten summary shown as the article body.")
    key_points: List[str] = Field(default_factory=list)
    faqs: List[FAQ] = Field(default_factory=list)
    thumbnail: Optional[str] = None
    section: Optional[str] = None
    pillar_name: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    @field_validator("published_at", "deleted_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _assume_utc(value)


class ProcessedRecord(BaseModel):
    """Ledger entry linking an upstream id to the slug it produced."""

    guardian_id: str
    slug: str
    processed_at: datetime

    @field_validator("processed_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


class CategoryCount(BaseModel):
    name: str
    count: int


class ArticlePage(BaseModel):
    items: List[Article]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total / self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class CategorySuggestion(BaseModel):
    """A proposed merge of one category label into another."""

    original_category: str
    suggested_category: str
    reason: str = ""
    confidence: Literal["high", "medium", "low"] = "medium"
    article_count: int = 0
