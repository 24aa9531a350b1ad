from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from news_digest.database import (
    GuardianArticleRow,
    ProcessedArticleRow,
    SqlContentStore,
    SqlLedger,
    create_db_engine,
)
from news_digest.errors import ArticleNotFoundError, DuplicateSlugError, PersistenceError
from news_digest.models import FAQ, Article

BASE_TIME = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def make_article(slug: str, **overrides) -> Article:
    data = {
        "slug": slug,
        "title": f"India headline for {slug}",
        "category": "India Politics",
        "published_at": BASE_TIME,
        "original_url": f"https://www.theguardian.com/{slug}",
        "guardian_id": f"world/{slug}",
        "content": f"Rewritten body for {slug}.",
        "key_points": ["one", "two", "three"],
        "faqs": [FAQ(question=f"Q{i}?", answer=f"A{i}.") for i in range(5)],
        "section": "World news",
    }
    data.update(overrides)
    return Article(**data)


@pytest.fixture
def engine(tmp_path):
    return create_db_engine(f"sqlite:///{tmp_path / 'digest.db'}")


def count_rows(engine, model) -> int:
    with Session(engine) as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_create_and_read_back(engine):
    store = SqlContentStore(engine)
    store.create(make_article("india-story"))

    article = store.get_by_slug("india-story")

    assert article == make_article("india-story")
    assert store.exists("india-story")
    assert store.get_by_slug("missing") is None
    assert count_rows(engine, GuardianArticleRow) == 1


def test_duplicate_slug_is_rejected(engine):
    store = SqlContentStore(engine)
    store.create(make_article("india-story"))
    with pytest.raises(DuplicateSlugError):
        store.create(make_article("india-story", guardian_id="world/other"))


def test_second_summary_for_same_source_is_rejected(engine):
    store = SqlContentStore(engine)
    store.create(make_article("first", guardian_id="world/1"))
    with pytest.raises(PersistenceError):
        store.create(make_article("second", guardian_id="world/1"))
    assert store.get_by_slug("first") is not None


def test_create_processed_writes_article_and_ledger_together(engine):
    store = SqlContentStore(engine)
    ledger = SqlLedger(engine)

    store.create_processed(make_article("india-story"), ledger)

    assert ledger.is_processed("world/india-story")
    assert ledger.records()[0].slug == "india-story"


def test_create_processed_rolls_back_ledger_on_duplicate(engine):
    store = SqlContentStore(engine)
    ledger = SqlLedger(engine)
    store.create(make_article("india-story", guardian_id="world/1"))

    with pytest.raises(DuplicateSlugError):
        store.create_processed(make_article("india-story", guardian_id="world/2"), ledger)
    assert not ledger.is_processed("world/2")


def test_listing_visibility_and_pagination(engine):
    store = SqlContentStore(engine)
    for offset in range(4):
        store.create(
            make_article(f"story-{offset}", published_at=BASE_TIME + timedelta(hours=offset))
        )
    store.set_visibility("story-3", True)

    page = store.list_published(page=1, page_size=2)

    assert [a.slug for a in page.items] == ["story-2", "story-1"]
    assert page.total == 3
    assert page.has_next
    assert [a.slug for a in store.all_articles()][0] == "story-3"
    assert store.get_by_slug("story-3").deleted_at is not None
    assert store.stats(now=BASE_TIME + timedelta(hours=5)) == {
        "total": 4,
        "published": 3,
        "hidden": 1,
        "recent": 3,
    }


def test_categories_and_rename(engine):
    store = SqlContentStore(engine)
    for i in range(5):
        store.create(make_article(f"cricket-{i}", category="Cricket India", is_deleted=i == 4))
    store.create(make_article("economy", category="Economy"))

    assert [(c.name, c.count) for c in store.list_categories()] == [
        ("Cricket India", 4),
        ("Economy", 1),
    ]

    assert store.rename_category("CRICKET INDIA", "Cricket") == 5
    assert {a.category for a in store.all_articles()} == {"Cricket", "Economy"}
    assert len(store.list_by_category("cricket")) == 4


def test_save_and_toggle(engine):
    store = SqlContentStore(engine)
    store.create(make_article("story"))

    assert store.toggle_visibility("story").is_deleted is True
    assert store.get_by_slug("story").is_deleted is True
    with pytest.raises(ArticleNotFoundError):
        store.save(make_article("missing"))


def test_hard_delete_removes_raw_and_summary_rows(engine):
    store = SqlContentStore(engine)
    store.create(make_article("story"))

    removed = store.hard_delete("story")

    assert removed.guardian_id == "world/story"
    assert count_rows(engine, GuardianArticleRow) == 0
    assert store.get_by_slug("story") is None
    with pytest.raises(ArticleNotFoundError):
        store.hard_delete("story")


def test_sql_ledger_lifecycle(engine):
    now = {"value": datetime(2024, 6, 1, tzinfo=timezone.utc)}
    ledger = SqlLedger(engine, clock=lambda: now["value"])

    assert not ledger.is_processed("old")
    ledger.mark_processed("old", "old-slug")
    ledger.mark_processed("old", "ignored")
    now["value"] += timedelta(days=100)
    ledger.mark_processed("new", "new-slug")

    assert ledger.count() == 2
    assert ledger.stats() == {"total": 2, "recent_week": 1, "recent_month": 1}
    assert ledger.cleanup_old_entries(90) == 1
    assert ledger.is_processed("new") and not ledger.is_processed("old")
    assert ledger.unmark("new") is True
    assert ledger.unmark("new") is False
    assert count_rows(engine, ProcessedArticleRow) == 0
