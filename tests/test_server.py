import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from news_digest.config import Settings
from news_digest.content_store import FileContentStore
from news_digest.errors import FetchError
from news_digest.ledger import JsonLedger
from news_digest.models import FAQ, Article, SummaryResult, UpstreamArticle
from news_digest.orchestrator import IngestionOrchestrator
from news_digest.server import app, get_services
from news_digest.services import Services
from news_digest.summarizer import Summarizer

BASE_TIME = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def make_article(slug: str, category: str = "India Politics", **overrides) -> Article:
    data = {
        "slug": slug,
        "title": f"India headline {slug}",
        "category": category,
        "published_at": BASE_TIME,
        "original_url": f"https://www.theguardian.com/{slug}",
        "guardian_id": f"world/{slug}",
        "content": f"Body of {slug}.",
        "key_points": ["one", "two", "three"],
        "faqs": [FAQ(question=f"Q{i}?", answer=f"A{i}.") for i in range(5)],
    }
    data.update(overrides)
    return Article(**data)


class FakeFetcher:
    def __init__(self, articles=(), error=None):
        self.articles = list(articles)
        self.error = error
        self.calls = []

    def fetch_all_articles(self, query, *, from_date=None, to_date=None):
        self.calls.append((query, from_date, to_date))
        if self.error:
            raise self.error
        return self.articles


class FakeSummarizer:
    def summarize(self, body_text):
        return SummaryResult(
            summary="Rewritten.",
            key_points=["one", "two", "three"],
            faqs=[FAQ(question=f"Q{i}?", answer=f"A{i}.") for i in range(5)],
            heading="India Signs Climate Pact",
            category="India Environment",
        )


class DummyResponses:
    def __init__(self, output):
        self.output = output

    def create(self, **kwargs):
        return SimpleNamespace(output_text=self.output, status="completed", error=None)


def make_services(tmp_path, fetcher=None) -> Services:
    store = FileContentStore(tmp_path / "articles")
    ledger = JsonLedger(tmp_path / "processed.json")
    fetcher = fetcher or FakeFetcher()
    review = json.dumps(
        {
            "suggestions": [
                {
                    "originalCategory": "Cricket India",
                    "suggestedCategory": "Cricket",
                    "reason": "Same topic.",
                    "confidence": "high",
                }
            ]
        }
    )
    return Services(
        settings=Settings(_env_file=None),
        store=store,
        ledger=ledger,
        summarizer_factory=lambda: Summarizer(SimpleNamespace(responses=DummyResponses(review))),
        orchestrator_factory=lambda: IngestionOrchestrator(
            fetcher, FakeSummarizer(), store, ledger, sleep=lambda seconds: None
        ),
    )


@pytest.fixture
def services(tmp_path):
    services = make_services(tmp_path)
    app.dependency_overrides[get_services] = lambda: services
    yield services
    app.dependency_overrides.clear()


@pytest.fixture
def client(services):
    return TestClient(app)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_cors_wildcard_disables_credentials():
    cors = next(m for m in app.user_middleware if m.cls.__name__ == "CORSMiddleware")
    assert cors.kwargs["allow_origins"] == ["*"]
    assert cors.kwargs["allow_credentials"] is False


def test_admin_articles_paginates_and_searches(client, services):
    for i in range(3):
        services.store.create(make_article(f"story-{i}", published_at=BASE_TIME + timedelta(hours=i)))
    services.store.create(make_article("hidden-rupee", is_deleted=True, content="Rupee slides."))

    first = client.get("/admin/articles", params={"limit": 2}).json()
    assert [a["slug"] for a in first["articles"]] == ["story-2", "story-1"]
    assert first["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 3,
        "total_pages": 2,
        "has_next": True,
        "has_prev": False,
    }

    with_hidden = client.get("/admin/articles", params={"show_deleted": True}).json()
    assert with_hidden["pagination"]["total"] == 4

    found = client.get(
        "/admin/articles", params={"search": "rupee", "show_deleted": True}
    ).json()
    assert [a["slug"] for a in found["articles"]] == ["hidden-rupee"]

    assert client.get("/admin/articles", params={"page": 0}).status_code == 422


def test_toggle_delete_hides_from_public_api(client, services):
    services.store.create(make_article("story"))

    resp = client.patch("/admin/articles/story/toggle-delete")

    assert resp.status_code == 200
    assert resp.json()["article"]["is_deleted"] is True
    assert client.get("/articles/story").status_code == 404
    assert client.get("/articles").json()["articles"] == []

    client.patch("/admin/articles/story/toggle-delete")
    assert client.get("/articles/story").json()["slug"] == "story"


def test_toggle_missing_article_returns_404(client):
    assert client.patch("/admin/articles/missing/toggle-delete").status_code == 404


def test_delete_article_unmarks_ledger(client, services):
    services.store.create_processed(make_article("story"), services.ledger)

    resp = client.delete("/admin/articles/story")

    assert resp.status_code == 200
    assert resp.json()["guardian_id"] == "world/story"
    assert not services.ledger.is_processed("world/story")
    assert client.delete("/admin/articles/story").status_code == 404


def test_stats(client, services):
    services.store.create_processed(make_article("a"), services.ledger)
    services.store.create(make_article("b", is_deleted=True))

    body = client.get("/admin/stats").json()

    assert body["articles"]["total"] == 2
    assert body["articles"]["published"] == 1
    assert body["processed"]["total"] == 1


def test_public_categories(client, services):
    services.store.create(make_article("a", category="Cricket"))
    services.store.create(make_article("b", category="Cricket"))
    services.store.create(make_article("c", category="Economy"))

    assert client.get("/categories").json() == [
        {"name": "Cricket", "count": 2},
        {"name": "Economy", "count": 1},
    ]
    body = client.get("/categories/cricket").json()
    assert body["category"] == "Cricket"
    assert {a["slug"] for a in body["articles"]} == {"a", "b"}
    assert client.get("/categories/tennis").status_code == 404


def test_merge_categories(client, services):
    for i in range(5):
        services.store.create(make_article(f"c-{i}", category="Cricket India"))

    resp = client.post(
        "/admin/categories/merge",
        json={"merges": [{"from": "Cricket India", "to": "Cricket"}]},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["merged_count"] == 1
    assert body["articles_updated"] == 5
    assert {a.category for a in services.store.all_articles()} == {"Cricket"}


def test_analyze_categories(client, services):
    services.store.create(make_article("a", category="Cricket"))
    services.store.create(make_article("b", category="Cricket India"))

    body = client.post("/admin/categories/analyze").json()

    assert body["suggestions"][0]["original_category"] == "Cricket India"
    assert body["suggestions"][0]["suggested_category"] == "Cricket"
    assert body["suggestions"][0]["article_count"] == 1


def test_process_articles_requires_dates(client):
    assert client.post("/admin/process-articles", json={"fromDate": "2024-05-01"}).status_code == 422
    resp = client.post(
        "/admin/process-articles", json={"fromDate": "2024-05-03", "toDate": "2024-05-01"}
    )
    assert resp.status_code == 400


def test_process_articles_runs_batch(tmp_path):
    fetcher = FakeFetcher(
        [
            UpstreamArticle(
                id="world/2024/may/01/climate",
                title="Climate pact",
                published_at=BASE_TIME,
                url="https://www.theguardian.com/world/climate",
                body_text="India " + "committed to new emissions targets at the summit. " * 5,
            )
        ]
    )
    services = make_services(tmp_path, fetcher)
    app.dependency_overrides[get_services] = lambda: services
    try:
        resp = TestClient(app).post(
            "/admin/process-articles",
            json={"fromDate": "2024-05-01", "toDate": "2024-05-02", "query": "India climate"},
        )
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 200
    stats = resp.json()["stats"]
    assert stats["newly_processed"] == 1
    assert stats["stage"] == "completed"
    assert fetcher.calls[0][0] == "India climate"
    assert services.store.exists("india-signs-climate-pact")


def test_process_articles_maps_fetch_failure_to_502(tmp_path):
    services = make_services(tmp_path, FakeFetcher(error=FetchError("Guardian returned 503")))
    app.dependency_overrides[get_services] = lambda: services
    try:
        resp = TestClient(app).post(
            "/admin/process-articles", json={"fromDate": "2024-05-01", "toDate": "2024-05-02"}
        )
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 502
    assert "503" in resp.json()["detail"]
