"""FastAPI admin and read API over the configured content store."""

from __future__ import annotations

import dataclasses
import logging
import os
from datetime import date
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .admin import analyze_categories, collect_stats, delete_article, merge_categories
from .errors import ArticleNotFoundError, FetchError
from .models import Article, ArticlePage
from .services import Services, build_services

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="News Digest")


def _add_cors(app: FastAPI) -> None:
    """Allow the admin frontend to call the API from another origin."""
    allow_all = os.getenv("CORS_ALLOW_ALL", "true").lower() == "true"
    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    allow_credentials = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    if allow_all or not origins:
        origins = ["*"]
    if origins == ["*"] and allow_credentials:
        # Starlette/FastAPI disallow wildcard origins when credentials are enabled.
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_add_cors(app)


@lru_cache
def get_services() -> Services:
    """Process-wide services; tests swap this out via app.dependency_overrides."""
    return build_services()


class ProcessArticlesRequest(BaseModel):
    from_date: date = Field(..., alias="fromDate")
    to_date: date = Field(..., alias="toDate")
    query: Optional[str] = None

    model_config = {"populate_by_name": True}


class CategoryMerge(BaseModel):
    from_category: str = Field(..., alias="from")
    to_category: str = Field(..., alias="to")

    model_config = {"populate_by_name": True}


class MergeCategoriesRequest(BaseModel):
    merges: List[CategoryMerge] = Field(..., min_length=1)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ArticleNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, FetchError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    LOGGER.exception("Request failed")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _article_body(article: Article) -> Dict[str, Any]:
    return article.model_dump(mode="json")


def _page_body(page: ArticlePage) -> Dict[str, Any]:
    return {
        "articles": [_article_body(a) for a in page.items],
        "pagination": {
            "page": page.page,
            "limit": page.page_size,
            "total": page.total,
            "total_pages": page.total_pages,
            "has_next": page.has_next,
            "has_prev": page.has_prev,
        },
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/admin/process-articles")
def process_articles(
    payload: ProcessArticlesRequest, services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Run one ingestion batch synchronously and return its statistics.

    Upstream failures return 502; per-article failures are reported in the body.
    """
    if payload.from_date > payload.to_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="fromDate must not be after toDate.",
        )
    try:
        orchestrator = services.orchestrator()
        stats = orchestrator.run(
            payload.query or services.settings.default_query,
            from_date=payload.from_date,
            to_date=payload.to_date,
        )
    except Exception as exc:
        raise _http_error(exc) from exc
    return {"success": True, "stats": dataclasses.asdict(stats)}


@app.get("/admin/articles")
def admin_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    show_deleted: bool = False,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    result = services.store.list_articles(
        page, limit, search=search, include_deleted=show_deleted
    )
    return _page_body(result)


@app.patch("/admin/articles/{slug}/toggle-delete")
def toggle_article(slug: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        article = services.store.toggle_visibility(slug)
    except Exception as exc:
        raise _http_error(exc) from exc
    return {"success": True, "article": _article_body(article)}


@app.delete("/admin/articles/{slug}")
def remove_article(slug: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        article = delete_article(services.store, services.ledger, slug)
    except Exception as exc:
        raise _http_error(exc) from exc
    return {"success": True, "slug": article.slug, "guardian_id": article.guardian_id}


@app.get("/admin/stats")
def admin_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return collect_stats(services.store, services.ledger)


@app.post("/admin/categories/analyze")
def analyze(services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        suggestions = analyze_categories(services.store, services.reviewer())
    except Exception as exc:
        raise _http_error(exc) from exc
    return {
        "suggestions": [s.model_dump() for s in suggestions],
        "categories": [c.model_dump() for c in services.store.list_categories()],
    }


@app.post("/admin/categories/merge")
def merge(
    payload: MergeCategoriesRequest, services: Services = Depends(get_services)
) -> Dict[str, Any]:
    report = merge_categories(
        services.store, [(m.from_category, m.to_category) for m in payload.merges]
    )
    return {"success": True, **dataclasses.asdict(report)}


@app.get("/articles")
def list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return _page_body(services.store.list_published(page, limit))


@app.get("/articles/{slug}")
def get_article(slug: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    article = services.store.get_by_slug(slug)
    if article is None or article.is_deleted:
        raise _http_error(ArticleNotFoundError(slug))
    return _article_body(article)


@app.get("/categories")
def list_categories(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return [c.model_dump() for c in services.store.list_categories()]


@app.get("/categories/{name}")
def category_articles(name: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    articles = services.store.list_by_category(name)
    if not articles:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Category '{name}' not found."
        )
    return {"category": articles[0].category, "articles": [_article_body(a) for a in articles]}


if __name__ == "__main__":
    import uvicorn

    from .config import get_settings
    from .logging_setup import configure_logging

    configure_logging(get_settings().log_level)
    uvicorn.run(
        "news_digest.server:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=os.getenv("API_RELOAD", "false").lower() == "true",
    )
