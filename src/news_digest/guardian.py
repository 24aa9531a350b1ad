"""Client for the Guardian content API search endpoint."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from dateutil import parser as date_parser

from .config import Settings
from .errors import FetchError
from .models import UpstreamArticle

LOGGER = logging.getLogger(__name__)

SHOW_FIELDS = "headline,body,thumbnail,bodyText"

DateLike = date | str | None


def _format_date(value: DateLike) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()[:10]
    return str(value).strip() or None


def _parse_datetime(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, TypeError, OverflowError):
        parsed = date_parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_result(item: Dict[str, Any]) -> UpstreamArticle | None:
    """Map one Guardian search result onto an UpstreamArticle; None if unusable."""
    article_id = item.get("id")
    title = item.get("webTitle")
    if not article_id or not title:
        return None
    fields = item.get("fields") or {}
    return UpstreamArticle(
        id=article_id,
        title=title,
        published_at=_parse_datetime(item.get("webPublicationDate")),
        url=item.get("webUrl") or "",
        section=item.get("sectionName"),
        pillar_name=item.get("pillarName"),
        body_text=fields.get("bodyText"),
        body_html=fields.get("body"),
        thumbnail=fields.get("thumbnail"),
    )


class GuardianClient:
    """Paged search over the Guardian content API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://content.guardianapis.com",
        page_size: int = 200,
        max_pages: int = 50,
        page_delay: float = 0.1,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.max_pages = max_pages
        self.page_delay = page_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    def search_articles(
        self,
        query: str,
        *,
        from_date: DateLike = None,
        to_date: DateLike = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Dict[str, Any]:
        """Fetch one page and return the `response` envelope."""
        params = {
            "api-key": self.api_key,
            "show-fields": SHOW_FIELDS,
            "query-fields": "headline",
            "order-by": "newest",
            "q": query,
            "page-size": str(page_size or self.page_size),
            "page": str(page),
        }
        if (formatted := _format_date(from_date)) is not None:
            params["from-date"] = formatted
        if (formatted := _format_date(to_date)) is not None:
            params["to-date"] = formatted

        try:
            response = self.session.get(
                f"{self.base_url}/search", params=params, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise FetchError(f"Guardian request for page {page} failed: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"Guardian page {page} returned invalid JSON.") from exc

        envelope = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(envelope, dict) or envelope.get("status", "ok") != "ok":
            raise FetchError(f"Guardian page {page} returned an error envelope: {payload}")
        return envelope

    def fetch_all_articles(
        self,
        query: str,
        *,
        from_date: DateLike = None,
        to_date: DateLike = None,
    ) -> List[UpstreamArticle]:
        """
        Collect every page for the query, newest first.

        A failure on the first page raises FetchError. A failure on a later page
        ends paging and returns what was collected so far.
        """
        articles: List[UpstreamArticle] = []
        fetched = 0
        page = 1
        total = None
        total_pages = 1

        while page <= total_pages and page <= self.max_pages:
            try:
                envelope = self.search_articles(
                    query, from_date=from_date, to_date=to_date, page=page
                )
            except FetchError:
                if page == 1:
                    raise
                LOGGER.warning(
                    "Stopping at page %d after a fetch failure; kept %d of %s articles.",
                    page,
                    fetched,
                    total,
                    exc_info=True,
                )
                break

            results = envelope.get("results") or []
            fetched += len(results)
            for item in results:
                try:
                    parsed = parse_result(item)
                except (ValueError, TypeError, OverflowError) as exc:
                    LOGGER.warning(
                        "Skipping unparseable result %r on page %d: %s",
                        item.get("id") if isinstance(item, dict) else item,
                        page,
                        exc,
                    )
                    continue
                if parsed is None:
                    LOGGER.debug("Skipping malformed result: %s", item)
                    continue
                articles.append(parsed)

            total = envelope.get("total", fetched)
            total_pages = envelope.get("pages", page)
            LOGGER.info(
                "Fetched page %d/%d (%d of %d results).", page, total_pages, fetched, total
            )

            if not results or fetched >= total:
                break
            page += 1
            if page <= total_pages and page <= self.max_pages:
                self._sleep(self.page_delay)
        else:
            if page > self.max_pages and fetched < (total or 0):
                LOGGER.warning(
                    "Page cap of %d reached with %d of %d results fetched.",
                    self.max_pages,
                    fetched,
                    total,
                )

        return articles


def build_guardian_client(settings: Settings, **kwargs: Any) -> GuardianClient:
    """Create a GuardianClient from settings; separated for easier testing."""
    if not settings.guardian_api_key:
        raise RuntimeError(
            "GUARDIAN_API_KEY is required. Set it in the environment or .env file."
        )
    return GuardianClient(
        settings.guardian_api_key,
        base_url=settings.guardian_base_url,
        page_size=settings.page_size,
        max_pages=settings.max_pages,
        page_delay=settings.page_delay_seconds,
        timeout=settings.request_timeout_seconds,
        **kwargs,
    )
