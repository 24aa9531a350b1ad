"""URL slug generation and uniqueness resolution."""

from __future__ import annotations

import re
import secrets
import unicodedata
from datetime import datetime, timezone
from typing import Callable

from .errors import SlugExhaustedError

DEFAULT_MAX_LENGTH = 100
DEFAULT_MAX_COLLISIONS = 1000

_SEPARATORS = re.compile(r"[\s_]+")
_DISALLOWED = re.compile(r"[^a-z0-9-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


def to_slug(title: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """
    Derive a URL-safe slug from a title.

    "Breaking News: India Wins Cricket Match!" -> "breaking-news-india-wins-cricket-match"

    The result only holds lowercase ASCII letters, digits and single hyphens, never
    starts or ends with a hyphen, and is at most `max_length` characters. Degenerate
    titles (all punctuation, non-Latin scripts) yield an empty string.
    """
    ascii_title = (
        unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    )
    slug = _SEPARATORS.sub("-", ascii_title.lower().strip())
    slug = _DISALLOWED.sub("", slug)
    slug = _REPEATED_HYPHENS.sub("-", slug).strip("-")
    return slug[:max_length].rstrip("-")


def fallback_slug(now: datetime | None = None) -> str:
    """Identifier used when a title produces no usable slug."""
    now = now or datetime.now(timezone.utc)
    return f"article-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3)}"


def resolve_unique_slug(
    title: str,
    exists: Callable[[str], bool],
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    max_collisions: int = DEFAULT_MAX_COLLISIONS,
) -> str:
    """
    Return the first free slug among `base`, `base-1`, `base-2`, ...

    Raises SlugExhaustedError once `max_collisions` suffixes are taken.
    """
    base = to_slug(title, max_length) or fallback_slug()
    if not exists(base):
        return base
    for counter in range(1, max_collisions + 1):
        candidate = f"{base}-{counter}"
        if not exists(candidate):
            return candidate
    raise SlugExhaustedError(
        f"No free slug for '{base}' after {max_collisions} numbered attempts."
    )
