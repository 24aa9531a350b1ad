"""Exception types raised by the ingestion pipeline and content stores."""


class NewsDigestError(Exception):
    """Base class for errors raised by this package."""


class FetchError(NewsDigestError):
    """The upstream news API could not be reached or returned a failure."""


class SummarizationError(NewsDigestError):
    """The language model returned no output, non-JSON output, or an invalid shape."""


class PersistenceError(NewsDigestError):
    """A content or ledger write failed."""


class DuplicateSlugError(PersistenceError):
    """An article with the same slug already exists."""

    def __init__(self, slug: str):
        super().__init__(f"An article with slug '{slug}' already exists.")
        self.slug = slug


class SlugExhaustedError(NewsDigestError):
    """No free slug was found within the configured number of suffixes."""


class ArticleNotFoundError(NewsDigestError):
    """No stored article matches the requested slug."""

    def __init__(self, slug: str):
        super().__init__(f"Article '{slug}' not found.")
        self.slug = slug
