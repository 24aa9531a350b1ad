"""Configuration helpers for the news digest pipeline."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    guardian_api_key: str | None = Field(None, alias="GUARDIAN_API_KEY")
    guardian_base_url: str = "https://content.guardianapis.com"
    default_query: str = Field("India", description="Headline search query.")
    page_size: int = Field(200, description="Results per upstream page (API maximum).")
    max_pages: int = Field(
        50, description="Hard cap on pages fetched per run, guards against runaway paging."
    )
    page_delay_seconds: float = 0.1
    request_timeout_seconds: float = 30.0
    item_delay_seconds: float = Field(
        1.0, description="Pause between summarization calls to stay under rate limits."
    )
    min_body_length: int = Field(
        100,
        description="Articles whose plain-text body is this short or shorter are skipped.",
    )
    summarizer_model: str = "gpt-4o"
    temperature: float = Field(0.7, description="Generation temperature.")
    max_tokens: int = Field(
        2000, description="Max tokens for each summary response; 0 removes the cap."
    )
    storage_backend: str = Field("files", description="'files' or 'database'.")
    content_dir: Path = Path("content/articles")
    ledger_path: Path = Path("content/processed-articles.json")
    database_url: str = "sqlite:///news_digest.db"
    slug_max_length: int = 100
    slug_max_collisions: int = 1000
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Return a settings instance built from the current environment."""
    return Settings()
