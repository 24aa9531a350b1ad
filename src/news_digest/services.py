"""Builds the stores and clients selected by settings for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .config import Settings, get_settings
from .content_store import ContentStore, FileContentStore
from .database import SqlContentStore, SqlLedger, create_db_engine
from .guardian import build_guardian_client
from .ledger import JsonLedger, ProcessedLedger
from .orchestrator import IngestionOrchestrator
from .summarizer import CategoryReviewer, Summarizer

LOGGER = logging.getLogger(__name__)

STORAGE_BACKENDS = ("files", "database")


@dataclass
class Services:
    """
    Storage plus factories for the API-backed components.

    The stores are opened eagerly; the upstream and model clients are built on
    first use so read-only commands work without API keys.
    """

    settings: Settings
    store: ContentStore
    ledger: ProcessedLedger
    summarizer_factory: Optional[Callable[[], Summarizer]] = None
    orchestrator_factory: Optional[Callable[[], IngestionOrchestrator]] = None

    def summarizer(self) -> Summarizer:
        if self.summarizer_factory is not None:
            return self.summarizer_factory()
        return Summarizer.from_settings(self.settings)

    def reviewer(self) -> CategoryReviewer:
        return CategoryReviewer(self.summarizer())

    def orchestrator(self) -> IngestionOrchestrator:
        if self.orchestrator_factory is not None:
            return self.orchestrator_factory()
        settings = self.settings
        return IngestionOrchestrator(
            build_guardian_client(settings),
            self.summarizer(),
            self.store,
            self.ledger,
            item_delay=settings.item_delay_seconds,
            min_body_length=settings.min_body_length,
            slug_max_length=settings.slug_max_length,
            slug_max_collisions=settings.slug_max_collisions,
        )


def build_stores(settings: Settings) -> tuple[ContentStore, ProcessedLedger]:
    backend = settings.storage_backend.strip().lower()
    if backend == "files":
        return FileContentStore(settings.content_dir), JsonLedger(settings.ledger_path)
    if backend == "database":
        engine = create_db_engine(settings.database_url)
        return SqlContentStore(engine), SqlLedger(engine)
    raise ValueError(
        f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}; got {settings.storage_backend!r}."
    )


def build_services(settings: Settings | None = None) -> Services:
    settings = settings or get_settings()
    store, ledger = build_stores(settings)
    LOGGER.debug("Using %s storage backend", settings.storage_backend)
    return Services(settings=settings, store=store, ledger=ledger)
