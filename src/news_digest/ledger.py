"""Ledger of upstream ids that have already been turned into articles."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List

from .errors import PersistenceError
from .file_lock import atomic_write_text, locked_path
from .models import ProcessedRecord

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProcessedLedger(ABC):
    """Membership store keyed by upstream id; at most one record per id."""

    @abstractmethod
    def is_processed(self, guardian_id: str) -> bool: ...

    @abstractmethod
    def mark_processed(self, guardian_id: str, slug: str) -> None:
        """Record a success; a no-op when the id is already present."""

    @abstractmethod
    def unmark(self, guardian_id: str) -> bool:
        """Forget an id so it can be reprocessed; True if it was present."""

    @abstractmethod
    def records(self) -> List[ProcessedRecord]: ...

    @abstractmethod
    def cleanup_old_entries(self, days_old: int = 90) -> int:
        """Drop records processed more than `days_old` days ago; return how many."""

    def _now(self) -> datetime:
        return utc_now()

    def count(self) -> int:
        return len(self.records())

    def stats(self, now: datetime | None = None) -> Dict[str, int]:
        """Return total plus counts processed within the last week and month."""
        now = now or self._now()
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)
        records = self.records()
        return {
            "total": len(records),
            "recent_week": sum(1 for r in records if _aware(r.processed_at) >= week_ago),
            "recent_month": sum(1 for r in records if _aware(r.processed_at) >= month_ago),
        }


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JsonLedger(ProcessedLedger):
    """JSON-file ledger loaded fully at startup and rewritten on every mutation."""

    def __init__(self, path: Path, *, clock: Clock = utc_now) -> None:
        self.path = Path(path)
        self._clock = clock
        self._data: Dict[str, ProcessedRecord] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return
        try:
            entries = json.loads(raw)
            records = [ProcessedRecord.model_validate(entry) for entry in entries]
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not parse ledger file {self.path}: {exc}") from exc
        for record in records:
            self._data.setdefault(record.guardian_id, record)
        LOGGER.debug("Loaded %d processed ids from %s", len(self._data), self.path)

    def _save(self) -> None:
        payload = [record.model_dump(mode="json") for record in self._data.values()]
        try:
            with locked_path(self.path):
                atomic_write_text(self.path, json.dumps(payload, indent=2, ensure_ascii=False))
        except OSError as exc:
            raise PersistenceError(f"Could not write ledger file {self.path}: {exc}") from exc

    def _now(self) -> datetime:
        return self._clock()

    def is_processed(self, guardian_id: str) -> bool:
        return guardian_id in self._data

    def mark_processed(self, guardian_id: str, slug: str) -> None:
        if guardian_id in self._data:
            return
        self._data[guardian_id] = ProcessedRecord(
            guardian_id=guardian_id, slug=slug, processed_at=self._clock()
        )
        try:
            self._save()
        except PersistenceError:
            del self._data[guardian_id]
            raise

    def unmark(self, guardian_id: str) -> bool:
        record = self._data.pop(guardian_id, None)
        if record is None:
            return False
        try:
            self._save()
        except PersistenceError:
            self._data[guardian_id] = record
            raise
        return True

    def records(self) -> List[ProcessedRecord]:
        return list(self._data.values())

    def cleanup_old_entries(self, days_old: int = 90) -> int:
        cutoff = self._now() - timedelta(days=days_old)
        stale = [
            guardian_id
            for guardian_id, record in self._data.items()
            if _aware(record.processed_at) < cutoff
        ]
        removed = {guardian_id: self._data.pop(guardian_id) for guardian_id in stale}
        if stale:
            try:
                self._save()
            except PersistenceError:
                self._data.update(removed)
                raise
            LOGGER.info("Removed %d ledger entries older than %d days", len(stale), days_old)
        return len(stale)
