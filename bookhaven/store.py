"""In-process cache store for book records."""
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from bookhaven.models import BookRecord

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """
    Thread-safe keyed store of BookRecords.

    Has the same ``get_book``/``upsert_book`` contract as ``Database`` and is
    used when no PostgreSQL server is configured, and in tests.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, BookRecord] = {}

    def get_book(self, key: str) -> Optional[BookRecord]:
        with self._lock:
            return self._records.get(key)

    def upsert_book(self, record: BookRecord) -> Optional[BookRecord]:
        """Insert or fully replace the record under its key, stamping ``refreshed_at``."""
        with self._lock:
            stored = replace(record, refreshed_at=self.clock())
            self._records[record.key] = stored
        logger.debug(f"Upserted {record.key}")
        return stored

    def find_by_category(self, category: str, exclude_key: Optional[str] = None, limit: int = 6) -> List[BookRecord]:
        with self._lock:
            matches = [
                record for record in self._records.values()
                if record.category == category and record.key != exclude_key
            ]
        return matches[:limit]

    def size(self) -> int:
        with self._lock:
            return len(self._records)
