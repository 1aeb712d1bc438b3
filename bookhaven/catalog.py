"""Cache-or-fetch access to catalog books."""
import logging
import random
import threading
import weakref
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from bookhaven.errors import BookNotFoundError, CatalogUnavailableError
from bookhaven.models import BookRecord
from bookhaven.parse import normalize
from bookhaven.store import utcnow

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW = timedelta(days=7)

FEATURED_SUBJECTS = ["fiction", "fantasy", "science fiction", "mystery", "romance"]


class CachedCatalog:
    """
    Serves books from the local cache, refreshing them from the catalog API.

    Single-book lookups only go to the API when the cached copy is missing
    or older than ``FRESHNESS_WINDOW``, and fall back to the stale copy when
    the refresh fails. Search results are always written through to the
    cache. Catalog and store failures never escape: callers get a record,
    ``None`` or a (possibly empty) list.

    ``store`` needs ``get_book``, ``upsert_book`` and ``find_by_category``
    (``Database`` or ``MemoryStore``); ``client`` needs ``fetch_by_key`` and
    ``search`` (``GoogleBooksClient``).
    """

    def __init__(self, store, client, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.client = client
        self.clock = clock
        # One refresh lock per key, dropped once nobody holds it
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _is_fresh(self, record: BookRecord) -> bool:
        return record.is_fresh(self.clock(), FRESHNESS_WINDOW)

    def resolve(self, key: str) -> Optional[BookRecord]:
        """
        Return the book for ``key``, or None if it cannot be found anywhere.

        Args:
            key: Google Books volume ID
        """
        cached = self.store.get_book(key)
        if cached is not None and self._is_fresh(cached):
            logger.debug(f"Cache hit: {key}")
            return cached

        with self._lock_for(key):
            # Another caller may have refreshed it while we waited
            current = self.store.get_book(key)
            if current is not None:
                cached = current
                if self._is_fresh(current):
                    logger.debug(f"Refreshed by concurrent lookup: {key}")
                    return current

            logger.info(f"Cache {'stale' if cached else 'miss'}: {key}")
            record = self._refresh(key)

        if record is not None:
            return record

        if cached is not None:
            logger.warning(f"Serving stale cache for {key}")
            return cached

        logger.info(f"Book not found: {key}")
        return None

    def _refresh(self, key: str) -> Optional[BookRecord]:
        try:
            document = self.client.fetch_by_key(key)
        except BookNotFoundError:
            logger.info(f"Catalog has no volume {key}")
            return None
        except CatalogUnavailableError as e:
            logger.warning(f"Catalog unavailable for {key}: {e}")
            return None

        record = normalize(document)
        if record is None:
            logger.warning(f"Invalid catalog document for {key}")
            return None

        return self._store(record)

    def _store(self, record: BookRecord) -> BookRecord:
        stored = self.store.upsert_book(record)
        if stored is None:
            logger.warning(f"Could not cache {record.key}, serving uncached copy")
            return replace(record, refreshed_at=self.clock())
        return stored

    def cache_documents(self, documents: Iterable[Dict[str, Any]]) -> List[BookRecord]:
        """Normalize and upsert a batch of raw volume documents, skipping invalid ones."""
        records = []
        for document in documents:
            record = normalize(document)
            if record is None:
                logger.warning("Skipping invalid catalog document")
                continue
            records.append(self._store(record))
        return records

    def search_and_cache(self, query: str, offset: int = 0, limit: int = 10) -> List[BookRecord]:
        """
        Search the catalog and write every result through to the cache.

        Args:
            query: Search query
            offset: Pagination offset
            limit: Page size

        Returns:
            Records in API ranking order; empty if the search failed
        """
        try:
            documents = self.client.search(query, offset, limit)
        except CatalogUnavailableError as e:
            logger.warning(f"Search failed for {query!r}: {e}")
            return []

        records = self.cache_documents(documents)
        logger.info(f"Cached {len(records)} results for {query!r}")
        return records

    def browse_category(self, category: str, offset: int = 0, limit: int = 12) -> List[BookRecord]:
        """Books in a catalog subject."""
        return self.search_and_cache(f"subject:{category}", offset, limit)

    def featured(self, limit: int = 8, subject: Optional[str] = None) -> List[BookRecord]:
        """Books from a given subject, or a random popular one."""
        subject = subject or random.choice(FEATURED_SUBJECTS)
        return self.browse_category(subject, 0, limit)

    def related(self, record: BookRecord, limit: int = 6) -> List[BookRecord]:
        """
        Other books in the same category as ``record``.

        Cached books come first; the rest is filled from a subject search.
        """
        if not record.category:
            return []

        related = self.store.find_by_category(record.category, exclude_key=record.key, limit=limit)
        seen = {record.key} | {book.key for book in related}

        if len(related) < limit:
            for book in self.browse_category(record.category, 0, limit - len(related)):
                if book.key in seen:
                    continue
                seen.add(book.key)
                related.append(book)
                if len(related) >= limit:
                    break

        return related
