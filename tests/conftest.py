"""Shared stubs for catalog tests."""
from datetime import datetime, timedelta, timezone

import pytest

from bookhaven.errors import BookNotFoundError, CatalogUnavailableError
from bookhaven.store import MemoryStore


def volume(book_id, title="A Book", **info):
    """Build a minimal Google Books volume document."""
    volume_info = {"title": title}
    volume_info.update(info)
    return {"id": book_id, "volumeInfo": volume_info}


# Volume info blocks whose fields have the wrong type
MALFORMED_VOLUME_INFO = [
    {"authors": [None]},
    {"publishedDate": 1999},
    {"imageLinks": ["http://x"]},
    {"industryIdentifiers": ["9780000000001"]},
]


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeClient:
    """Catalog client stub that counts calls."""

    def __init__(self):
        self.documents = {}
        self.search_results = []
        self.failure = None
        self.fetch_calls = []
        self.search_calls = []

    def fetch_by_key(self, key):
        self.fetch_calls.append(key)
        if self.failure is not None:
            raise self.failure
        if key not in self.documents:
            raise BookNotFoundError(key)
        return self.documents[key]

    def search(self, query, offset=0, limit=10):
        self.search_calls.append((query, offset, limit))
        if self.failure is not None:
            raise self.failure
        return iter(list(self.search_results))

    def go_down(self):
        self.failure = CatalogUnavailableError("timed out")


class CountingStore(MemoryStore):
    """MemoryStore that records upserts."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.upserts = []

    def upsert_book(self, record):
        self.upserts.append(record.key)
        return super().upsert_book(record)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def store(clock):
    return CountingStore(clock)
