"""Tests for the cache-or-fetch catalog."""
import threading
from datetime import timedelta

import pytest

from bookhaven.catalog import CachedCatalog, FRESHNESS_WINDOW, FEATURED_SUBJECTS
from bookhaven.errors import CatalogUnavailableError
from bookhaven.models import BookRecord
from conftest import MALFORMED_VOLUME_INFO, volume


def make_catalog(store, client, clock):
    return CachedCatalog(store, client, clock=clock)


def test_freshness_window_is_seven_days():
    assert FRESHNESS_WINDOW == timedelta(days=7)


def test_cold_miss_fetches_and_caches(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune", authors=["Frank Herbert"])
    catalog = make_catalog(store, client, clock)

    book = catalog.resolve("k1")

    assert book.title == "Dune"
    assert book.refreshed_at == clock.now
    assert client.fetch_calls == ["k1"]
    assert store.get_book("k1") == book


def test_fresh_record_skips_network(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    catalog.resolve("k1")

    clock.advance(days=6, hours=23)
    book = catalog.resolve("k1")

    assert book.title == "Dune"
    assert client.fetch_calls == ["k1"]


def test_stale_record_is_refreshed_once(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    catalog.resolve("k1")

    client.documents["k1"] = volume("k1", "Dune (Revised)")
    clock.advance(days=7)
    book = catalog.resolve("k1")

    assert client.fetch_calls == ["k1", "k1"]
    assert book.title == "Dune (Revised)"
    assert book.refreshed_at == clock.now
    assert store.size() == 1


def test_stale_record_served_when_refresh_fails(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    original = catalog.resolve("k1")

    clock.advance(days=30)
    client.go_down()
    book = catalog.resolve("k1")

    assert book == original
    assert len(client.fetch_calls) == 2


def test_stale_record_served_when_upstream_reports_missing(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    original = catalog.resolve("k1")

    del client.documents["k1"]
    clock.advance(days=8)

    assert catalog.resolve("k1") == original


def test_stale_record_served_when_document_invalid(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    original = catalog.resolve("k1")

    client.documents["k1"] = {"id": "k1"}
    clock.advance(days=8)

    assert catalog.resolve("k1") == original
    assert store.upserts == ["k1"]


def test_cold_miss_with_unavailable_catalog_is_not_found(store, client, clock):
    client.go_down()
    catalog = make_catalog(store, client, clock)

    assert catalog.resolve("missing") is None
    assert store.size() == 0


def test_cold_miss_with_unknown_key_is_not_found(store, client, clock):
    catalog = make_catalog(store, client, clock)

    assert catalog.resolve("missing") is None


def test_failed_upsert_still_returns_fresh_record(client, clock):
    class BrokenStore:
        def get_book(self, key):
            return None

        def upsert_book(self, record):
            return None

    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(BrokenStore(), client, clock)

    book = catalog.resolve("k1")

    assert book.title == "Dune"
    assert book.refreshed_at == clock.now


def test_search_always_upserts(store, client, clock):
    client.search_results = [volume("k1", "Dune"), volume("k2", "Emma")]
    catalog = make_catalog(store, client, clock)

    first = catalog.search_and_cache("classics", 0, 2)
    second = catalog.search_and_cache("classics", 0, 2)

    assert [book.key for book in first] == ["k1", "k2"]
    assert [book.key for book in second] == ["k1", "k2"]
    assert store.upserts == ["k1", "k2", "k1", "k2"]
    assert client.search_calls == [("classics", 0, 2), ("classics", 0, 2)]


def test_search_refreshes_cached_record(store, client, clock):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    catalog.resolve("k1")

    clock.advance(hours=1)
    client.search_results = [volume("k1", "Dune Messiah")]
    catalog.search_and_cache("herbert")

    cached = store.get_book("k1")
    assert cached.title == "Dune Messiah"
    assert cached.refreshed_at == clock.now


def test_search_skips_invalid_documents(store, client, clock):
    client.search_results = [{"volumeInfo": {}}, volume("k2", "Emma")]
    catalog = make_catalog(store, client, clock)

    books = catalog.search_and_cache("emma")

    assert [book.key for book in books] == ["k2"]


def test_search_failure_returns_empty_list(store, client, clock):
    client.go_down()
    catalog = make_catalog(store, client, clock)

    assert catalog.search_and_cache("anything") == []


def test_browse_and_featured_use_subject_queries(store, client, clock):
    catalog = make_catalog(store, client, clock)

    catalog.browse_category("fantasy", 12, 12)
    catalog.featured(limit=8, subject="mystery")
    catalog.featured()

    assert client.search_calls[0] == ("subject:fantasy", 12, 12)
    assert client.search_calls[1] == ("subject:mystery", 0, 8)
    query, offset, limit = client.search_calls[2]
    assert query[len("subject:"):] in FEATURED_SUBJECTS
    assert (offset, limit) == (0, 8)


def test_related_prefers_cache_then_searches(store, client, clock):
    catalog = make_catalog(store, client, clock)
    catalog.cache_documents([
        volume("k1", "Dune", categories=["Fiction"]),
        volume("k2", "Emma", categories=["Fiction"]),
        volume("k3", "SICP", categories=["Computers"]),
    ])
    client.search_results = [
        volume("k1", "Dune", categories=["Fiction"]),
        volume("k2", "Emma", categories=["Fiction"]),
        volume("k4", "Ulysses", categories=["Fiction"]),
        volume("k5", "Beloved", categories=["Fiction"]),
    ]

    related = catalog.related(store.get_book("k1"), limit=3)

    assert [book.key for book in related] == ["k2", "k4", "k5"]
    assert client.search_calls == [("subject:Fiction", 0, 2)]


def test_related_without_category(store, client, clock):
    catalog = make_catalog(store, client, clock)

    assert catalog.related(BookRecord("k1", "T", "A")) == []
    assert client.search_calls == []


def test_concurrent_lookups_fetch_once(store, clock):
    release = threading.Event()

    class SlowClient:
        calls = 0

        def fetch_by_key(self, key):
            SlowClient.calls += 1
            release.wait(timeout=5)
            return volume(key, "Slow Book")

    catalog = make_catalog(store, SlowClient(), clock)
    results = []

    threads = [threading.Thread(target=lambda: results.append(catalog.resolve("k1"))) for _ in range(4)]
    for thread in threads:
        thread.start()
    release.set()
    for thread in threads:
        thread.join()

    assert SlowClient.calls == 1
    assert [book.title for book in results] == ["Slow Book"] * 4


def test_unavailable_error_type_is_absorbed(store, clock):
    class FailingClient:
        def fetch_by_key(self, key):
            raise CatalogUnavailableError("HTTP 503")

        def search(self, query, offset=0, limit=10):
            raise CatalogUnavailableError("HTTP 503")

    catalog = make_catalog(store, FailingClient(), clock)

    assert catalog.resolve("k1") is None
    assert catalog.search_and_cache("q") == []


@pytest.mark.parametrize("volume_info", MALFORMED_VOLUME_INFO)
def test_stale_record_served_when_fields_malformed(store, client, clock, volume_info):
    client.documents["k1"] = volume("k1", "Dune")
    catalog = make_catalog(store, client, clock)
    original = catalog.resolve("k1")

    client.documents["k1"] = {"id": "k1", "volumeInfo": volume_info}
    clock.advance(days=8)

    assert catalog.resolve("k1") == original
    assert store.upserts == ["k1"]


@pytest.mark.parametrize("volume_info", MALFORMED_VOLUME_INFO)
def test_search_keeps_valid_neighbours_of_malformed_document(store, client, clock, volume_info):
    client.search_results = [{"id": "bad", "volumeInfo": volume_info}, volume("k2", "Emma")]
    catalog = make_catalog(store, client, clock)

    books = catalog.search_and_cache("emma")

    assert [book.key for book in books] == ["k2"]
    assert store.upserts == ["k2"]
    assert store.get_book("bad") is None
