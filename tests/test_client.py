"""Tests for the sync and async Google Books clients."""
import asyncio
from unittest.mock import MagicMock

import httpx
import pytest
import requests

from bookhaven.async_client import AsyncGoogleBooksClient
from bookhaven.client import GoogleBooksClient
from bookhaven.errors import BookNotFoundError, CatalogUnavailableError


def make_client(status_code=200, payload=None, json_error=None, api_key=None):
    session = MagicMock()
    response = MagicMock()
    response.status_code = status_code
    response.text = "body"
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    session.get.return_value = response
    return GoogleBooksClient(api_key=api_key, timeout=3, session=session), session


def test_fetch_by_key_returns_document():
    client, session = make_client(payload={"id": "k1", "volumeInfo": {}})

    assert client.fetch_by_key("k1") == {"id": "k1", "volumeInfo": {}}
    url = session.get.call_args[0][0]
    assert url == "https://www.googleapis.com/books/v1/volumes/k1"
    assert session.get.call_args[1]["timeout"] == 3


def test_fetch_by_key_404_is_not_found():
    client, _ = make_client(status_code=404)

    with pytest.raises(BookNotFoundError):
        client.fetch_by_key("missing")


@pytest.mark.parametrize("status_code", [429, 500, 503, 403])
def test_error_statuses_are_unavailable(status_code):
    client, session = make_client(status_code=status_code)

    with pytest.raises(CatalogUnavailableError):
        client.fetch_by_key("k1")
    # No retries
    assert session.get.call_count == 1


def test_timeout_is_unavailable():
    client, session = make_client()
    session.get.side_effect = requests.exceptions.Timeout()

    with pytest.raises(CatalogUnavailableError):
        client.fetch_by_key("k1")


def test_malformed_json_is_unavailable():
    client, _ = make_client(json_error=ValueError("bad json"))

    with pytest.raises(CatalogUnavailableError):
        client.search("dune")


def test_search_forwards_paging_verbatim():
    items = [{"id": str(i), "volumeInfo": {}} for i in range(3)]
    client, session = make_client(payload={"items": items}, api_key="secret")

    results = client.search("dune", offset=80, limit=50)

    params = session.get.call_args[1]["params"]
    assert params == {"q": "dune", "startIndex": 80, "maxResults": 50, "key": "secret"}
    assert [item["id"] for item in results] == ["0", "1", "2"]
    # Results are a one-shot iterator
    assert list(results) == []


def test_search_without_items_is_empty():
    client, _ = make_client(payload={"kind": "books#volumes", "totalItems": 0})

    assert list(client.search("zzzz")) == []


def _async_client(handler):
    return AsyncGoogleBooksClient(timeout=3, max_concurrent=2, transport=httpx.MockTransport(handler))


def test_async_paginated_search_keeps_page_order():
    def handler(request):
        start = int(request.url.params["startIndex"])
        size = int(request.url.params["maxResults"])
        items = [{"id": str(i), "volumeInfo": {}} for i in range(start, start + size)]
        return httpx.Response(200, json={"items": items})

    async def run():
        async with _async_client(handler) as client:
            return await client.paginated_search("dune", total_results=25, results_per_page=10)

    items = asyncio.run(run())

    assert [item["id"] for item in items] == [str(i) for i in range(25)]


def test_async_paginated_search_drops_failed_pages():
    def handler(request):
        start = int(request.url.params["startIndex"])
        if start == 10:
            return httpx.Response(503)
        return httpx.Response(200, json={"items": [{"id": str(start), "volumeInfo": {}}]})

    async def run():
        async with _async_client(handler) as client:
            return await client.paginated_search("dune", total_results=30, results_per_page=10)

    items = asyncio.run(run())

    assert [item["id"] for item in items] == ["0", "20"]


def test_async_fetch_by_key_not_found():
    async def run():
        async with _async_client(lambda request: httpx.Response(404)) as client:
            await client.fetch_by_key("missing")

    with pytest.raises(BookNotFoundError):
        asyncio.run(run())
