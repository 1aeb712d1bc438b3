"""Async HTTP client for parallel requests."""
import asyncio
import httpx
from typing import List, Optional, Dict, Any
import logging

from bookhaven.errors import BookNotFoundError, CatalogUnavailableError
from bookhaven.parse import parse_search_response

logger = logging.getLogger(__name__)


class AsyncGoogleBooksClient:
    """Async client for parallel book searches."""

    BASE_URL = "https://www.googleapis.com/books/v1/volumes"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: int = 10,
        max_concurrent: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize async client.

        Args:
            api_key: Optional API key
            timeout: Request timeout
            max_concurrent: Maximum concurrent requests
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.api_key = api_key
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)

        # Create async HTTP client
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def fetch_by_key(self, key: str) -> Dict[str, Any]:
        """Fetch a single volume document."""
        params = {}
        if self.api_key:
            params["key"] = self.api_key
        return await self._get(f"{self.BASE_URL}/{key}", params, lookup_key=key)

    async def search(
        self,
        query: str,
        offset: int = 0,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Search for books asynchronously.

        Args:
            query: Search query
            offset: Pagination offset
            limit: Page size

        Returns:
            Volume documents of the requested page
        """
        params = {
            "q": query,
            "startIndex": offset,
            "maxResults": limit
        }

        if self.api_key:
            params["key"] = self.api_key

        logger.info(f"Async request: {query} (index={offset})")
        response_json = await self._get(self.BASE_URL, params)
        return parse_search_response(response_json)

    async def _get(
        self,
        url: str,
        params: Dict[str, Any],
        lookup_key: Optional[str] = None
    ) -> Dict[str, Any]:
        # Use semaphore to limit concurrency
        async with self.semaphore:
            try:
                response = await self.client.get(url, params=params)
            except httpx.HTTPError as e:
                logger.error(f"Async request failed: {e}")
                raise CatalogUnavailableError(str(e)) from e

        if response.status_code == 404 and lookup_key is not None:
            raise BookNotFoundError(lookup_key)

        if response.status_code != 200:
            logger.warning(f"Status {response.status_code} for {url}")
            raise CatalogUnavailableError(f"HTTP {response.status_code} from {url}")

        try:
            data = response.json()
        except ValueError as e:
            raise CatalogUnavailableError("Malformed JSON response") from e

        if not isinstance(data, dict):
            raise CatalogUnavailableError("Unexpected JSON payload")
        return data

    async def paginated_search(
        self,
        query: str,
        total_results: int = 40,
        results_per_page: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Fetch multiple pages in parallel.

        Pages that fail are logged and left out.

        Args:
            query: Search query
            total_results: Total results to fetch
            results_per_page: Results per page

        Returns:
            Volume documents of all pages, in page order
        """
        num_pages = (total_results + results_per_page - 1) // results_per_page

        tasks = [
            self.search(query, i * results_per_page, results_per_page)
            for i in range(num_pages)
        ]

        pages = await asyncio.gather(*tasks, return_exceptions=True)

        items = []
        for index, page in enumerate(pages):
            if isinstance(page, CatalogUnavailableError):
                logger.warning(f"Page {index + 1}/{num_pages} failed for {query!r}: {page}")
                continue
            if isinstance(page, BaseException):
                raise page
            items.extend(page)
        return items[:total_results]

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
