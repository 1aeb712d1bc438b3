"""HTTP client for the Google Books API."""
import requests
from typing import Optional, Dict, Any, Iterator
import logging

from bookhaven.errors import BookNotFoundError, CatalogUnavailableError
from bookhaven.parse import parse_search_response

logger = logging.getLogger(__name__)


class GoogleBooksClient:
    """
    Read-only client for Google Books volumes.

    Every call makes a single request. Failures are raised as
    ``CatalogUnavailableError`` (or ``BookNotFoundError`` for a 404 on a
    volume lookup); deciding what to do about them is left to the caller.
    """

    BASE_URL = "https://www.googleapis.com/books/v1/volumes"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize Google Books API client.

        Args:
            api_key: Optional API key (increases rate limits)
            timeout: Request timeout in seconds
            session: Session to reuse (a new one is created if omitted)
        """
        self.api_key = api_key
        self.timeout = timeout

        # Create session for connection pooling
        self.session = session or requests.Session()

    def fetch_by_key(self, key: str) -> Dict[str, Any]:
        """
        Fetch a single volume document.

        Args:
            key: Google Books volume ID

        Returns:
            Volume document JSON

        Raises:
            BookNotFoundError: The API has no volume with this ID
            CatalogUnavailableError: Any other failure
        """
        params = {}
        if self.api_key:
            params["key"] = self.api_key

        return self._make_request(f"{self.BASE_URL}/{key}", params, lookup_key=key)

    def search(
        self,
        query: str,
        offset: int = 0,
        limit: int = 10
    ) -> Iterator[Dict[str, Any]]:
        """
        Search for books.

        Args:
            query: Search query string
            offset: Pagination offset, sent as ``startIndex``
            limit: Page size, sent as ``maxResults``

        Returns:
            Iterator over the volume documents in API ranking order

        Raises:
            CatalogUnavailableError: The search request failed
        """
        params = {
            "q": query,
            "startIndex": offset,
            "maxResults": limit
        }

        if self.api_key:
            params["key"] = self.api_key

        response_json = self._make_request(self.BASE_URL, params)
        return iter(parse_search_response(response_json))

    def _make_request(
        self,
        url: str,
        params: Dict[str, Any],
        lookup_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Make one HTTP GET request and decode its JSON body.

        Args:
            url: Request URL
            params: Query parameters
            lookup_key: Volume ID when this is a single-volume lookup

        Returns:
            Response JSON
        """
        try:
            logger.info(f"Request: {url}")
            response = self.session.get(
                url,
                params=params,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            logger.warning(f"Timeout after {self.timeout}s: {url}")
            raise CatalogUnavailableError(f"Request timed out: {url}") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"Connection error: {e}")
            raise CatalogUnavailableError(f"Request failed: {e}") from e

        if response.status_code == 404 and lookup_key is not None:
            logger.info(f"Volume not found: {lookup_key}")
            raise BookNotFoundError(lookup_key)

        if response.status_code == 429:
            logger.warning("Rate limited (429)")
            raise CatalogUnavailableError("Rate limited by Google Books")

        if response.status_code != 200:
            logger.error(f"Unexpected status ({response.status_code}): {response.text[:200]}")
            raise CatalogUnavailableError(f"HTTP {response.status_code} from {url}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Malformed JSON from {url}")
            raise CatalogUnavailableError("Malformed JSON response") from e

        if not isinstance(data, dict):
            raise CatalogUnavailableError("Unexpected JSON payload")

        logger.info(f"Success: {response.status_code}")
        return data

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
