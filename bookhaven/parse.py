"""Normalize Google Books volume documents into cached book records."""
import logging
from typing import Dict, Any, List, Optional, Tuple
from bookhaven.models import BookRecord

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"
AUTHOR_SEPARATOR = ", "


def normalize_publication_date(published_date: Optional[str]) -> Optional[str]:
    """
    Pad or trim an upstream publication date to ``YYYY-MM-DD``.

    Year-only and year-month values are moved to the first day of the
    period; longer values keep their first ten characters. Any other
    length is returned unchanged.

    Args:
        published_date: Raw ``publishedDate`` value

    Returns:
        Normalized date string or None if absent
    """
    if not published_date:
        return None

    if len(published_date) == 4:
        return published_date + "-01-01"
    if len(published_date) == 7:
        return published_date + "-01"
    if len(published_date) > 10:
        return published_date[:10]
    return published_date


def extract_isbns(identifiers: List[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    """
    Pick the ISBN-10 and ISBN-13 out of ``industryIdentifiers``.

    The list is scanned once; when a type repeats, the last one wins.

    Returns:
        (isbn10, isbn13) tuple, either may be None
    """
    isbn10 = None
    isbn13 = None

    for identifier in identifiers or []:
        id_type = identifier.get("type")
        if id_type == "ISBN_10":
            isbn10 = identifier.get("identifier")
        elif id_type == "ISBN_13":
            isbn13 = identifier.get("identifier")

    return isbn10, isbn13


def secure_cover_url(url: Optional[str]) -> Optional[str]:
    """Rewrite a plain ``http://`` cover link to ``https://``."""
    if not url:
        return None
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def _page_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value >= 0 else None


def normalize(item: Dict[str, Any]) -> Optional[BookRecord]:
    """
    Convert a single volume document into a BookRecord.

    Args:
        item: Volume document from the Google Books API

    Returns:
        BookRecord (without ``refreshed_at``) or None if the document is invalid
    """
    if not isinstance(item, dict):
        return None

    book_key = item.get("id")
    volume_info = item.get("volumeInfo")
    if not book_key or not isinstance(volume_info, dict):
        return None

    try:
        return _build_record(str(book_key), volume_info)
    except (TypeError, AttributeError, KeyError, IndexError) as e:
        # Log but don't crash - APIs can be unpredictable
        logger.warning(f"Failed to normalize volume {book_key}: {e}")
        return None


def _build_record(book_key: str, volume_info: Dict[str, Any]) -> BookRecord:
    authors = volume_info.get("authors")
    author = AUTHOR_SEPARATOR.join(authors) if authors else UNKNOWN_AUTHOR

    image_links = volume_info.get("imageLinks") or {}
    isbn10, isbn13 = extract_isbns(volume_info.get("industryIdentifiers"))

    categories = volume_info.get("categories")
    category = categories[0] if categories else None

    return BookRecord(
        key=book_key,
        title=volume_info.get("title") or UNKNOWN_TITLE,
        author=author,
        description=volume_info.get("description") or "",
        cover_image_url=secure_cover_url(image_links.get("thumbnail")),
        publisher=volume_info.get("publisher"),
        publication_date=normalize_publication_date(volume_info.get("publishedDate")),
        isbn10=isbn10,
        isbn13=isbn13,
        page_count=_page_count(volume_info.get("pageCount")),
        language_code=volume_info.get("language"),
        category=category,
    )


def parse_search_response(response_json: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Pull the raw volume documents out of a search response.

    Args:
        response_json: Complete API response JSON

    Returns:
        List of volume documents (empty if no items found)
    """
    return list(response_json.get("items") or [])


def deduplicate_records(records: List[BookRecord]) -> List[BookRecord]:
    """
    Remove duplicate records by key, keeping the first occurrence.

    Args:
        records: List of BookRecord objects

    Returns:
        Deduplicated list of records
    """
    seen_keys = set()
    unique_records = []

    for record in records:
        if record.key not in seen_keys:
            seen_keys.add(record.key)
            unique_records.append(record)

    return unique_records
