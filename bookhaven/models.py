"""Data models for cached books, reading libraries and reviews."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

READING_STATUSES = ("to_read", "reading", "completed")


@dataclass
class BookRecord:
    """Canonical book representation stored in the cache."""
    key: str
    title: str
    author: str
    description: str = ""
    cover_image_url: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    page_count: Optional[int] = None
    language_code: Optional[str] = None
    category: Optional[str] = None
    refreshed_at: Optional[datetime] = None

    def is_fresh(self, now: datetime, window) -> bool:
        """Whether the record was refreshed less than ``window`` before ``now``."""
        if self.refreshed_at is None:
            return False
        return now - self.refreshed_at < window

    def to_dict(self):
        return {
            "key": self.key,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "cover_image_url": self.cover_image_url,
            "publisher": self.publisher,
            "publication_date": self.publication_date,
            "isbn10": self.isbn10,
            "isbn13": self.isbn13,
            "page_count": self.page_count,
            "language_code": self.language_code,
            "category": self.category,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
        }


@dataclass
class LibraryEntry:
    """A book on a user's reading list."""
    user_id: int
    book_key: str
    status: str = "to_read"
    added_at: Optional[datetime] = None

    def __post_init__(self):
        if self.status not in READING_STATUSES:
            raise ValueError(f"Invalid reading status: {self.status}")


@dataclass
class Review:
    """A user's review of a cached book."""
    user_id: int
    book_key: str
    rating: int
    title: str = ""
    text: str = ""
    review_id: Optional[int] = None
    created_at: Optional[datetime] = None
    likes_count: int = 0

    def __post_init__(self):
        if not isinstance(self.rating, int) or not 1 <= self.rating <= 5:
            raise ValueError(f"Rating must be an integer between 1 and 5, got {self.rating!r}")
