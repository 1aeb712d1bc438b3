"""Per-user reading lists and book reviews."""
import logging
from typing import Dict, Any, List, Optional, Tuple

from bookhaven.errors import LibraryError
from bookhaven.models import BookRecord, LibraryEntry, Review, READING_STATUSES

logger = logging.getLogger(__name__)


def _check_status(status: str):
    if status not in READING_STATUSES:
        raise ValueError(f"Invalid reading status: {status}")


class Library:
    """Reading-list and review rules on top of ``Database``."""

    def __init__(self, db):
        self.db = db

    def add_book(self, user_id: int, book_key: str) -> LibraryEntry:
        """Add a book to the user's library as ``to_read``."""
        if self.db.get_library_entry(user_id, book_key) is not None:
            raise LibraryError("This book is already in your library.")
        entry = self.db.insert_library_entry(LibraryEntry(user_id, book_key))
        logger.info(f"User {user_id} added {book_key}")
        return entry

    def update_status(self, user_id: int, book_key: str, status: str):
        _check_status(status)
        if not self.db.update_library_status(user_id, book_key, status):
            raise LibraryError("This book is not in your library.")
        logger.info(f"User {user_id} marked {book_key} as {status}")

    def remove_book(self, user_id: int, book_key: str):
        if not self.db.delete_library_entry(user_id, book_key):
            raise LibraryError("This book is not in your library.")
        logger.info(f"User {user_id} removed {book_key}")

    def list_books(
        self,
        user_id: int,
        status: Optional[str] = None
    ) -> List[Tuple[LibraryEntry, BookRecord]]:
        """
        Books in the user's library, newest first.

        Args:
            user_id: Library owner
            status: Only return entries with this status

        Returns:
            (entry, book) pairs
        """
        if status:
            _check_status(status)
        return self.db.list_library(user_id, status)

    def status_counts(self, user_id: int) -> Dict[str, int]:
        counts = {status: 0 for status in READING_STATUSES}
        counts.update(self.db.count_library_statuses(user_id))
        counts["total"] = sum(counts[status] for status in READING_STATUSES)
        return counts

    def submit_review(self, review: Review) -> Review:
        """Save a review, replacing the user's earlier review of the same book."""
        return self.db.upsert_review(review)

    def toggle_like(self, review_id: int, user_id: int) -> bool:
        """
        Like a review, or take the like back if already given.

        Returns:
            True if the review is now liked by the user
        """
        if self.db.has_liked(review_id, user_id):
            self.db.remove_like(review_id, user_id)
            return False
        self.db.add_like(review_id, user_id)
        return True

    def review_summary(self, book_key: str, limit: int = 5) -> Dict[str, Any]:
        count, average = self.db.get_review_stats(book_key)
        return {
            "reviews": self.db.get_reviews(book_key, limit),
            "total_reviews": count,
            "average_rating": average
        }
