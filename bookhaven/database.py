"""PostgreSQL storage for the book cache, reading libraries and reviews."""
import psycopg2
from psycopg2 import pool
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Optional, List, Dict, Any, Tuple
from datetime import datetime
import logging

from bookhaven.models import BookRecord, LibraryEntry, Review, READING_STATUSES
from bookhaven.store import utcnow

logger = logging.getLogger(__name__)

BOOK_COLUMNS = """
    book_key, title, author, description, cover_image_url, publisher,
    publication_date, isbn10, isbn13, page_count, language_code, category,
    refreshed_at
"""


def _book_columns(alias: str) -> str:
    return ", ".join(f"{alias}.{column.strip()}" for column in BOOK_COLUMNS.split(","))


class Database:
    """PostgreSQL database with connection pooling."""

    def __init__(
        self,
        connection_string: str,
        min_conn: int = 1,
        max_conn: int = 10,
        clock: Callable[[], datetime] = utcnow,
        connection_pool=None
    ):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
            clock: Source of ``refreshed_at`` timestamps
            connection_pool: Pre-built pool to use instead of creating one
        """
        self.clock = clock
        self.connection_pool = connection_pool or psycopg2.pool.ThreadedConnectionPool(
            min_conn,
            max_conn,
            connection_string
        )

        if self.connection_pool:
            logger.info("Database connection pool created successfully")
        else:
            raise Exception("Failed to create connection pool")

    @contextmanager
    def _cursor(self):
        """Yield a cursor; commit on success, roll back on error."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.connection_pool.putconn(conn)

    def init_schema(self):
        """Create database tables if they don't exist."""
        statuses = ", ".join(f"'{status}'" for status in READING_STATUSES)
        with self._cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS books_cache (
                    book_key VARCHAR(255) PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    cover_image_url TEXT,
                    publisher TEXT,
                    publication_date VARCHAR(10),
                    isbn10 VARCHAR(20),
                    isbn13 VARCHAR(20),
                    page_count INTEGER CHECK (page_count >= 0),
                    language_code VARCHAR(10),
                    category TEXT,
                    refreshed_at TIMESTAMPTZ NOT NULL
                )
            """)

            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS user_books (
                    user_id INTEGER NOT NULL,
                    book_key VARCHAR(255) NOT NULL REFERENCES books_cache (book_key),
                    status VARCHAR(20) NOT NULL DEFAULT 'to_read'
                        CHECK (status IN ({statuses})),
                    added_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (user_id, book_key)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    review_id SERIAL PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    book_key VARCHAR(255) NOT NULL REFERENCES books_cache (book_key),
                    rating SMALLINT NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    review_title TEXT NOT NULL DEFAULT '',
                    review_text TEXT NOT NULL DEFAULT '',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (user_id, book_key)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS review_likes (
                    review_id INTEGER NOT NULL REFERENCES reviews (review_id) ON DELETE CASCADE,
                    user_id INTEGER NOT NULL,
                    PRIMARY KEY (review_id, user_id)
                )
            """)

            # Indexes for performance
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_books_cache_category
                ON books_cache (category)
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_books_cache_title
                ON books_cache USING gin(to_tsvector('english', title))
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_reviews_book
                ON reviews (book_key, created_at DESC)
            """)

        logger.info("Database schema initialized successfully")

    # Book cache

    def get_book(self, book_key: str) -> Optional[BookRecord]:
        """Get a cached book by key, or None if absent or unreadable."""
        try:
            with self._cursor() as cur:
                cur.execute(f"""
                    SELECT {BOOK_COLUMNS}
                    FROM books_cache WHERE book_key = %s
                """, (book_key,))
                row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Failed to read book {book_key}: {e}")
            return None

        return BookRecord(*row) if row else None

    def upsert_book(self, record: BookRecord) -> Optional[BookRecord]:
        """
        Insert or fully overwrite a cached book.

        ``refreshed_at`` is stamped here; whatever the record carries is ignored.

        Args:
            record: Normalized BookRecord

        Returns:
            The stored record, or None if the write failed
        """
        stored = replace(record, refreshed_at=self.clock())
        try:
            with self._cursor() as cur:
                cur.execute(f"""
                    INSERT INTO books_cache ({BOOK_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (book_key) DO UPDATE SET
                        title = EXCLUDED.title,
                        author = EXCLUDED.author,
                        description = EXCLUDED.description,
                        cover_image_url = EXCLUDED.cover_image_url,
                        publisher = EXCLUDED.publisher,
                        publication_date = EXCLUDED.publication_date,
                        isbn10 = EXCLUDED.isbn10,
                        isbn13 = EXCLUDED.isbn13,
                        page_count = EXCLUDED.page_count,
                        language_code = EXCLUDED.language_code,
                        category = EXCLUDED.category,
                        refreshed_at = EXCLUDED.refreshed_at
                """, (
                    stored.key, stored.title, stored.author, stored.description,
                    stored.cover_image_url, stored.publisher, stored.publication_date,
                    stored.isbn10, stored.isbn13, stored.page_count,
                    stored.language_code, stored.category, stored.refreshed_at
                ))
        except psycopg2.Error as e:
            logger.error(f"Failed to upsert book {record.key}: {e}")
            return None

        return stored

    def find_by_category(
        self,
        category: str,
        exclude_key: Optional[str] = None,
        limit: int = 6
    ) -> List[BookRecord]:
        """Cached books in a category, most recently refreshed first."""
        try:
            with self._cursor() as cur:
                cur.execute(f"""
                    SELECT {BOOK_COLUMNS}
                    FROM books_cache
                    WHERE category = %s AND book_key IS DISTINCT FROM %s
                    ORDER BY refreshed_at DESC
                    LIMIT %s
                """, (category, exclude_key, limit))
                rows = cur.fetchall()
        except psycopg2.Error as e:
            logger.error(f"Failed to read category {category}: {e}")
            return []
        return [BookRecord(*row) for row in rows]

    def search_books(self, query: str, limit: int = 10) -> List[BookRecord]:
        """
        Search cached books by title (full-text search).

        Args:
            query: Search query, empty for all books
            limit: Maximum results

        Returns:
            List of BookRecord objects
        """
        with self._cursor() as cur:
            if query:
                cur.execute(f"""
                    SELECT {BOOK_COLUMNS}
                    FROM books_cache
                    WHERE to_tsvector('english', title) @@ plainto_tsquery('english', %s)
                    ORDER BY refreshed_at DESC
                    LIMIT %s
                """, (query, limit))
            else:
                cur.execute(f"""
                    SELECT {BOOK_COLUMNS}
                    FROM books_cache
                    ORDER BY refreshed_at DESC
                    LIMIT %s
                """, (limit,))
            rows = cur.fetchall()
        return [BookRecord(*row) for row in rows]

    def get_stats(self, freshness_window) -> Dict[str, Any]:
        """Get database statistics."""
        cutoff = self.clock() - freshness_window
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM books_cache")
            book_count = cur.fetchone()[0]

            cur.execute("SELECT COUNT(*) FROM books_cache WHERE refreshed_at <= %s", (cutoff,))
            stale_count = cur.fetchone()[0]

            cur.execute("SELECT COUNT(*) FROM user_books")
            library_count = cur.fetchone()[0]

            cur.execute("SELECT COUNT(*) FROM reviews")
            review_count = cur.fetchone()[0]

        return {
            "cached_books": book_count,
            "stale_books": stale_count,
            "library_entries": library_count,
            "reviews": review_count
        }

    # Reading library

    def get_library_entry(self, user_id: int, book_key: str) -> Optional[LibraryEntry]:
        with self._cursor() as cur:
            cur.execute("""
                SELECT user_id, book_key, status, added_at
                FROM user_books WHERE user_id = %s AND book_key = %s
            """, (user_id, book_key))
            row = cur.fetchone()
        return LibraryEntry(*row) if row else None

    def insert_library_entry(self, entry: LibraryEntry) -> LibraryEntry:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO user_books (user_id, book_key, status)
                VALUES (%s, %s, %s)
                RETURNING added_at
            """, (entry.user_id, entry.book_key, entry.status))
            added_at = cur.fetchone()[0]
        return replace(entry, added_at=added_at)

    def update_library_status(self, user_id: int, book_key: str, status: str) -> bool:
        with self._cursor() as cur:
            cur.execute("""
                UPDATE user_books SET status = %s
                WHERE user_id = %s AND book_key = %s
            """, (status, user_id, book_key))
            return cur.rowcount > 0

    def delete_library_entry(self, user_id: int, book_key: str) -> bool:
        with self._cursor() as cur:
            cur.execute("""
                DELETE FROM user_books WHERE user_id = %s AND book_key = %s
            """, (user_id, book_key))
            return cur.rowcount > 0

    def list_library(
        self,
        user_id: int,
        status: Optional[str] = None
    ) -> List[Tuple[LibraryEntry, BookRecord]]:
        """User's library entries with their cached books, newest first."""
        query = f"""
            SELECT ub.user_id, ub.book_key, ub.status, ub.added_at, {_book_columns('b')}
            FROM user_books ub
            JOIN books_cache b ON ub.book_key = b.book_key
            WHERE ub.user_id = %s
        """
        params: Tuple = (user_id,)
        if status:
            query += " AND ub.status = %s"
            params += (status,)
        query += " ORDER BY ub.added_at DESC"

        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [(LibraryEntry(*row[:4]), BookRecord(*row[4:])) for row in rows]

    def count_library_statuses(self, user_id: int) -> Dict[str, int]:
        with self._cursor() as cur:
            cur.execute("""
                SELECT status, COUNT(*) FROM user_books
                WHERE user_id = %s GROUP BY status
            """, (user_id,))
            rows = cur.fetchall()
        return {status: count for status, count in rows}

    # Reviews

    def upsert_review(self, review: Review) -> Review:
        """Insert a review or replace the user's earlier review of the same book."""
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO reviews (user_id, book_key, rating, review_title, review_text)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, book_key) DO UPDATE SET
                    rating = EXCLUDED.rating,
                    review_title = EXCLUDED.review_title,
                    review_text = EXCLUDED.review_text,
                    created_at = CURRENT_TIMESTAMP
                RETURNING review_id, created_at
            """, (review.user_id, review.book_key, review.rating, review.title, review.text))
            review_id, created_at = cur.fetchone()
        return replace(review, review_id=review_id, created_at=created_at)

    def has_liked(self, review_id: int, user_id: int) -> bool:
        with self._cursor() as cur:
            cur.execute("""
                SELECT 1 FROM review_likes WHERE review_id = %s AND user_id = %s
            """, (review_id, user_id))
            return cur.fetchone() is not None

    def add_like(self, review_id: int, user_id: int):
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO review_likes (review_id, user_id) VALUES (%s, %s)
                ON CONFLICT DO NOTHING
            """, (review_id, user_id))

    def remove_like(self, review_id: int, user_id: int):
        with self._cursor() as cur:
            cur.execute("""
                DELETE FROM review_likes WHERE review_id = %s AND user_id = %s
            """, (review_id, user_id))

    def get_reviews(self, book_key: str, limit: int = 5) -> List[Review]:
        """Latest reviews of a book, with like counts."""
        with self._cursor() as cur:
            cur.execute("""
                SELECT r.user_id, r.book_key, r.rating, r.review_title, r.review_text,
                       r.review_id, r.created_at,
                       (SELECT COUNT(*) FROM review_likes l WHERE l.review_id = r.review_id)
                FROM reviews r
                WHERE r.book_key = %s
                ORDER BY r.created_at DESC
                LIMIT %s
            """, (book_key, limit))
            rows = cur.fetchall()
        return [Review(*row) for row in rows]

    def get_review_stats(self, book_key: str) -> Tuple[int, float]:
        """Review count and average rating for a book."""
        with self._cursor() as cur:
            cur.execute("""
                SELECT COUNT(*), AVG(rating) FROM reviews WHERE book_key = %s
            """, (book_key,))
            count, average = cur.fetchone()
        return count, float(average) if average is not None else 0.0

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
