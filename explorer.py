#!/usr/bin/env python3
"""BookHaven CLI - cached Google Books catalog and reading library."""
import argparse
import asyncio
import sys
import json
from tabulate import tabulate
from bookhaven.client import GoogleBooksClient
from bookhaven.async_client import AsyncGoogleBooksClient
from bookhaven.catalog import CachedCatalog, FRESHNESS_WINDOW
from bookhaven.database import Database
from bookhaven.library import Library
from bookhaven.models import READING_STATUSES, Review
from bookhaven.parse import deduplicate_records
from bookhaven.config import Config
import logging

logger = logging.getLogger(__name__)


def setup_database(config: Config) -> Database:
    """Initialize database."""
    db = Database(config.DATABASE_URL)
    db.init_schema()
    return db


def make_client(config: Config) -> GoogleBooksClient:
    return GoogleBooksClient(
        api_key=config.GOOGLE_BOOKS_API_KEY,
        timeout=config.DEFAULT_TIMEOUT
    )


async def search_books_async(args, config: Config):
    """Search using parallel page requests, then cache the results."""
    db = setup_database(config)

    try:
        async with AsyncGoogleBooksClient(
            api_key=config.GOOGLE_BOOKS_API_KEY,
            timeout=config.DEFAULT_TIMEOUT,
            max_concurrent=config.MAX_CONCURRENT
        ) as client:
            logger.info(f"Searching for: {args.query}")
            documents = await client.paginated_search(
                args.query,
                total_results=args.limit,
                results_per_page=max(1, min(args.limit, 40))
            )

        with make_client(config) as sync_client:
            catalog = CachedCatalog(db, sync_client)
            books = catalog.cache_documents(documents)

        display_books(deduplicate_records(books), args.format)

    finally:
        db.close()


def search_books_sync(args, config: Config):
    """Search for books and cache every result."""
    db = setup_database(config)

    try:
        with make_client(config) as client:
            catalog = CachedCatalog(db, client)
            books = catalog.search_and_cache(args.query, args.offset, args.limit)

        if not books:
            logger.warning("No books found")
        display_books(deduplicate_records(books), args.format)

    finally:
        db.close()


def show_book(args, config: Config):
    """Show a single book, refreshing it if the cached copy is stale."""
    db = setup_database(config)

    try:
        with make_client(config) as client:
            catalog = CachedCatalog(db, client)
            book = catalog.resolve(args.key)

        if book is None:
            print(f"Book not found: {args.key}")
            return 1

        if args.format == "json":
            print(json.dumps(book.to_dict(), indent=2))
            return 0

        fields = book.to_dict()
        fields.pop("description")
        print("\n" + tabulate(fields.items(), tablefmt="plain"))
        if book.description:
            print("\n" + book.description)

        summary = Library(db).review_summary(book.key)
        print(f"\nReviews: {summary['total_reviews']} (average {summary['average_rating']:.1f})")
        for review in summary["reviews"]:
            print(f"  [{review.rating}/5] {review.title} - {review.likes_count} likes")
        return 0

    finally:
        db.close()


def browse_category(args, config: Config):
    db = setup_database(config)

    try:
        with make_client(config) as client:
            catalog = CachedCatalog(db, client)
            books = catalog.browse_category(args.category, args.offset, args.limit)
        display_books(books, args.format)

    finally:
        db.close()


def show_featured(args, config: Config):
    db = setup_database(config)

    try:
        with make_client(config) as client:
            catalog = CachedCatalog(db, client)
            books = catalog.featured(args.limit, args.subject)
        display_books(books, args.format)

    finally:
        db.close()


def show_related(args, config: Config):
    db = setup_database(config)

    try:
        with make_client(config) as client:
            catalog = CachedCatalog(db, client)
            book = catalog.resolve(args.key)
            if book is None:
                print(f"Book not found: {args.key}")
                return 1
            books = catalog.related(book, args.limit)
        display_books(books, args.format)
        return 0

    finally:
        db.close()


def display_books(books, format_type: str):
    """Display books in specified format."""
    if format_type == "table":
        headers = ["Key", "Title", "Author", "Published", "Pages", "Category"]
        rows = [
            [
                book.key,
                book.title[:50] + "..." if len(book.title) > 50 else book.title,
                book.author[:30] + "..." if len(book.author) > 30 else book.author,
                book.publication_date or "Unknown",
                book.page_count or "N/A",
                book.category or "None"
            ]
            for book in books
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps([book.to_dict() for book in books], indent=2))

    elif format_type == "compact":
        for i, book in enumerate(books, 1):
            print(f"{i}. {book.title} - {book.author}")


def manage_library(args, config: Config):
    """Add, update, remove or list books in a user's reading library."""
    db = setup_database(config)

    try:
        library = Library(db)

        if args.action == "list":
            entries = library.list_books(args.user, args.status)
            rows = [
                [entry.book_key, book.title, book.author, entry.status]
                for entry, book in entries
            ]
            print("\n" + tabulate(rows, headers=["Key", "Title", "Author", "Status"], tablefmt="grid"))
            counts = library.status_counts(args.user)
            print(", ".join(f"{status}: {count}" for status, count in counts.items()))
            return 0

        if args.action == "like":
            if args.review_id is None:
                print("A review ID is required")
                return 1
            liked = library.toggle_like(args.review_id, args.user)
            print(f"✅ Review #{args.review_id} {'liked' if liked else 'unliked'}")
            return 0

        if not args.key:
            print("A book key is required")
            return 1

        if args.action == "status" and not args.status:
            print(f"A --status is required: {', '.join(READING_STATUSES)}")
            return 1

        if args.action in ("add", "review"):
            # The book has to be cached before it can be shelved or reviewed
            with make_client(config) as client:
                if CachedCatalog(db, client).resolve(args.key) is None:
                    print(f"Book not found: {args.key}")
                    return 1

        if args.action == "add":
            library.add_book(args.user, args.key)
            print(f"✅ Added {args.key}")

        elif args.action == "status":
            library.update_status(args.user, args.key, args.status)
            print(f"✅ {args.key} marked as {args.status}")

        elif args.action == "remove":
            library.remove_book(args.user, args.key)
            print(f"✅ Removed {args.key}")

        elif args.action == "review":
            review = library.submit_review(Review(
                user_id=args.user,
                book_key=args.key,
                rating=args.rating,
                title=args.title or "",
                text=args.text or ""
            ))
            print(f"✅ Saved review #{review.review_id}")

        return 0

    finally:
        db.close()


def show_stats(args, config: Config):
    """Show database statistics."""
    db = setup_database(config)

    try:
        stats = db.get_stats(FRESHNESS_WINDOW)

        print("\n" + "=" * 50)
        print("DATABASE STATISTICS")
        print("=" * 50)
        print(f"Cached books: {stats['cached_books']}")
        print(f"Stale books (older than {FRESHNESS_WINDOW.days} days): {stats['stale_books']}")
        print(f"Library entries: {stats['library_entries']}")
        print(f"Reviews: {stats['reviews']}")
        print("=" * 50 + "\n")

    finally:
        db.close()


def export_data(args, config: Config):
    """Export cached books."""
    db = setup_database(config)

    try:
        books = db.search_books("", limit=args.limit or 1000)

        if args.format == "json":
            data = [book.to_dict() for book in books]

            if args.output:
                with open(args.output, 'w') as f:
                    json.dump(data, f, indent=2)
                logger.info(f"✅ Exported {len(books)} books to {args.output}")
            else:
                print(json.dumps(data, indent=2))

        elif args.format == "csv":
            import csv

            output_file = args.output or "books_export.csv"
            with open(output_file, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(["Key", "Title", "Author", "Published", "ISBN-13", "Pages", "Category", "Language"])

                for book in books:
                    writer.writerow([
                        book.key,
                        book.title,
                        book.author,
                        book.publication_date or "",
                        book.isbn13 or "",
                        book.page_count or "",
                        book.category or "",
                        book.language_code or ""
                    ])

            logger.info(f"✅ Exported {len(books)} books to {output_file}")

    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BookHaven - cached Google Books catalog CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Search and cache results
  %(prog)s search "python programming"

  # Parallel search of 80 results
  %(prog)s search "machine learning" --limit 80 --async

  # Show one book (served from cache for 7 days)
  %(prog)s show zyTCAlFPjgYC

  # Reading library
  %(prog)s library add --user 1 --key zyTCAlFPjgYC
  %(prog)s library list --user 1 --status reading
        """
    )

    formats = ["table", "json", "compact"]
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Search command
    search_parser = subparsers.add_parser("search", help="Search for books")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--offset", type=int, default=0, help="Result offset (default: 0)")
    search_parser.add_argument("--limit", type=int, default=Config.DEFAULT_PAGE_SIZE, help="Max results")
    search_parser.add_argument("--format", choices=formats, default="table", help="Output format")
    search_parser.add_argument("--async", dest="use_async", action="store_true", help="Fetch pages in parallel")

    # Show command
    show_parser = subparsers.add_parser("show", help="Show a book by key")
    show_parser.add_argument("key", help="Google Books volume ID")
    show_parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    # Category command
    category_parser = subparsers.add_parser("category", help="Browse a subject")
    category_parser.add_argument("category", help="Subject name, e.g. fantasy")
    category_parser.add_argument("--offset", type=int, default=0, help="Result offset (default: 0)")
    category_parser.add_argument("--limit", type=int, default=Config.DEFAULT_PAGE_SIZE, help="Max results")
    category_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Featured command
    featured_parser = subparsers.add_parser("featured", help="Featured books from a popular subject")
    featured_parser.add_argument("--subject", help="Subject (default: random popular subject)")
    featured_parser.add_argument("--limit", type=int, default=8, help="Max results (default: 8)")
    featured_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Related command
    related_parser = subparsers.add_parser("related", help="Books in the same category")
    related_parser.add_argument("key", help="Google Books volume ID")
    related_parser.add_argument("--limit", type=int, default=6, help="Max results (default: 6)")
    related_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Library command
    library_parser = subparsers.add_parser("library", help="Manage a reading library")
    library_parser.add_argument("action", choices=["add", "status", "remove", "list", "review", "like"])
    library_parser.add_argument("--user", type=int, required=True, help="User ID")
    library_parser.add_argument("--key", help="Google Books volume ID")
    library_parser.add_argument("--status", choices=READING_STATUSES, help="Reading status")
    library_parser.add_argument("--rating", type=int, default=5, help="Review rating 1-5")
    library_parser.add_argument("--title", help="Review title")
    library_parser.add_argument("--text", help="Review text")
    library_parser.add_argument("--review-id", type=int, help="Review to like or unlike")

    # Stats command
    subparsers.add_parser("stats", help="Show database statistics")

    # Export command
    export_parser = subparsers.add_parser("export", help="Export cached books")
    export_parser.add_argument("--format", choices=["json", "csv"], default="json", help="Export format")
    export_parser.add_argument("--output", help="Output file (default: stdout for JSON)")
    export_parser.add_argument("--limit", type=int, help="Limit results")

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()

    # Configure logging
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    commands = {
        "show": show_book,
        "category": browse_category,
        "featured": show_featured,
        "related": show_related,
        "library": manage_library,
        "stats": show_stats,
        "export": export_data,
    }

    try:
        if args.command == "search":
            if args.use_async:
                asyncio.run(search_books_async(args, config))
            else:
                search_books_sync(args, config)
            exit_code = 0
        else:
            exit_code = commands[args.command](args, config) or 0

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
