"""Exceptions raised by the catalog clients and the reading library."""


class CatalogError(Exception):
    """Base class for catalog API failures."""
    pass


class BookNotFoundError(CatalogError):
    """The catalog reports that no volume exists for the requested key."""
    pass


class CatalogUnavailableError(CatalogError):
    """Timeout, connection failure, unexpected status or unreadable body."""
    pass


class LibraryError(Exception):
    """A reading-library operation conflicts with the user's current library."""
    pass
