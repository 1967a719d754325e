"""Book Resources - Library Catalogue Access

Exposes the catalogue via read-only resources.
Clients use these to browse titles, view details, and check availability.

Resources:
- library://books/list - First page of active titles, sorted by title
- library://books/list/{page} - Any page of the catalogue
- library://books/available - Titles with a copy on the shelf
- library://books/popular - Most borrowed titles first
- library://books/by-genre/{genre} - Titles in one genre
- library://books/by-author/{author} - Titles whose author contains the text
- library://books/search/{query} - Free text over title, author, description and ISBN
- library://books/search/{query}/{page} - Further pages of a search
- library://books/{book_id} - Details of one title
- library://books/genres - Genres with at least one active title

Filters are path segments, URL-encoded where they contain spaces. Every
list answers with the same page envelope. Withdrawn titles are not shown;
asking for one directly reads as not found.
"""

import logging
from typing import Any
from urllib.parse import unquote

from fastmcp.exceptions import ResourceError
from pydantic import ValidationError

from ..database.book_repository import BookRepository, BookSearchParams, BookSortOptions
from ..database.repository import PaginatedResponse, PaginationParams
from ..database.session import run_blocking, session_scope
from ..models.book import Book

logger = logging.getLogger(__name__)

CATALOGUE_PAGE_SIZE = 20


def page_params(page: int | str, page_size: int = CATALOGUE_PAGE_SIZE) -> PaginationParams:
    """Pagination for a page number taken from a URI."""
    try:
        return PaginationParams(page=page, page_size=page_size)
    except ValidationError as e:
        raise ResourceError(f"Invalid page: {page}") from e


def page_view(page: PaginatedResponse, key: str, items: list[dict[str, Any]]) -> dict[str, Any]:
    """The page envelope with ``items`` renamed to ``key``."""
    data = page.model_dump(mode="json", exclude={"items"})
    data[key] = items
    return data


async def _search_books(
    name: str,
    search: BookSearchParams,
    pagination: PaginationParams,
    sort_by: BookSortOptions = BookSortOptions.TITLE,
    sort_desc: bool = False,
    **filters: Any,
) -> dict[str, Any]:
    def query() -> PaginatedResponse[Book]:
        with session_scope() as session:
            return BookRepository(session).search(
                search, pagination=pagination, sort_by=sort_by, sort_desc=sort_desc
            )

    logger.debug("MCP Resource Request - %s: page=%d", name, pagination.page)
    try:
        page = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in %s resource", name)
        raise ResourceError(f"Failed to retrieve books: {e!s}") from e

    data = page_view(page, "books", [book.model_dump(mode="json") for book in page.items])
    if filters:
        data["filters"] = filters
    return data


async def list_books_handler() -> dict[str, Any]:
    """Returns the first page of the catalogue, sorted by title."""
    return await books_page_handler(1)


async def books_page_handler(page: int) -> dict[str, Any]:
    return await _search_books("books/list", BookSearchParams(), page_params(page))


async def available_books_handler() -> dict[str, Any]:
    """Returns titles with at least one copy on the shelf."""
    return await _search_books(
        "books/available",
        BookSearchParams(available_only=True),
        page_params(1),
        available_only=True,
    )


async def popular_books_handler() -> dict[str, Any]:
    """Returns the most borrowed titles first."""
    return await _search_books(
        "books/popular",
        BookSearchParams(),
        page_params(1),
        sort_by=BookSortOptions.POPULARITY,
        sort_desc=True,
    )


async def books_by_genre_handler(genre: str) -> dict[str, Any]:
    genre = unquote(genre)
    return await _search_books(
        "books/by-genre", BookSearchParams(genre=genre), page_params(1), genre=genre
    )


async def books_by_author_handler(author: str) -> dict[str, Any]:
    author = unquote(author)
    return await _search_books(
        "books/by-author", BookSearchParams(author=author), page_params(1), author=author
    )


async def search_books_handler(query: str, page: int = 1) -> dict[str, Any]:
    """Searches title, author, description and ISBN."""
    query = unquote(query).strip()
    if not query:
        raise ResourceError("Search text must not be empty")
    return await _search_books(
        "books/search", BookSearchParams(query=query), page_params(page), query=query
    )


async def get_book_handler(book_id: str) -> dict[str, Any]:
    """Returns details for one title, including its copy counts."""

    def fetch() -> Book | None:
        with session_scope() as session:
            return BookRepository(session).get_by_id(book_id)

    try:
        logger.debug("MCP Resource Request - books/%s", book_id)
        book = await run_blocking(fetch)
    except Exception as e:
        logger.exception("Error in books/{book_id} resource")
        raise ResourceError(f"Failed to retrieve book details: {e!s}") from e

    if book is None or not book.is_active:
        raise ResourceError(f"Book not found: {book_id}")

    data = book.model_dump(mode="json")
    data["borrowed_copies"] = book.borrowed_copies
    return data


async def list_genres_handler() -> dict[str, Any]:
    """Returns the genres of active titles, alphabetically."""

    def fetch() -> list[str]:
        with session_scope() as session:
            return BookRepository(session).list_genres()

    try:
        genres = await run_blocking(fetch)
    except Exception as e:
        logger.exception("Error in books/genres resource")
        raise ResourceError(f"Failed to retrieve genres: {e!s}") from e

    return {"genres": genres, "total": len(genres)}


book_resources: list[dict[str, Any]] = [
    {
        "uri": "library://books/list",
        "name": "Book Catalogue",
        "description": (
            "Browse the library's catalogue with pagination. Shows copy counts so "
            "clients can see what is on the shelf."
        ),
        "mime_type": "application/json",
        "handler": list_books_handler,
    },
    {
        "uri_template": "library://books/list/{page}",
        "name": "Book Catalogue Page",
        "description": "One page of the catalogue, 20 titles per page, sorted by title",
        "mime_type": "application/json",
        "handler": books_page_handler,
    },
    {
        "uri": "library://books/available",
        "name": "Available Books",
        "description": "Titles with at least one copy on the shelf right now",
        "mime_type": "application/json",
        "handler": available_books_handler,
    },
    {
        "uri": "library://books/popular",
        "name": "Popular Books",
        "description": "Titles ordered by how often they have been borrowed",
        "mime_type": "application/json",
        "handler": popular_books_handler,
    },
    {
        "uri": "library://books/genres",
        "name": "Genres",
        "description": "Genres that currently have titles in the catalogue",
        "mime_type": "application/json",
        "handler": list_genres_handler,
    },
    {
        "uri_template": "library://books/by-genre/{genre}",
        "name": "Books by Genre",
        "description": "Titles in one genre (exact match, URL-encoded)",
        "mime_type": "application/json",
        "handler": books_by_genre_handler,
    },
    {
        "uri_template": "library://books/by-author/{author}",
        "name": "Books by Author",
        "description": "Titles whose author contains the given text (URL-encoded)",
        "mime_type": "application/json",
        "handler": books_by_author_handler,
    },
    {
        "uri_template": "library://books/search/{query}",
        "name": "Book Search",
        "description": "Search title, author, description and ISBN for the given text",
        "mime_type": "application/json",
        "handler": search_books_handler,
    },
    {
        "uri_template": "library://books/search/{query}/{page}",
        "name": "Book Search Page",
        "description": "A further page of a catalogue search",
        "mime_type": "application/json",
        "handler": search_books_handler,
    },
    {
        "uri_template": "library://books/{book_id}",
        "name": "Book Details",
        "description": "Detailed information and availability for one title",
        "mime_type": "application/json",
        "handler": get_book_handler,
    },
]
