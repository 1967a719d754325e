"""
Catalogue tools for the Lending Library MCP Server.

Administrative tools that change what the library owns:
1. add_book: Add a title with its copies
2. update_book: Change title details or the number of copies owned
3. remove_book: Withdraw a title (soft delete)

All three are reserved for admins. Copy counts are never edited directly:
``update_book`` adjusts availability around the copies currently on loan,
and ``remove_book`` refuses while any copy is out.
"""

import logging
from collections.abc import Callable
from typing import Annotated, Any

from pydantic import Field, ValidationError

from ..database.book_repository import BookCreateSchema, BookRepository, BookUpdateSchema
from ..database.session import get_session, run_blocking
from ..database.user_repository import UserRepository
from ..errors import LibraryError, RepositoryException
from ..models.book import Book
from .common import (
    ActorId,
    ActorInput,
    BookId,
    error_response,
    invalid_input_response,
    provided,
    repository_error_response,
    require_admin,
    success_response,
    tool_result,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)

Isbn = Annotated[str, Field(description="ISBN-10 or ISBN-13; hyphens and spaces are ignored")]
Genre = Annotated[str, Field(description="One of the catalogue genres, e.g. Fiction or History")]


async def _run_catalogue_change(tool: str, unit: Callable[[], Book]) -> Book | dict[str, Any]:
    """Run an admin catalogue change, returning the book or the error result."""
    try:
        return await run_blocking(unit)
    except LibraryError as e:
        return error_response(tool, e)
    except ValidationError as e:
        # The merged record failed validation, e.g. an unknown genre
        return invalid_input_response(tool, e)
    except RepositoryException as e:
        return repository_error_response(tool, e)
    except Exception as e:
        return unexpected_error_response(tool, e)


class AddBookInput(ActorInput, BookCreateSchema):
    """Input schema for the add_book tool. All copies start on the shelf."""


async def add_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the add_book tool."""
    try:
        params = AddBookInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("add_book", e)

    logger.debug("add_book: actor=%s isbn=%s", params.actor_id, params.isbn)

    def add() -> Book:
        with get_session() as session:
            actor = UserRepository(session).get_actor(params.actor_id)
            require_admin(actor, "add books")
            data = BookCreateSchema.model_validate(params.model_dump(exclude={"actor_id"}))
            return BookRepository(session).create(data)

    book = await _run_catalogue_change("add_book", add)
    if isinstance(book, dict):
        return book

    message = f"Added '{book.title}' by {book.author} ({book.total_copies} copies) as {book.id}"
    return success_response(message, book=book.model_dump(mode="json"))


async def add_book_tool(
    actor_id: ActorId,
    isbn: Isbn,
    title: str,
    author: str,
    genre: Genre,
    total_copies: Annotated[int, Field(description="Copies owned", ge=1)] = 1,
    publication_year: int | None = None,
    description: str | None = None,
    language: str | None = None,
    publisher: str | None = None,
    pages: int | None = None,
) -> dict[str, Any]:
    result = await add_book_handler(
        provided(
            actor_id=actor_id,
            isbn=isbn,
            title=title,
            author=author,
            genre=genre,
            total_copies=total_copies,
            publication_year=publication_year,
            description=description,
            language=language,
            publisher=publisher,
            pages=pages,
        )
    )
    return tool_result(result)


class UpdateBookInput(ActorInput, BookUpdateSchema):
    """
    Input schema for the update_book tool.

    Only the fields supplied are changed. Lowering ``total_copies`` below
    the number of copies on loan is refused.
    """

    book_id: BookId


async def update_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the update_book tool."""
    try:
        params = UpdateBookInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("update_book", e)

    logger.debug("update_book: actor=%s book=%s", params.actor_id, params.book_id)
    changes = params.model_dump(exclude_unset=True, exclude={"actor_id", "book_id"})

    def update() -> Book:
        with get_session() as session:
            actor = UserRepository(session).get_actor(params.actor_id)
            require_admin(actor, "update books")
            return BookRepository(session).update(
                params.book_id, BookUpdateSchema.model_validate(changes)
            )

    book = await _run_catalogue_change("update_book", update)
    if isinstance(book, dict):
        return book

    fields = ", ".join(sorted(changes)) or "nothing"
    message = (
        f"Updated '{book.title}' ({fields}). "
        f"{book.available_copies} of {book.total_copies} copies available"
    )
    return success_response(message, book=book.model_dump(mode="json"))


async def update_book_tool(
    actor_id: ActorId,
    book_id: BookId,
    isbn: str | None = None,
    title: str | None = None,
    author: str | None = None,
    genre: str | None = None,
    total_copies: Annotated[
        int | None, Field(description="New number of copies owned", ge=0)
    ] = None,
    publication_year: int | None = None,
    description: str | None = None,
    language: str | None = None,
    publisher: str | None = None,
    pages: int | None = None,
) -> dict[str, Any]:
    result = await update_book_handler(
        provided(
            actor_id=actor_id,
            book_id=book_id,
            isbn=isbn,
            title=title,
            author=author,
            genre=genre,
            total_copies=total_copies,
            publication_year=publication_year,
            description=description,
            language=language,
            publisher=publisher,
            pages=pages,
        )
    )
    return tool_result(result)


class RemoveBookInput(ActorInput):
    """Input schema for the remove_book tool."""

    book_id: BookId


async def remove_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the remove_book tool."""
    try:
        params = RemoveBookInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("remove_book", e)

    logger.debug("remove_book: actor=%s book=%s", params.actor_id, params.book_id)

    def remove() -> Book:
        with get_session() as session:
            actor = UserRepository(session).get_actor(params.actor_id)
            require_admin(actor, "remove books")
            return BookRepository(session).deactivate(params.book_id)

    book = await _run_catalogue_change("remove_book", remove)
    if isinstance(book, dict):
        return book

    return success_response(
        f"Withdrew '{book.title}' from the catalogue", book=book.model_dump(mode="json")
    )


async def remove_book_tool(actor_id: ActorId, book_id: BookId) -> dict[str, Any]:
    return tool_result(await remove_book_handler({"actor_id": actor_id, "book_id": book_id}))


add_book = {
    "name": "add_book",
    "description": (
        "Add a title to the catalogue with a number of copies, all available. "
        "ISBNs must be unique. Admin only."
    ),
    "handler": add_book_tool,
}

update_book = {
    "name": "update_book",
    "description": (
        "Update a title's details or the number of copies owned. Availability "
        "follows the change in copies owned; the total cannot drop below the "
        "copies currently on loan. Admin only."
    ),
    "handler": update_book_tool,
}

remove_book = {
    "name": "remove_book",
    "description": (
        "Withdraw a title from the catalogue. Refused while any copy is on loan; "
        "loan history is kept. Admin only."
    ),
    "handler": remove_book_tool,
}
