"""
Book repository implementation for the Lending Library.

Two groups of operations live here:

1. **Inventory**: ``reserve_copy``, ``release_copy`` and ``write_off_copy``
   move the copy counters with a single guarded UPDATE each. They never
   read-modify-write and never commit; the circulation repository calls them
   inside its own transaction and decides from the return value.
2. **Catalogue**: create, search, update and soft-delete titles. These are
   administrative and commit their own changes.

Note: timestamps are local naive datetimes, matching the rest of the ledger.
"""

import enum
import logging
from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..database.schema import Book as BookDB
from ..database.session import safe_commit, safe_query
from ..errors import CapacityExceededError, FailureReason, InvalidStateError
from ..models.book import Book as BookModel
from ..models.book import normalize_isbn
from .repository import (
    BaseRepository,
    DuplicateError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    new_id,
)

logger = logging.getLogger(__name__)


class BookCreateSchema(BaseModel):
    """Schema for adding a title. All copies start on the shelf."""

    isbn: str
    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=100)
    genre: str
    publication_year: int | None = None
    description: str | None = Field(None, max_length=1000)
    language: str = "English"
    publisher: str | None = Field(None, max_length=100)
    pages: int | None = Field(None, ge=1)
    total_copies: int = Field(default=1, ge=1)

    @field_validator("isbn")
    @classmethod
    def strip_isbn(cls, v: str) -> str:
        return normalize_isbn(v)


class BookUpdateSchema(BaseModel):
    """Schema for updating a title - all fields optional."""

    isbn: str | None = None
    title: str | None = Field(None, min_length=1, max_length=200)
    author: str | None = Field(None, min_length=1, max_length=100)
    genre: str | None = None
    publication_year: int | None = None
    description: str | None = Field(None, max_length=1000)
    language: str | None = None
    publisher: str | None = Field(None, max_length=100)
    pages: int | None = Field(None, ge=1)
    total_copies: int | None = Field(None, ge=0)

    @field_validator("isbn")
    @classmethod
    def strip_isbn(cls, v: str | None) -> str | None:
        return normalize_isbn(v) if v is not None else None


class BookSearchParams(BaseModel):
    """Search parameters for finding books."""

    query: str | None = None  # title, author, description or isbn
    author: str | None = None  # author contains
    genre: str | None = None  # exact genre
    available_only: bool = False
    include_inactive: bool = False


class BookSortOptions(str, enum.Enum):
    """Sorting options for book queries."""

    TITLE = "title"
    AUTHOR = "author"
    GENRE = "genre"
    PUBLICATION_YEAR = "publication_year"
    AVAILABILITY = "availability"
    POPULARITY = "popularity"
    CREATED_AT = "created_at"


class BookRepository(BaseRepository[BookDB, BookModel]):
    """
    Repository for catalogue and copy-count access.

    - Inventory methods join the caller's transaction
    - Catalogue methods commit and return Pydantic models
    """

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return BookModel

    # === Inventory ===

    def reserve_copy(self, book_id: str) -> bool:
        """
        Take one copy off the shelf.

        Succeeds only if the title is active and has a copy available; the
        check and the decrement are one statement. Also counts the loan in
        ``borrow_count``.

        Returns:
            True if a copy was reserved, False if nothing changed
        """
        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.available_copies > 0,
                BookDB.is_active.is_(True),
            )
            .values(
                available_copies=BookDB.available_copies - 1,
                borrow_count=BookDB.borrow_count + 1,
                updated_at=datetime.now(),
            )
        )
        reserved = self.session.execute(stmt).rowcount == 1
        logger.debug("reserve_copy %s -> %s", book_id, reserved)
        return reserved

    def release_copy(self, book_id: str) -> bool:
        """
        Put one copy back on the shelf.

        A no-op when every copy is already on the shelf, so a duplicated
        release can never push availability past the total.
        """
        stmt = (
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.available_copies < BookDB.total_copies)
            .values(available_copies=BookDB.available_copies + 1, updated_at=datetime.now())
        )
        released = self.session.execute(stmt).rowcount == 1
        logger.debug("release_copy %s -> %s", book_id, released)
        return released

    def write_off_copy(self, book_id: str) -> bool:
        """Remove one borrowed copy from the collection (lost loans)."""
        stmt = (
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.total_copies > BookDB.available_copies)
            .values(total_copies=BookDB.total_copies - 1, updated_at=datetime.now())
        )
        written_off = self.session.execute(stmt).rowcount == 1
        logger.debug("write_off_copy %s -> %s", book_id, written_off)
        return written_off

    # === Catalogue ===

    def create(self, data: BookCreateSchema) -> BookModel:
        """
        Add a title to the catalogue.

        Raises:
            DuplicateError: If a title with the same ISBN exists
        """
        if self.get_by_isbn(data.isbn) is not None:
            raise DuplicateError(
                f"Book with ISBN {data.isbn} already exists", FailureReason.DUPLICATE_ISBN
            )

        # Validate through the response model before touching the database
        model = BookModel(
            id=new_id("book"),
            available_copies=data.total_copies,
            **data.model_dump(),
        )
        now = datetime.now()
        book = BookDB(
            **model.model_dump(exclude={"created_at", "updated_at"}),
            created_at=now,
            updated_at=now,
        )
        self.session.add(book)

        try:
            safe_commit(self.session, "create book")
        except IntegrityError as e:
            raise DuplicateError(
                f"Book with ISBN {data.isbn} already exists", FailureReason.DUPLICATE_ISBN
            ) from e

        logger.info("Added book %s (%s), %d copies", book.id, book.isbn, book.total_copies)
        return self._to_response_model(book)

    def get_by_isbn(self, isbn: str) -> BookModel | None:
        """Get book by ISBN, with or without separators."""
        query = select(BookDB).where(BookDB.isbn == normalize_isbn(isbn))
        result = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get book by ISBN",
        )
        if result is None:
            return None
        return self._to_response_model(result)

    def search(
        self,
        search_params: BookSearchParams,
        pagination: PaginationParams | None = None,
        sort_by: BookSortOptions = BookSortOptions.TITLE,
        sort_desc: bool = False,
    ) -> PaginatedResponse[BookModel]:
        """
        Search the catalogue.

        Inactive titles are hidden unless ``include_inactive`` is set.

        Args:
            search_params: Search and filter criteria
            pagination: Pagination parameters
            sort_by: Field to sort by
            sort_desc: Sort in descending order
        """
        query = select(BookDB)
        filters = []

        if not search_params.include_inactive:
            filters.append(BookDB.is_active.is_(True))

        if search_params.query:
            search_term = f"%{search_params.query}%"
            filters.append(
                or_(
                    BookDB.title.ilike(search_term),
                    BookDB.author.ilike(search_term),
                    BookDB.description.ilike(search_term),
                    BookDB.isbn.like(f"%{normalize_isbn(search_params.query)}%"),
                )
            )

        if search_params.author:
            filters.append(BookDB.author.ilike(f"%{search_params.author}%"))

        if search_params.genre:
            filters.append(BookDB.genre == search_params.genre)

        if search_params.available_only:
            filters.append(BookDB.available_copies > 0)

        if filters:
            query = query.where(and_(*filters))

        sort_field = {
            BookSortOptions.TITLE: BookDB.title,
            BookSortOptions.AUTHOR: BookDB.author,
            BookSortOptions.GENRE: BookDB.genre,
            BookSortOptions.PUBLICATION_YEAR: BookDB.publication_year,
            BookSortOptions.AVAILABILITY: BookDB.available_copies,
            BookSortOptions.POPULARITY: BookDB.borrow_count,
            BookSortOptions.CREATED_AT: BookDB.created_at,
        }.get(sort_by, BookDB.title)

        query = query.order_by(sort_field.desc() if sort_desc else sort_field.asc(), BookDB.id)

        return self._paginate(query, pagination or PaginationParams())

    def list_genres(self) -> list[str]:
        """Genres that have at least one active title."""
        query = (
            select(BookDB.genre)
            .where(BookDB.is_active.is_(True))
            .distinct()
            .order_by(BookDB.genre)
        )
        results = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to get genres"
        )
        return list(results)

    def update(self, book_id: str, data: BookUpdateSchema) -> BookModel:
        """
        Update a title.

        A new ``total_copies`` keeps the number of copies on loan and adjusts
        availability around it, in one guarded statement so a borrow landing
        at the same moment cannot be lost.

        Raises:
            NotFoundError: If the book does not exist
            DuplicateError: If the new ISBN belongs to another title
            CapacityExceededError: If the new total is below the copies on loan
        """
        book = self._get_row(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found", FailureReason.BOOK_NOT_FOUND)

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        new_total = changes.pop("total_copies", None)

        if "isbn" in changes and changes["isbn"] != book.isbn:
            existing = self.get_by_isbn(changes["isbn"])
            if existing is not None:
                raise DuplicateError(
                    f"Book with ISBN {changes['isbn']} already exists",
                    FailureReason.DUPLICATE_ISBN,
                )

        # Re-validate the merged record before writing
        current = self._to_response_model(book)
        merged = BookModel.model_validate(current.model_dump() | changes)
        changes = {field: getattr(merged, field) for field in changes}

        if new_total is not None and new_total != book.total_copies:
            stmt = (
                update(BookDB)
                .where(
                    BookDB.id == book_id,
                    BookDB.total_copies - BookDB.available_copies <= new_total,
                )
                .values(
                    available_copies=BookDB.available_copies + (new_total - BookDB.total_copies),
                    total_copies=new_total,
                )
            )
            if self.session.execute(stmt).rowcount != 1:
                self.session.rollback()
                on_loan = book.total_copies - book.available_copies
                raise CapacityExceededError(
                    f"Cannot reduce total copies below {on_loan} (currently borrowed copies)"
                )
            self.session.refresh(book)

        for field, value in changes.items():
            setattr(book, field, value)
        book.updated_at = datetime.now()

        try:
            safe_commit(self.session, "update book")
        except IntegrityError as e:
            raise DuplicateError(
                f"Book with ISBN {changes.get('isbn')} already exists",
                FailureReason.DUPLICATE_ISBN,
            ) from e

        self.session.refresh(book)
        logger.info("Updated book %s", book_id)
        return self._to_response_model(book)

    def deactivate(self, book_id: str) -> BookModel:
        """
        Withdraw a title from the catalogue (soft delete).

        Raises:
            NotFoundError: If the book does not exist
            InvalidStateError: If any copy is still on loan
        """
        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.available_copies == BookDB.total_copies,
            )
            .values(is_active=False, updated_at=datetime.now())
        )
        deactivated = self.session.execute(stmt).rowcount == 1

        if not deactivated:
            self.session.rollback()
            book = self.get_by_id(book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found", FailureReason.BOOK_NOT_FOUND)
            raise InvalidStateError(
                "Cannot delete book with borrowed copies", FailureReason.COPIES_ON_LOAN
            )

        safe_commit(self.session, "deactivate book")
        logger.info("Deactivated book %s", book_id)
        return self.get_by_id(book_id)
