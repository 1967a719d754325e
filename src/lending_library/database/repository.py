"""
Repository pattern implementation for the Lending Library.

Repositories are the only code that touches SQLAlchemy rows. They return
Pydantic models, so tool handlers and resources never hold live ORM objects
and everything they get back serializes cleanly to JSON.

The base repository provides lookups and pagination; the concrete
repositories add the domain operations (copy reservation, guarded loan
transitions, account management).
"""

import uuid
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ..errors import (
    ConflictError,
    DuplicateError,
    LibraryError,
    NotFoundError,
    RepositoryException,
)
from .schema import Base
from .session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

__all__ = [
    "BaseRepository",
    "ConflictError",
    "DuplicateError",
    "LibraryError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RepositoryException",
    "new_id",
]


def new_id(prefix: str) -> str:
    """Generate an entity id such as ``book_3f9a1c2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """
    Standard paginated response for list operations.

    Every list resource uses this shape so clients page the same way
    through books, loans and users.
    """

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository with lookups and pagination.

    All reads go through ``safe_query`` so database failures surface as
    ``RepositoryException`` with the underlying error logged.
    """

    def __init__(self, session: Session):
        """Initialize repository with database session."""
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_row(self, id: str) -> ModelType | None:
        # Guarded UPDATEs bypass the identity map, so always reload
        query = (
            select(self.model_class)
            .where(self.model_class.id == str(id))
            .execution_options(populate_existing=True)
        )
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} by ID",
        )

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._get_row(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def _paginate(
        self,
        query: Select,
        pagination: PaginationParams,
    ) -> PaginatedResponse[ResponseSchemaType]:
        """
        Run ``query`` one page at a time.

        The total is counted over the same filtered query before the page
        window is applied.
        """
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                "Failed to get total count",
            )
            or 0
        )

        page_query = (
            query.offset(pagination.offset)
            .limit(pagination.page_size)
            .execution_options(populate_existing=True)
        )
        results = safe_query(
            self.session,
            lambda s: s.execute(page_query).scalars().all(),
            "Failed to get paginated results",
        )

        return PaginatedResponse(
            items=[self._to_response_model(item) for item in results],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )
