"""
Book model for the Lending Library.

A book is one catalogue title with a number of physical copies. The
repositories return this model for every catalogue read; the copy counters
themselves are only ever changed by guarded SQL updates in
``BookRepository`` so the model never mutates them.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

GENRES: tuple[str, ...] = (
    "Fiction",
    "Non-Fiction",
    "Science Fiction",
    "Fantasy",
    "Mystery",
    "Romance",
    "Thriller",
    "Biography",
    "History",
    "Science",
    "Technology",
    "Philosophy",
    "Religion",
    "Self-Help",
    "Health",
    "Travel",
    "Cooking",
    "Art",
    "Music",
    "Sports",
    "Politics",
    "Economics",
    "Education",
    "Other",
)

_GENRE_LOOKUP = {genre.lower(): genre for genre in GENRES}


def normalize_isbn(value: str) -> str:
    """Strip separators so ISBN uniqueness is checked on digits only."""
    return value.replace("-", "").replace(" ", "").upper()


class Book(BaseModel):
    """
    Represents a title in the library catalogue.

    ``available_copies`` counts copies on the shelf; ``total_copies`` counts
    copies the library owns. The difference is the number of copies on loan.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the book",
        pattern=r"^book_[a-f0-9]{12}$",
        examples=["book_3f9a1c2b7d4e"],
    )

    isbn: str = Field(
        ...,
        description="ISBN-10 or ISBN-13, stored without separators",
        examples=["9780134685479", "0306406152"],
    )

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        max_length=200,
        examples=["The Great Gatsby"],
    )

    author: str = Field(
        ...,
        description="Author display name",
        min_length=1,
        max_length=100,
        examples=["F. Scott Fitzgerald"],
    )

    genre: str = Field(
        ...,
        description="Genre from the library's fixed list",
        examples=["Fiction", "Science Fiction"],
    )

    publication_year: int | None = Field(
        None,
        description="Year the book was published",
        ge=1450,
        le=datetime.now().year + 1,
    )

    description: str | None = Field(None, max_length=1000)
    language: str = Field(default="English", max_length=50)
    publisher: str | None = Field(None, max_length=100)
    pages: int | None = Field(None, ge=1)

    total_copies: int = Field(
        ...,
        description="Total number of copies owned by the library",
        ge=0,
    )

    available_copies: int = Field(
        ...,
        description="Number of copies currently on the shelf",
        ge=0,
    )

    borrow_count: int = Field(
        default=0,
        description="Lifetime number of loans issued for this title",
        ge=0,
    )

    is_active: bool = Field(
        default=True,
        description="False once the title has been withdrawn from the catalogue",
    )

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str) -> str:
        normalized = normalize_isbn(v)
        if len(normalized) == 13 and normalized.isdigit():
            return normalized
        if len(normalized) == 10 and normalized[:9].isdigit() and (
            normalized[9].isdigit() or normalized[9] == "X"
        ):
            return normalized
        raise ValueError("ISBN must have 10 or 13 digits")

    @field_validator("genre")
    @classmethod
    def validate_genre(cls, v: str) -> str:
        genre = _GENRE_LOOKUP.get(v.strip().lower())
        if genre is None:
            raise ValueError(f"Genre must be one of: {', '.join(GENRES)}")
        return genre

    @model_validator(mode="after")
    def validate_copies(self) -> "Book":
        """Ensure available copies doesn't exceed total copies."""
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self

    @property
    def is_available(self) -> bool:
        return self.is_active and self.available_copies > 0

    @property
    def borrowed_copies(self) -> int:
        return self.total_copies - self.available_copies

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "book_3f9a1c2b7d4e",
                "isbn": "9780743273565",
                "title": "The Great Gatsby",
                "author": "F. Scott Fitzgerald",
                "genre": "Fiction",
                "publication_year": 1925,
                "total_copies": 3,
                "available_copies": 2,
                "borrow_count": 41,
                "is_active": True,
            }
        },
    )
