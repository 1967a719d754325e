"""
SQLAlchemy database schema for the Lending Library.

The tables mirror the Pydantic models in ``lending_library.models``. The
copy-count invariant and the one-open-loan-per-title rule are enforced here
as well as in code, so a buggy or racing writer is stopped by the database:

- ``books``: CHECK constraints keep ``0 <= available_copies <= total_copies``
- ``loan_records``: a partial unique index allows at most one Borrowed or
  Overdue loan per (user, book)
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class RoleEnum(str, enum.Enum):
    """Database enum for account roles."""

    ADMIN = "Admin"
    MEMBER = "Member"


class LoanStatusEnum(str, enum.Enum):
    """Database enum for loan status."""

    BORROWED = "Borrowed"
    RETURNED = "Returned"
    OVERDUE = "Overdue"
    LOST = "Lost"


OPEN_LOAN_STATUSES = (LoanStatusEnum.BORROWED, LoanStatusEnum.OVERDUE)


class User(Base):
    """
    Users table - library accounts.

    Resources: library://users/{id}/loans/active, library://users/{id}/loans/history
    """

    __tablename__ = "users"

    id = Column(String(50), primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(Enum(RoleEnum), nullable=False, default=RoleEnum.MEMBER)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("LoanRecord", back_populates="user")

    __table_args__ = (
        Index("idx_user_role", "role"),
        Index("idx_user_active", "is_active"),
        CheckConstraint("id LIKE 'user_%'", name="check_user_id_format"),
    )


class Book(Base):
    """
    Books table - the catalogue and its copy counters.

    Tools: borrow_book, return_book and mark_loan_lost move the counters
    through guarded updates; add_book, update_book and remove_book manage
    the catalogue entry.
    """

    __tablename__ = "books"

    id = Column(String(50), primary_key=True)
    isbn = Column(String(13), nullable=False, unique=True)
    title = Column(String(200), nullable=False)
    author = Column(String(100), nullable=False)
    genre = Column(String(50), nullable=False)
    publication_year = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    language = Column(String(50), nullable=False, default="English")
    publisher = Column(String(100), nullable=True)
    pages = Column(Integer, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    borrow_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("LoanRecord", back_populates="book")

    __table_args__ = (
        Index("idx_book_title", "title"),
        Index("idx_book_author", "author"),
        Index("idx_book_genre", "genre"),
        Index("idx_book_active", "is_active"),
        CheckConstraint("id LIKE 'book_%'", name="check_book_id_format"),
        CheckConstraint("total_copies >= 0", name="check_total_copies_non_negative"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
        CheckConstraint(
            "available_copies <= total_copies", name="check_available_not_exceed_total"
        ),
        CheckConstraint("borrow_count >= 0", name="check_borrow_count_non_negative"),
        CheckConstraint(
            "publication_year IS NULL OR publication_year >= 1450",
            name="check_publication_year_valid",
        ),
    )


class LoanRecord(Base):
    """
    Loan records table - the loan ledger.

    Rows are never deleted. Status changes are made with guarded UPDATEs so
    that two requests racing on the same loan cannot both succeed.
    """

    __tablename__ = "loan_records"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(50), ForeignKey("users.id"), nullable=False)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    borrow_date = Column(DateTime, nullable=False, default=func.now())
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(Enum(LoanStatusEnum), nullable=False, default=LoanStatusEnum.BORROWED)
    renewal_count = Column(Integer, nullable=False, default=0)
    fine_amount = Column(Float, nullable=False, default=0.0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    fine_paid_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="loans")
    book = relationship("Book", back_populates="loans")

    __table_args__ = (
        Index("idx_loan_user", "user_id"),
        Index("idx_loan_book", "book_id"),
        Index("idx_loan_status", "status"),
        Index("idx_loan_due_date", "due_date"),
        # Enum columns store member names
        Index(
            "uq_loan_open_user_book",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status IN ('BORROWED', 'OVERDUE')"),
            postgresql_where=text("status IN ('BORROWED', 'OVERDUE')"),
        ),
        CheckConstraint("id LIKE 'loan_%'", name="check_loan_id_format"),
        CheckConstraint("renewal_count >= 0 AND renewal_count <= 3", name="check_renewal_limit"),
        CheckConstraint("fine_amount >= 0", name="check_fine_non_negative"),
        CheckConstraint("due_date > borrow_date", name="check_due_after_borrow"),
        CheckConstraint(
            "return_date IS NULL OR return_date >= borrow_date",
            name="check_return_after_borrow",
        ),
    )
