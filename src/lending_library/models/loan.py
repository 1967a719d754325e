"""
Loan models for the Lending Library.

A loan record ties one user to one copy of a book from the day it is
borrowed until it is returned or written off as lost. Records are never
deleted; the ledger is the library's history.

Lifecycle::

    Borrowed --(renew)--> Borrowed        (due date pushed, renewal_count + 1)
    Borrowed --(return)--> Returned
    Borrowed --(mark lost)--> Lost
    Overdue  --(renew | return | mark lost)--> as Borrowed

``Overdue`` is derived from the clock: a Borrowed loan whose due date has
passed is reported as Overdue without anyone writing that status. Rows
stored as Overdue by older data are still honoured and count as open.
"""

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SECONDS_PER_DAY = 24 * 60 * 60


class LoanStatus(str, Enum):
    """Status of a loan record."""

    BORROWED = "Borrowed"
    RETURNED = "Returned"
    OVERDUE = "Overdue"
    LOST = "Lost"


OPEN_STATUSES: tuple[LoanStatus, ...] = (LoanStatus.BORROWED, LoanStatus.OVERDUE)


def overdue_days(due_date: datetime, as_of: datetime) -> int:
    """Number of started days between ``due_date`` and ``as_of``.

    One second late counts as a full day. Never negative.
    """
    late_seconds = (as_of - due_date).total_seconds()
    if late_seconds <= 0:
        return 0
    return math.ceil(late_seconds / SECONDS_PER_DAY)


class LoanRecord(BaseModel):
    """
    Represents one loan of one copy of a book.

    The fine accumulates: a renewal of a late loan charges the days that
    were already late, and the return charges the days past the due date
    in force at that moment.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the loan",
        pattern=r"^loan_[a-f0-9]{12}$",
        examples=["loan_0c5d7e9f1a2b"],
    )

    user_id: str = Field(..., description="Borrowing user")
    book_id: str = Field(..., description="Borrowed title")

    borrow_date: datetime = Field(
        default_factory=datetime.now,
        description="When the copy left the shelf",
    )

    due_date: datetime = Field(..., description="When the copy is due back")

    return_date: datetime | None = Field(
        None,
        description="When the copy came back",
    )

    status: LoanStatus = Field(default=LoanStatus.BORROWED)

    renewal_count: int = Field(
        default=0,
        description="Number of times this loan has been renewed",
        ge=0,
        le=3,
    )

    fine_amount: float = Field(
        default=0.0,
        description="Accumulated fine for this loan",
        ge=0.0,
    )

    fine_paid: bool = Field(default=False)
    fine_paid_date: datetime | None = None

    notes: str | None = Field(None, max_length=500)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_dates(self) -> "LoanRecord":
        """Validate date relationships."""
        if self.due_date <= self.borrow_date:
            raise ValueError("Due date must be after borrow date")

        if self.return_date and self.return_date < self.borrow_date:
            raise ValueError("Return date cannot be before borrow date")

        return self

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def has_outstanding_fine(self) -> bool:
        return self.fine_amount > 0 and not self.fine_paid

    def is_overdue(self, as_of: datetime | None = None) -> bool:
        """Whether the copy is still out past its due date."""
        if not self.is_open:
            return False
        return (as_of or datetime.now()) > self.due_date

    def days_overdue(self, as_of: datetime | None = None) -> int:
        if not self.is_overdue(as_of):
            return 0
        return overdue_days(self.due_date, as_of or datetime.now())

    def effective_status(self, as_of: datetime | None = None) -> LoanStatus:
        """Status as a reader should see it at ``as_of``."""
        if self.status == LoanStatus.BORROWED and self.is_overdue(as_of):
            return LoanStatus.OVERDUE
        return self.status

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "loan_0c5d7e9f1a2b",
                "user_id": "user_8b1e0f3c9a27",
                "book_id": "book_3f9a1c2b7d4e",
                "borrow_date": "2024-03-01T10:00:00",
                "due_date": "2024-03-15T10:00:00",
                "status": "Borrowed",
                "renewal_count": 0,
                "fine_amount": 0.0,
                "fine_paid": False,
            }
        },
    )


class BorrowRequest(BaseModel):
    """Input for borrowing a book."""

    book_id: str = Field(..., description="Title to borrow")
    due_date: datetime | None = Field(
        None,
        description="Requested due date; defaults to the standard loan period",
    )
    notes: str | None = Field(None, max_length=500)

    @field_validator("due_date")
    @classmethod
    def to_local_naive(cls, v: datetime | None) -> datetime | None:
        """Loan timestamps are local naive datetimes."""
        if v is not None and v.tzinfo is not None:
            return v.astimezone().replace(tzinfo=None)
        return v
