"""
Lending policy for the Lending Library.

Pure decision functions: no database access, no clock reads. Callers pass in
the entities and the moment they care about, and get back a
``PolicyDecision``. The circulation repository evaluates these against the
rows it has just read and then enforces the same conditions again inside its
guarded updates, so a decision here is advisory until the write wins.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from .errors import FailureReason, LibraryError, error_for
from .models.book import Book
from .models.loan import OPEN_STATUSES, LoanRecord, LoanStatus, overdue_days
from .models.user import Actor, User

__all__ = [
    "LendingRules",
    "PolicyDecision",
    "can_access_loan",
    "can_borrow",
    "can_pay_fine",
    "can_renew",
    "can_return",
    "check_due_date",
    "compute_fine",
    "default_due_date",
    "overdue_days",
    "renewed_due_date",
]


class LendingRules(BaseModel):
    """Tunable lending limits."""

    loan_period_days: int = Field(default=14, ge=1)
    renewal_period_days: int = Field(default=14, ge=1)
    max_open_loans: int = Field(default=5, ge=1)
    max_renewals: int = Field(default=3, ge=0, le=3)
    fine_per_day: float = Field(default=1.0, ge=0.0)

    model_config = ConfigDict(frozen=True)


class PolicyDecision(BaseModel):
    """Outcome of a policy check."""

    allowed: bool
    reason: FailureReason | None = None
    message: str = ""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: FailureReason, message: str) -> "PolicyDecision":
        return cls(allowed=False, reason=reason, message=message)

    def to_error(self) -> LibraryError:
        if self.allowed or self.reason is None:
            raise ValueError("An allowed decision has no error")
        return error_for(self.reason, self.message)

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise self.to_error()


# === Borrowing ===


def can_borrow(
    user: User | None,
    book: Book | None,
    open_loans: Sequence[LoanRecord],
    rules: LendingRules,
) -> PolicyDecision:
    """
    Decide whether ``user`` may borrow a copy of ``book``.

    Checks run in a fixed order so the same situation always yields the
    same reason: account, title, shelf, duplicate, limit.

    Args:
        user: The borrowing account, None if it does not exist
        book: The requested title, None if it does not exist
        open_loans: The user's Borrowed/Overdue loans
        rules: Lending limits in force
    """
    if user is None:
        return PolicyDecision.deny(FailureReason.USER_NOT_FOUND, "User not found")
    if not user.is_active:
        return PolicyDecision.deny(FailureReason.USER_INACTIVE, "User account is inactive")

    if book is None or not book.is_active:
        return PolicyDecision.deny(FailureReason.INACTIVE, "Book not found or inactive")

    if book.available_copies <= 0:
        return PolicyDecision.deny(
            FailureReason.UNAVAILABLE, "Book is not available for borrowing"
        )

    if any(loan.book_id == book.id and loan.status in OPEN_STATUSES for loan in open_loans):
        return PolicyDecision.deny(
            FailureReason.DUPLICATE_LOAN, "You have already borrowed this book"
        )

    open_count = sum(1 for loan in open_loans if loan.status in OPEN_STATUSES)
    if open_count >= rules.max_open_loans:
        return PolicyDecision.deny(
            FailureReason.BORROW_LIMIT_REACHED,
            f"Borrowing limit reached (maximum {rules.max_open_loans} books)",
        )

    return PolicyDecision.allow()


def check_due_date(due_date: datetime, now: datetime) -> PolicyDecision:
    """A requested due date must lie in the future."""
    if due_date <= now:
        return PolicyDecision.deny(
            FailureReason.INVALID_DUE_DATE, "Due date must be in the future"
        )
    return PolicyDecision.allow()


def default_due_date(borrowed_at: datetime, rules: LendingRules) -> datetime:
    return borrowed_at + timedelta(days=rules.loan_period_days)


# === Returning ===


def can_return(loan: LoanRecord) -> PolicyDecision:
    if loan.status == LoanStatus.RETURNED:
        return PolicyDecision.deny(
            FailureReason.ALREADY_RETURNED, "Book has already been returned"
        )
    if loan.status == LoanStatus.LOST:
        return PolicyDecision.deny(
            FailureReason.NOT_RETURNABLE, "Lost loans cannot be returned"
        )
    return PolicyDecision.allow()


# === Renewing ===


def can_renew(loan: LoanRecord, rules: LendingRules) -> PolicyDecision:
    if loan.status not in OPEN_STATUSES:
        return PolicyDecision.deny(
            FailureReason.NOT_RENEWABLE,
            "Only borrowed or overdue books can be renewed",
        )
    if loan.renewal_count >= rules.max_renewals:
        return PolicyDecision.deny(
            FailureReason.RENEWAL_LIMIT_REACHED,
            f"Maximum renewal limit ({rules.max_renewals}) reached",
        )
    return PolicyDecision.allow()


def renewed_due_date(loan: LoanRecord, rules: LendingRules) -> datetime:
    """Renewals extend from the current due date, not from today."""
    return loan.due_date + timedelta(days=rules.renewal_period_days)


# === Access ===


def can_access_loan(loan: LoanRecord, actor: Actor, allow_admin: bool) -> PolicyDecision:
    """Owners may always act on their loans; admins only where allowed."""
    if loan.user_id == actor.user_id:
        return PolicyDecision.allow()
    if allow_admin and actor.is_admin:
        return PolicyDecision.allow()
    return PolicyDecision.deny(
        FailureReason.FORBIDDEN, "Not authorized to act on this loan"
    )


# === Fines ===


def compute_fine(loan: LoanRecord, as_of: datetime, rules: LendingRules) -> float:
    """
    Fine for the started days between the loan's current due date and ``as_of``.

    This is the increment to add to ``fine_amount``, not the running total.
    """
    return round(overdue_days(loan.due_date, as_of) * rules.fine_per_day, 2)


def can_pay_fine(loan: LoanRecord) -> PolicyDecision:
    """Fines are settled once the loan is closed."""
    if loan.is_open or not loan.has_outstanding_fine:
        return PolicyDecision.deny(
            FailureReason.NO_OUTSTANDING_FINE, "No outstanding fine on this loan"
        )
    return PolicyDecision.allow()
