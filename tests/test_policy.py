"""Tests for the lending policy.

The policy functions are pure, so these tests build models directly and
never touch a database.
"""

from datetime import datetime, timedelta

import pytest

from lending_library.errors import (
    CapacityExceededError,
    ErrorKind,
    FailureReason,
    ForbiddenError,
    LimitReachedError,
    NotFoundError,
)
from lending_library.models import Actor, Book, LoanRecord, LoanStatus, Role, User
from lending_library.policy import (
    LendingRules,
    PolicyDecision,
    can_access_loan,
    can_borrow,
    can_pay_fine,
    can_renew,
    can_return,
    check_due_date,
    compute_fine,
    default_due_date,
    renewed_due_date,
)

NOW = datetime(2024, 3, 1, 10, 0)
RULES = LendingRules()

USER_ID = "user_8b1e0f3c9a27"
OTHER_ID = "user_1a2b3c4d5e6f"


def make_user(**overrides) -> User:
    return User(**({"id": USER_ID, "name": "Mia Member", "email": "mia@example.com"} | overrides))


def make_book(**overrides) -> Book:
    data = {
        "id": "book_3f9a1c2b7d4e",
        "isbn": "9780743273565",
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "genre": "Fiction",
        "total_copies": 2,
        "available_copies": 1,
    }
    return Book(**(data | overrides))


def make_loan(n: int = 0, **overrides) -> LoanRecord:
    data = {
        "id": f"loan_{n:012x}",
        "user_id": USER_ID,
        "book_id": f"book_{n:012x}",
        "borrow_date": NOW - timedelta(days=3),
        "due_date": NOW + timedelta(days=11),
    }
    return LoanRecord(**(data | overrides))


class TestPolicyDecision:
    def test_allow(self):
        decision = PolicyDecision.allow()

        assert decision.allowed
        decision.raise_if_denied()
        with pytest.raises(ValueError):
            decision.to_error()

    def test_deny_raises_error_of_matching_kind(self):
        decision = PolicyDecision.deny(FailureReason.UNAVAILABLE, "none left")

        with pytest.raises(CapacityExceededError) as exc_info:
            decision.raise_if_denied()

        assert exc_info.value.reason == FailureReason.UNAVAILABLE
        assert exc_info.value.kind == ErrorKind.CAPACITY_EXCEEDED
        assert exc_info.value.message == "none left"


class TestCanBorrow:
    def test_allowed(self):
        assert can_borrow(make_user(), make_book(), [], RULES).allowed

    def test_missing_user(self):
        decision = can_borrow(None, make_book(), [], RULES)

        assert decision.reason == FailureReason.USER_NOT_FOUND

    def test_inactive_user(self):
        decision = can_borrow(make_user(is_active=False), make_book(), [], RULES)

        assert decision.reason == FailureReason.USER_INACTIVE
        with pytest.raises(ForbiddenError):
            decision.raise_if_denied()

    @pytest.mark.parametrize("book", [None, make_book(is_active=False)])
    def test_missing_or_inactive_book(self, book):
        decision = can_borrow(make_user(), book, [], RULES)

        assert decision.reason == FailureReason.INACTIVE
        with pytest.raises(NotFoundError):
            decision.raise_if_denied()

    def test_no_copy_on_shelf(self):
        decision = can_borrow(make_user(), make_book(available_copies=0), [], RULES)

        assert decision.reason == FailureReason.UNAVAILABLE

    def test_duplicate_loan(self):
        book = make_book()
        held = make_loan(book_id=book.id)

        assert can_borrow(make_user(), book, [held], RULES).reason == FailureReason.DUPLICATE_LOAN

    def test_overdue_loan_of_same_title_is_a_duplicate(self):
        book = make_book()
        held = make_loan(book_id=book.id, status=LoanStatus.OVERDUE)

        assert can_borrow(make_user(), book, [held], RULES).reason == FailureReason.DUPLICATE_LOAN

    def test_limit_reached(self):
        open_loans = [make_loan(n) for n in range(1, 6)]

        decision = can_borrow(make_user(), make_book(), open_loans, RULES)

        assert decision.reason == FailureReason.BORROW_LIMIT_REACHED
        with pytest.raises(LimitReachedError):
            decision.raise_if_denied()

    def test_closed_loans_do_not_count(self):
        closed = [make_loan(n, status=LoanStatus.RETURNED) for n in range(1, 8)]

        assert can_borrow(make_user(), make_book(), closed, RULES).allowed

    def test_first_failing_check_wins(self):
        # Unavailable and at the limit: the shelf check comes first
        open_loans = [make_loan(n) for n in range(1, 6)]

        decision = can_borrow(make_user(), make_book(available_copies=0), open_loans, RULES)

        assert decision.reason == FailureReason.UNAVAILABLE

    def test_custom_limit(self):
        rules = LendingRules(max_open_loans=1)

        decision = can_borrow(make_user(), make_book(), [make_loan(1)], rules)

        assert decision.reason == FailureReason.BORROW_LIMIT_REACHED


class TestDueDates:
    def test_default_due_date(self):
        assert default_due_date(NOW, RULES) == NOW + timedelta(days=14)

    def test_requested_due_date_must_be_future(self):
        assert check_due_date(NOW + timedelta(minutes=1), NOW).allowed
        assert check_due_date(NOW, NOW).reason == FailureReason.INVALID_DUE_DATE
        assert check_due_date(NOW - timedelta(days=1), NOW).reason == FailureReason.INVALID_DUE_DATE

    def test_renewal_extends_from_current_due_date(self):
        loan = make_loan()

        assert renewed_due_date(loan, RULES) == loan.due_date + timedelta(days=14)


class TestReturnAndRenew:
    def test_can_return_open_loans(self):
        assert can_return(make_loan()).allowed
        assert can_return(make_loan(status=LoanStatus.OVERDUE)).allowed

    def test_cannot_return_twice(self):
        loan = make_loan(status=LoanStatus.RETURNED, return_date=NOW)

        assert can_return(loan).reason == FailureReason.ALREADY_RETURNED

    def test_cannot_return_lost(self):
        assert can_return(make_loan(status=LoanStatus.LOST)).reason == FailureReason.NOT_RETURNABLE

    def test_can_renew(self):
        assert can_renew(make_loan(renewal_count=2), RULES).allowed

    def test_renewal_limit(self):
        decision = can_renew(make_loan(renewal_count=3), RULES)

        assert decision.reason == FailureReason.RENEWAL_LIMIT_REACHED

    @pytest.mark.parametrize("status", [LoanStatus.RETURNED, LoanStatus.LOST])
    def test_closed_loans_not_renewable(self, status):
        decision = can_renew(make_loan(status=status, return_date=NOW), RULES)

        assert decision.reason == FailureReason.NOT_RENEWABLE


class TestAccess:
    def test_owner_always_allowed(self):
        actor = Actor(user_id=USER_ID)

        assert can_access_loan(make_loan(), actor, allow_admin=False).allowed

    def test_admin_only_where_allowed(self):
        admin = Actor(user_id=OTHER_ID, role=Role.ADMIN)

        assert can_access_loan(make_loan(), admin, allow_admin=True).allowed
        denied = can_access_loan(make_loan(), admin, allow_admin=False)
        assert denied.reason == FailureReason.FORBIDDEN

    def test_other_member_denied(self):
        other = Actor(user_id=OTHER_ID)

        decision = can_access_loan(make_loan(), other, allow_admin=True)

        assert decision.reason == FailureReason.FORBIDDEN


class TestFines:
    def test_no_fine_before_due(self):
        loan = make_loan()

        assert compute_fine(loan, loan.due_date, RULES) == 0.0

    def test_five_days_late(self):
        loan = make_loan()

        assert compute_fine(loan, loan.due_date + timedelta(days=5), RULES) == 5.0

    def test_partial_day_rounds_up(self):
        loan = make_loan()

        assert compute_fine(loan, loan.due_date + timedelta(days=2, hours=3), RULES) == 3.0

    def test_rate_and_rounding(self):
        loan = make_loan()
        rules = LendingRules(fine_per_day=0.35)

        assert compute_fine(loan, loan.due_date + timedelta(days=3), rules) == 1.05

    def test_fine_is_increment_not_total(self):
        loan = make_loan(fine_amount=4.0)

        assert compute_fine(loan, loan.due_date + timedelta(days=1), RULES) == 1.0

    def test_pay_fine_only_when_closed_and_outstanding(self):
        returned = make_loan(status=LoanStatus.RETURNED, return_date=NOW, fine_amount=2.0)

        assert can_pay_fine(returned).allowed
        assert not can_pay_fine(make_loan(fine_amount=2.0)).allowed
        assert not can_pay_fine(returned.model_copy(update={"fine_paid": True})).allowed
        nothing_due = make_loan(status=LoanStatus.RETURNED, return_date=NOW)
        assert can_pay_fine(nothing_due).reason == FailureReason.NO_OUTSTANDING_FINE
