"""
Circulation repository implementation for the Lending Library.

This is the loan lifecycle engine. Every operation is one unit of work:

1. Read the rows involved and ask the policy layer whether the request is
   allowed (first failing rule wins, so reasons are deterministic)
2. Apply the change with guarded UPDATEs (``reserve_copy``,
   ``release_copy``, ``transition``) that re-check the same conditions
   inside the database
3. Commit, or roll back everything

When a guarded update loses to a concurrent writer, the engine re-reads the
row to classify the loss (for example, the other request already returned
the loan). Losses it cannot classify, and lock timeouts, roll back and run
the unit again, up to ``conflict_retry_attempts`` times, after which the
caller gets ``ConflictError``.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..config import get_config
from ..database.schema import LoanRecord as LoanDB
from ..database.schema import User as UserDB
from ..errors import (
    CapacityExceededError,
    ConflictError,
    FailureReason,
    ForbiddenError,
    LibraryError,
    LimitReachedError,
    NotFoundError,
)
from ..models.loan import OPEN_STATUSES, BorrowRequest, LoanRecord, LoanStatus
from ..models.user import Actor
from ..policy import (
    LendingRules,
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
from .book_repository import BookRepository
from .loan_repository import LoanRepository
from .user_repository import UserRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


class _LostRace(Exception):
    """A guarded update matched no row and the re-read explains nothing."""


class CirculationRepository:
    """
    Repository for circulation operations.

    Coordinates the inventory, the ledger and the account tables. Each
    public method takes the acting identity and returns the resulting
    ``LoanRecord`` or raises a ``LibraryError`` carrying a ``FailureReason``.
    """

    def __init__(
        self,
        session: Session,
        rules: LendingRules | None = None,
        clock: Clock | None = None,
        retry_attempts: int | None = None,
    ):
        """
        Args:
            session: Database session; the engine commits and rolls it back
            rules: Lending rules, defaults to the configured ones
            clock: Source of "now", defaults to ``datetime.now``
            retry_attempts: Attempts per unit of work, defaults to configuration
        """
        self.session = session
        if rules is None:
            rules = get_config().lending_rules
        if retry_attempts is None:
            retry_attempts = get_config().conflict_retry_attempts
        if retry_attempts < 1:
            raise ValueError(f"retry_attempts must be at least 1, got {retry_attempts}")
        self.rules = rules
        self.clock = clock or datetime.now
        self.retry_attempts = retry_attempts
        self.book_repo = BookRepository(session)
        self.loan_repo = LoanRepository(session)
        self.user_repo = UserRepository(session)

    # === Unit of work ===

    def _run(self, operation: str, unit: Callable[[], T]) -> T:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                result = unit()
                self.session.commit()
                return result
            except LibraryError as e:
                self.session.rollback()
                logger.info("%s refused: %s (%s)", operation, e.reason.value, e.message)
                raise
            except (_LostRace, OperationalError) as e:
                self.session.rollback()
                logger.warning(
                    "%s lost a write conflict (attempt %d/%d): %s",
                    operation,
                    attempt,
                    self.retry_attempts,
                    e,
                )
            except Exception:
                self.session.rollback()
                logger.exception("%s failed, rolled back", operation)
                raise

        logger.error("%s gave up after %d attempts", operation, self.retry_attempts)
        raise ConflictError(
            f"{operation} could not complete because of concurrent updates, please retry",
            FailureReason.CONFLICT,
        )

    def _require_loan(self, loan_id: str) -> LoanRecord:
        loan = self.loan_repo.get_by_id(loan_id)
        if loan is None:
            raise NotFoundError("Borrow record not found", FailureReason.LOAN_NOT_FOUND)
        return loan

    # === Borrow ===

    def borrow_book(self, actor: Actor, request: BorrowRequest) -> LoanRecord:
        """
        Lend one copy of ``request.book_id`` to the acting user.

        Raises:
            InvalidStateError: INVALID_DUE_DATE for a due date not in the future
            NotFoundError: INACTIVE if the title is missing or withdrawn
            CapacityExceededError: UNAVAILABLE if no copy is on the shelf
            ConflictError: DUPLICATE_LOAN if the user already has this title
            LimitReachedError: BORROW_LIMIT_REACHED at the open-loan limit
        """
        return self._run("borrow_book", lambda: self._borrow_once(actor, request))

    def _borrow_once(self, actor: Actor, request: BorrowRequest) -> LoanRecord:
        now = self.clock()

        if request.due_date is not None:
            check_due_date(request.due_date, now).raise_if_denied()

        # Serializes borrows by the same user where the database supports it
        self.session.execute(
            select(UserDB.id).where(UserDB.id == actor.user_id).with_for_update()
        )

        user = self.user_repo.get_by_id(actor.user_id)
        book = self.book_repo.get_by_id(request.book_id)
        open_loans = self.loan_repo.list_open_loans(actor.user_id)
        can_borrow(user, book, open_loans, self.rules).raise_if_denied()

        due_date = request.due_date or default_due_date(now, self.rules)

        if not self.book_repo.reserve_copy(book.id):
            current = self.book_repo.get_by_id(book.id)
            if current is None or not current.is_active:
                raise NotFoundError("Book not found or inactive", FailureReason.INACTIVE)
            raise CapacityExceededError(
                "Book is not available for borrowing", FailureReason.UNAVAILABLE
            )

        try:
            loan = self.loan_repo.add(
                user_id=actor.user_id,
                book_id=book.id,
                borrow_date=now,
                due_date=due_date,
                notes=request.notes,
            )
        except IntegrityError as e:
            raise ConflictError(
                "You have already borrowed this book", FailureReason.DUPLICATE_LOAN
            ) from e

        # Re-count under the write lock; a parallel borrow may have landed
        if self.loan_repo.count_open_loans(actor.user_id) > self.rules.max_open_loans:
            raise LimitReachedError(
                f"Borrowing limit reached (maximum {self.rules.max_open_loans} books)",
                FailureReason.BORROW_LIMIT_REACHED,
            )

        logger.info(
            "User %s borrowed book %s as loan %s, due %s",
            actor.user_id,
            book.id,
            loan.id,
            due_date.isoformat(),
        )
        return loan

    # === Return ===

    def return_book(self, actor: Actor, loan_id: str) -> LoanRecord:
        """
        Close a loan and put the copy back on the shelf.

        Any days past the current due date are added to the fine.

        Raises:
            NotFoundError: LOAN_NOT_FOUND
            ForbiddenError: Neither the borrower nor an admin
            InvalidStateError: ALREADY_RETURNED or NOT_RETURNABLE (lost)
        """
        return self._run("return_book", lambda: self._return_once(actor, loan_id))

    def _return_once(self, actor: Actor, loan_id: str) -> LoanRecord:
        loan = self._require_loan(loan_id)
        can_access_loan(loan, actor, allow_admin=True).raise_if_denied()
        can_return(loan).raise_if_denied()

        now = self.clock()
        fine = compute_fine(loan, now, self.rules)

        won = self.loan_repo.transition(
            loan.id,
            from_statuses=OPEN_STATUSES,
            expected_renewals=loan.renewal_count,
            status=LoanStatus.RETURNED,
            return_date=now,
            fine_amount=LoanDB.fine_amount + fine,
            updated_at=now,
        )
        if not won:
            current = self._require_loan(loan_id)
            can_return(current).raise_if_denied()
            raise _LostRace(f"loan {loan_id} changed during return")

        if not self.book_repo.release_copy(loan.book_id):
            logger.warning(
                "Loan %s returned but book %s already had every copy on the shelf",
                loan.id,
                loan.book_id,
            )

        logger.info("Loan %s returned by %s, fine %.2f", loan.id, actor.user_id, fine)
        return self._require_loan(loan_id)

    # === Renew ===

    def renew_loan(self, actor: Actor, loan_id: str) -> LoanRecord:
        """
        Extend an open loan by the renewal period. Borrower only.

        If the loan is already late, the late days up to the new due date are
        charged now so the renewal does not forgive them.

        Raises:
            NotFoundError: LOAN_NOT_FOUND
            ForbiddenError: Not the borrower (admins included)
            InvalidStateError: NOT_RENEWABLE unless Borrowed or Overdue
            LimitReachedError: RENEWAL_LIMIT_REACHED
        """
        return self._run("renew_loan", lambda: self._renew_once(actor, loan_id))

    def _renew_once(self, actor: Actor, loan_id: str) -> LoanRecord:
        loan = self._require_loan(loan_id)
        can_access_loan(loan, actor, allow_admin=False).raise_if_denied()
        can_renew(loan, self.rules).raise_if_denied()

        now = self.clock()
        new_due_date = renewed_due_date(loan, self.rules)
        accrued = compute_fine(loan, min(now, new_due_date), self.rules)

        won = self.loan_repo.transition(
            loan.id,
            from_statuses=[loan.status],
            expected_renewals=loan.renewal_count,
            due_date=new_due_date,
            renewal_count=loan.renewal_count + 1,
            fine_amount=LoanDB.fine_amount + accrued,
            updated_at=now,
        )
        if not won:
            current = self._require_loan(loan_id)
            can_renew(current, self.rules).raise_if_denied()
            raise _LostRace(f"loan {loan_id} changed during renewal")

        logger.info(
            "Loan %s renewed (%d/%d), due %s, accrued fine %.2f",
            loan.id,
            loan.renewal_count + 1,
            self.rules.max_renewals,
            new_due_date.isoformat(),
            accrued,
        )
        return self._require_loan(loan_id)

    # === Lost ===

    def mark_lost(self, actor: Actor, loan_id: str) -> LoanRecord:
        """
        Record an open loan's copy as lost. Admin only.

        The late fine accrued so far is charged and the copy is written off
        the title's total.

        Raises:
            ForbiddenError: Not an admin
            NotFoundError: LOAN_NOT_FOUND
            InvalidStateError: ALREADY_RETURNED or NOT_RETURNABLE (already lost)
        """
        if not actor.is_admin:
            raise ForbiddenError("Only admins can mark loans as lost")
        return self._run("mark_lost", lambda: self._mark_lost_once(actor, loan_id))

    def _mark_lost_once(self, actor: Actor, loan_id: str) -> LoanRecord:
        loan = self._require_loan(loan_id)
        can_return(loan).raise_if_denied()

        now = self.clock()
        fine = compute_fine(loan, now, self.rules)

        won = self.loan_repo.transition(
            loan.id,
            from_statuses=OPEN_STATUSES,
            expected_renewals=loan.renewal_count,
            status=LoanStatus.LOST,
            fine_amount=LoanDB.fine_amount + fine,
            updated_at=now,
        )
        if not won:
            current = self._require_loan(loan_id)
            can_return(current).raise_if_denied()
            raise _LostRace(f"loan {loan_id} changed while marking lost")

        if not self.book_repo.write_off_copy(loan.book_id):
            logger.warning("Loan %s lost but book %s had no copy on loan", loan.id, loan.book_id)

        logger.info("Loan %s marked lost by %s, fine %.2f", loan.id, actor.user_id, fine)
        return self._require_loan(loan_id)

    # === Fines ===

    def pay_fine(self, actor: Actor, loan_id: str) -> LoanRecord:
        """
        Settle the outstanding fine on a closed loan.

        Raises:
            NotFoundError: LOAN_NOT_FOUND
            ForbiddenError: Neither the borrower nor an admin
            InvalidStateError: NO_OUTSTANDING_FINE
        """
        return self._run("pay_fine", lambda: self._pay_fine_once(actor, loan_id))

    def _pay_fine_once(self, actor: Actor, loan_id: str) -> LoanRecord:
        loan = self._require_loan(loan_id)
        can_access_loan(loan, actor, allow_admin=True).raise_if_denied()
        can_pay_fine(loan).raise_if_denied()

        now = self.clock()
        won = self.loan_repo.transition(
            loan.id,
            from_statuses=[loan.status],
            expected_fine_paid=False,
            fine_paid=True,
            fine_paid_date=now,
            updated_at=now,
        )
        if not won:
            current = self._require_loan(loan_id)
            can_pay_fine(current).raise_if_denied()
            raise _LostRace(f"loan {loan_id} changed during payment")

        logger.info("Fine of %.2f on loan %s paid", loan.fine_amount, loan.id)
        return self._require_loan(loan_id)
