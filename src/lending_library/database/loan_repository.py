"""
Loan ledger for the Lending Library.

The ledger stores loan records and answers questions about them. It makes
no lending decisions: the circulation repository decides, then asks the
ledger to insert a loan or to move one from an expected state to a new one
with ``transition``. A transition is a single guarded UPDATE, so when two
requests race on the same loan exactly one of them sees ``True``.

Overdue is computed, not stored. ``overdue_filter`` matches Borrowed loans
whose due date has passed as well as rows an older writer stored as Overdue.
"""

import enum
import logging
from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import and_, func, or_, select, update

from ..database.schema import OPEN_LOAN_STATUSES, LoanStatusEnum
from ..database.schema import LoanRecord as LoanDB
from ..database.session import safe_query
from ..models.loan import LoanRecord as LoanModel
from ..models.loan import LoanStatus
from .repository import BaseRepository, PaginatedResponse, PaginationParams, new_id

logger = logging.getLogger(__name__)


class LoanFilterParams(BaseModel):
    """Filters for listing loans across the ledger."""

    status: LoanStatus | None = None  # Overdue matches computed overdue loans
    user_id: str | None = None
    book_id: str | None = None


class LoanSortOptions(str, enum.Enum):
    """Sorting options for loan queries."""

    BORROW_DATE = "borrow_date"
    DUE_DATE = "due_date"
    RETURN_DATE = "return_date"
    STATUS = "status"


def overdue_filter(as_of: datetime):
    """SQL condition for loans that are overdue at ``as_of``."""
    return or_(
        LoanDB.status == LoanStatusEnum.OVERDUE,
        and_(LoanDB.status == LoanStatusEnum.BORROWED, LoanDB.due_date < as_of),
    )


def open_filter():
    return LoanDB.status.in_(OPEN_LOAN_STATUSES)


class LoanRepository(BaseRepository[LoanDB, LoanModel]):
    """
    Repository for the loan ledger.

    Reads return ``LoanRecord`` models. Writes (``add`` and ``transition``)
    join the caller's transaction and never commit.
    """

    @property
    def model_class(self):
        return LoanDB

    @property
    def response_schema(self):
        return LoanModel

    def _to_response_model(self, db_obj: LoanDB) -> LoanModel:
        return LoanModel(
            id=db_obj.id,
            user_id=db_obj.user_id,
            book_id=db_obj.book_id,
            borrow_date=db_obj.borrow_date,
            due_date=db_obj.due_date,
            return_date=db_obj.return_date,
            status=LoanStatus(db_obj.status.value),
            renewal_count=db_obj.renewal_count,
            fine_amount=db_obj.fine_amount,
            fine_paid=db_obj.fine_paid,
            fine_paid_date=db_obj.fine_paid_date,
            notes=db_obj.notes,
            created_at=db_obj.created_at,
            updated_at=db_obj.updated_at,
        )

    def _list(self, query, error_msg: str) -> list[LoanModel]:
        query = query.execution_options(populate_existing=True)
        results = safe_query(self.session, lambda s: s.execute(query).scalars().all(), error_msg)
        return [self._to_response_model(row) for row in results]

    # === Writes ===

    def add(
        self,
        user_id: str,
        book_id: str,
        borrow_date: datetime,
        due_date: datetime,
        notes: str | None = None,
    ) -> LoanModel:
        """
        Insert a Borrowed loan and flush it.

        The flush is what trips the open-loan unique index, so a duplicate
        surfaces here as ``IntegrityError`` rather than at commit.
        """
        loan = LoanDB(
            id=new_id("loan"),
            user_id=user_id,
            book_id=book_id,
            borrow_date=borrow_date,
            due_date=due_date,
            status=LoanStatusEnum.BORROWED,
            renewal_count=0,
            fine_amount=0.0,
            fine_paid=False,
            notes=notes,
            created_at=borrow_date,
            updated_at=borrow_date,
        )
        self.session.add(loan)
        self.session.flush()
        return self._to_response_model(loan)

    def transition(
        self,
        loan_id: str,
        from_statuses: Iterable[LoanStatus],
        expected_renewals: int | None = None,
        expected_fine_paid: bool | None = None,
        **values,
    ) -> bool:
        """
        Apply ``values`` to a loan only if it is still in the observed state.

        Args:
            loan_id: Loan to update
            from_statuses: Statuses the loan must currently have
            expected_renewals: Renewal count the caller observed, if it matters
            expected_fine_paid: Fine-paid flag the caller observed, if it matters
            **values: Column values; ``status`` may be a ``LoanStatus``

        Returns:
            True if this call changed the row
        """
        if "status" in values:
            values["status"] = LoanStatusEnum[LoanStatus(values["status"]).name]

        conditions = [
            LoanDB.id == loan_id,
            LoanDB.status.in_([LoanStatusEnum[LoanStatus(s).name] for s in from_statuses]),
        ]
        if expected_renewals is not None:
            conditions.append(LoanDB.renewal_count == expected_renewals)
        if expected_fine_paid is not None:
            conditions.append(LoanDB.fine_paid.is_(expected_fine_paid))

        values.setdefault("updated_at", datetime.now())
        stmt = (
            update(LoanDB)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        won = self.session.execute(stmt).rowcount == 1
        logger.debug("transition %s -> %s", loan_id, won)
        return won

    # === Queries ===

    def find_open_loan(self, user_id: str, book_id: str) -> LoanModel | None:
        """The user's Borrowed/Overdue loan of this title, if any."""
        query = (
            select(LoanDB)
            .where(LoanDB.user_id == user_id, LoanDB.book_id == book_id, open_filter())
            .execution_options(populate_existing=True)
        )
        result = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to find open loan",
        )
        if result is None:
            return None
        return self._to_response_model(result)

    def count_open_loans(self, user_id: str) -> int:
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.user_id == user_id, open_filter())
        )
        return (
            safe_query(
                self.session, lambda s: s.execute(query).scalar(), "Failed to count open loans"
            )
            or 0
        )

    def list_open_loans(self, user_id: str) -> list[LoanModel]:
        query = (
            select(LoanDB)
            .where(LoanDB.user_id == user_id, open_filter())
            .order_by(LoanDB.due_date.asc(), LoanDB.id)
        )
        return self._list(query, "Failed to list open loans")

    def get_user_history(
        self,
        user_id: str,
        status: LoanStatus | None = None,
        pagination: PaginationParams | None = None,
        as_of: datetime | None = None,
    ) -> PaginatedResponse[LoanModel]:
        """A user's loans, newest first, optionally narrowed to one status."""
        return self.list_all(
            LoanFilterParams(user_id=user_id, status=status),
            pagination=pagination,
            as_of=as_of,
        )

    def list_all(
        self,
        filters: LoanFilterParams | None = None,
        pagination: PaginationParams | None = None,
        sort_by: LoanSortOptions = LoanSortOptions.BORROW_DATE,
        sort_desc: bool = True,
        as_of: datetime | None = None,
    ) -> PaginatedResponse[LoanModel]:
        """
        List loans across the ledger.

        Filtering by Overdue uses the computed view at ``as_of``; filtering
        by Borrowed returns only loans that are not yet overdue.
        """
        filters = filters or LoanFilterParams()
        as_of = as_of or datetime.now()
        query = select(LoanDB)

        if filters.user_id:
            query = query.where(LoanDB.user_id == filters.user_id)
        if filters.book_id:
            query = query.where(LoanDB.book_id == filters.book_id)

        if filters.status == LoanStatus.OVERDUE:
            query = query.where(overdue_filter(as_of))
        elif filters.status == LoanStatus.BORROWED:
            query = query.where(
                LoanDB.status == LoanStatusEnum.BORROWED, LoanDB.due_date >= as_of
            )
        elif filters.status is not None:
            query = query.where(LoanDB.status == LoanStatusEnum[filters.status.name])

        sort_field = {
            LoanSortOptions.BORROW_DATE: LoanDB.borrow_date,
            LoanSortOptions.DUE_DATE: LoanDB.due_date,
            LoanSortOptions.RETURN_DATE: LoanDB.return_date,
            LoanSortOptions.STATUS: LoanDB.status,
        }.get(sort_by, LoanDB.borrow_date)
        query = query.order_by(sort_field.desc() if sort_desc else sort_field.asc(), LoanDB.id)

        return self._paginate(query, pagination or PaginationParams())

    def list_overdue(
        self,
        as_of: datetime | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[LoanModel]:
        """Loans overdue at ``as_of``, most overdue first."""
        query = (
            select(LoanDB)
            .where(overdue_filter(as_of or datetime.now()))
            .order_by(LoanDB.due_date.asc(), LoanDB.id)
        )
        return self._paginate(query, pagination or PaginationParams())

    def list_due_between(self, start: datetime, end: datetime) -> list[LoanModel]:
        """Open loans due in ``[start, end)``, for due-date reminders."""
        query = (
            select(LoanDB)
            .where(open_filter(), LoanDB.due_date >= start, LoanDB.due_date < end)
            .order_by(LoanDB.due_date.asc(), LoanDB.id)
        )
        return self._list(query, "Failed to list loans by due date")
