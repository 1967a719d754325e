"""Loan Resources - Ledger Views

Read-only views over the loan ledger.

Resources:
- library://loans/list - The ledger, newest loans first
- library://loans/list/{page} - Any page of the ledger
- library://loans/by-status/{status} - Loans in one status (borrowed, overdue, returned, lost)
- library://loans/by-status/{status}/{page} - Further pages of a status view
- library://loans/due/{start}/{end} - Open loans due in [start, end), ISO dates
- library://loans/overdue - Open loans past their due date, most overdue first
- library://users/{user_id}/loans/active - A user's open loans
- library://users/{user_id}/loans/history - A user's loans, newest first

Overdue is worked out at read time from the due date, so these views are
always current without a background job. Open loans also show the fine
that would be charged if the copy came back now.
"""

import logging
from datetime import datetime
from typing import Any
from urllib.parse import unquote

from fastmcp.exceptions import ResourceError

from ..config import get_config
from ..database.loan_repository import LoanFilterParams, LoanRepository
from ..database.repository import PaginatedResponse, PaginationParams
from ..database.session import run_blocking, session_scope
from ..database.user_repository import UserRepository
from ..models.loan import LoanRecord, LoanStatus
from ..policy import LendingRules, compute_fine
from .books import page_params, page_view

logger = logging.getLogger(__name__)

LEDGER_PAGE_SIZE = 50


def loan_view(loan: LoanRecord, as_of: datetime, rules: LendingRules) -> dict[str, Any]:
    """Serialize a loan with its status and fine as seen at ``as_of``."""
    data = loan.model_dump(mode="json")
    data["effective_status"] = loan.effective_status(as_of).value
    data["days_overdue"] = loan.days_overdue(as_of)
    data["fine_if_returned_now"] = (
        round(loan.fine_amount + compute_fine(loan, as_of, rules), 2)
        if loan.is_open
        else loan.fine_amount
    )
    return data


def _parse_status(status: str) -> LoanStatus:
    for candidate in LoanStatus:
        if candidate.value.lower() == status.lower():
            return candidate
    raise ResourceError(f"Unknown loan status: {status}")


def _parse_moment(value: str) -> datetime:
    try:
        return datetime.fromisoformat(unquote(value))
    except ValueError as e:
        raise ResourceError(f"Invalid date: {value} (expected ISO 8601)") from e


async def _list_loans(
    name: str, filters: LoanFilterParams, pagination: PaginationParams
) -> dict[str, Any]:
    now = datetime.now()
    rules = get_config().lending_rules

    def query() -> PaginatedResponse[LoanRecord]:
        with session_scope() as session:
            return LoanRepository(session).list_all(filters, pagination=pagination, as_of=now)

    logger.debug("MCP Resource Request - %s: page=%d", name, pagination.page)
    try:
        page = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in %s resource", name)
        raise ResourceError(f"Failed to retrieve loans: {e!s}") from e

    data = page_view(page, "loans", [loan_view(loan, now, rules) for loan in page.items])
    data["as_of"] = now.isoformat()
    if filters.status is not None:
        data["status"] = filters.status.value
    return data


async def list_loans_handler() -> dict[str, Any]:
    """Returns the newest loans across the ledger."""
    return await loans_page_handler(1)


async def loans_page_handler(page: int) -> dict[str, Any]:
    return await _list_loans(
        "loans/list", LoanFilterParams(), page_params(page, LEDGER_PAGE_SIZE)
    )


async def loans_by_status_handler(status: str, page: int = 1) -> dict[str, Any]:
    """
    Returns loans in one status, newest first.

    Overdue and Borrowed are read from the due date, so a borrowed loan
    past its due date is listed under overdue only.
    """
    return await _list_loans(
        "loans/by-status",
        LoanFilterParams(status=_parse_status(unquote(status))),
        page_params(page, LEDGER_PAGE_SIZE),
    )


async def loans_due_between_handler(start: str, end: str) -> dict[str, Any]:
    """Returns open loans falling due in ``[start, end)``, soonest first."""
    window_start, window_end = _parse_moment(start), _parse_moment(end)
    if window_end <= window_start:
        raise ResourceError("The end of the window must be after its start")

    now = datetime.now()
    rules = get_config().lending_rules

    def query() -> list[LoanRecord]:
        with session_scope() as session:
            return LoanRepository(session).list_due_between(window_start, window_end)

    try:
        loans = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in loans/due resource")
        raise ResourceError(f"Failed to retrieve loans due: {e!s}") from e

    return {
        "start": window_start.isoformat(),
        "end": window_end.isoformat(),
        "as_of": now.isoformat(),
        "loans": [loan_view(loan, now, rules) for loan in loans],
        "total": len(loans),
    }


async def overdue_loans_handler() -> dict[str, Any]:
    """Returns every loan overdue right now."""
    now = datetime.now()
    rules = get_config().lending_rules

    def query() -> PaginatedResponse[LoanRecord]:
        with session_scope() as session:
            return LoanRepository(session).list_overdue(
                as_of=now, pagination=PaginationParams(page_size=100)
            )

    try:
        page = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in loans/overdue resource")
        raise ResourceError(f"Failed to retrieve overdue loans: {e!s}") from e

    return {
        "as_of": now.isoformat(),
        "loans": [loan_view(loan, now, rules) for loan in page.items],
        "total": page.total,
        "has_next": page.has_next,
    }


async def active_loans_handler(user_id: str) -> dict[str, Any]:
    """Returns a user's open loans, soonest due first."""
    now = datetime.now()
    rules = get_config().lending_rules

    def query() -> tuple[bool, list[LoanRecord]]:
        with session_scope() as session:
            if UserRepository(session).get_by_id(user_id) is None:
                return False, []
            return True, LoanRepository(session).list_open_loans(user_id)

    try:
        logger.debug("MCP Resource Request - users/%s/loans/active", user_id)
        found, loans = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in users/{user_id}/loans/active resource")
        raise ResourceError(f"Failed to retrieve active loans: {e!s}") from e

    if not found:
        raise ResourceError(f"User not found: {user_id}")

    return {
        "user_id": user_id,
        "as_of": now.isoformat(),
        "loans": [loan_view(loan, now, rules) for loan in loans],
        "total": len(loans),
        "limit": rules.max_open_loans,
        "overdue": sum(1 for loan in loans if loan.is_overdue(now)),
    }


async def loan_history_handler(user_id: str) -> dict[str, Any]:
    """Returns the latest page of a user's loan history."""
    now = datetime.now()
    rules = get_config().lending_rules

    def query() -> PaginatedResponse[LoanRecord] | None:
        with session_scope() as session:
            if UserRepository(session).get_by_id(user_id) is None:
                return None
            return LoanRepository(session).get_user_history(
                user_id, pagination=PaginationParams(page_size=50), as_of=now
            )

    try:
        logger.debug("MCP Resource Request - users/%s/loans/history", user_id)
        page = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in users/{user_id}/loans/history resource")
        raise ResourceError(f"Failed to retrieve loan history: {e!s}") from e

    if page is None:
        raise ResourceError(f"User not found: {user_id}")

    return {
        "user_id": user_id,
        "loans": [loan_view(loan, now, rules) for loan in page.items],
        "total": page.total,
        "page": page.page,
        "total_pages": page.total_pages,
        "has_next": page.has_next,
    }


loan_resources: list[dict[str, Any]] = [
    {
        "uri": "library://loans/list",
        "name": "Loan Ledger",
        "description": "Every loan, newest first, 50 per page, with overdue status and fines",
        "mime_type": "application/json",
        "handler": list_loans_handler,
    },
    {
        "uri_template": "library://loans/list/{page}",
        "name": "Loan Ledger Page",
        "description": "One page of the loan ledger",
        "mime_type": "application/json",
        "handler": loans_page_handler,
    },
    {
        "uri_template": "library://loans/by-status/{status}",
        "name": "Loans by Status",
        "description": "Loans in one status: borrowed, overdue, returned or lost",
        "mime_type": "application/json",
        "handler": loans_by_status_handler,
    },
    {
        "uri_template": "library://loans/by-status/{status}/{page}",
        "name": "Loans by Status Page",
        "description": "A further page of loans in one status",
        "mime_type": "application/json",
        "handler": loans_by_status_handler,
    },
    {
        "uri_template": "library://loans/due/{start}/{end}",
        "name": "Loans Due",
        "description": (
            "Open loans falling due from start up to, not including, end. Both are "
            "ISO 8601 dates or date-times, for due-date reminders."
        ),
        "mime_type": "application/json",
        "handler": loans_due_between_handler,
    },
    {
        "uri": "library://loans/overdue",
        "name": "Overdue Loans",
        "description": (
            "Every open loan past its due date, most overdue first, with the days "
            "overdue and the fine that would be charged on return today"
        ),
        "mime_type": "application/json",
        "handler": overdue_loans_handler,
    },
    {
        "uri_template": "library://users/{user_id}/loans/active",
        "name": "Active Loans",
        "description": "A user's open loans with due dates and overdue status",
        "mime_type": "application/json",
        "handler": active_loans_handler,
    },
    {
        "uri_template": "library://users/{user_id}/loans/history",
        "name": "Loan History",
        "description": "A user's loans, newest first, including returned and lost copies",
        "mime_type": "application/json",
        "handler": loan_history_handler,
    },
]
