"""
Circulation tools for the Lending Library MCP Server.

These tools drive the loan lifecycle:
1. borrow_book: Lend a copy to the acting user
2. return_book: Close a loan, charging any late days
3. renew_loan: Push the due date out by the renewal period
4. mark_loan_lost: Write off an unreturned copy (admin)
5. pay_fine: Settle the fine on a closed loan

MCP TOOLS ARCHITECTURE:
Tools are the side-effecting half of the protocol. Each handler here
validates its arguments with a Pydantic model, resolves the acting user,
makes exactly one call into the circulation repository (which owns the
transaction) and turns the outcome into an MCP result. Refusals come back
as ``isError`` results carrying the reason code, never as exceptions.

Identity: the ``actor_id`` argument is the already-verified user id handed
over by the transport layer. Authentication itself happens upstream.
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from pydantic import Field, ValidationError

from ..database.circulation_repository import CirculationRepository
from ..database.session import get_session, run_blocking
from ..database.user_repository import UserRepository
from ..errors import LibraryError, RepositoryException
from ..models.loan import BorrowRequest, LoanRecord
from .common import (
    ActorId,
    ActorInput,
    BookId,
    LoanId,
    error_response,
    invalid_input_response,
    provided,
    repository_error_response,
    success_response,
    tool_result,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)

DueDate = Annotated[
    datetime | None,
    Field(
        description="Optional due date; defaults to the standard loan period",
        examples=["2024-03-15T17:00:00"],
    ),
]
LoanNotes = Annotated[
    str | None,
    Field(description="Optional notes about this loan", max_length=500),
]


class LoanActionInput(ActorInput):
    """Arguments for tools acting on one existing loan."""

    loan_id: LoanId


def _loan_data(loan: LoanRecord) -> dict[str, Any]:
    data = loan.model_dump(mode="json")
    data["effective_status"] = loan.effective_status().value
    data["days_overdue"] = loan.days_overdue()
    return data


async def _run_loan_action(
    tool: str,
    input_model: type[LoanActionInput],
    arguments: dict[str, Any],
    action: str,
) -> tuple[LoanRecord, CirculationRepository] | dict[str, Any]:
    """
    Validate, resolve the actor and run one engine call on an existing loan.

    Returns the loan and the engine that produced it, or the error result.
    """
    try:
        params = input_model.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response(tool, e)

    logger.debug("%s: actor=%s loan=%s", tool, params.actor_id, params.loan_id)

    def unit() -> tuple[LoanRecord, CirculationRepository]:
        with get_session() as session:
            actor = UserRepository(session).get_actor(params.actor_id)
            circulation = CirculationRepository(session)
            return getattr(circulation, action)(actor, params.loan_id), circulation

    try:
        return await run_blocking(unit)
    except LibraryError as e:
        return error_response(tool, e)
    except RepositoryException as e:
        return repository_error_response(tool, e)
    except Exception as e:
        return unexpected_error_response(tool, e)


# =============================================================================
# BORROW TOOL
# =============================================================================


class BorrowBookInput(ActorInput):
    """
    Input schema for the borrow_book tool.

    The due date is optional; without it the standard loan period applies.
    A due date that is not in the future is refused by the lending rules
    with INVALID_DUE_DATE rather than rejected here, so the client gets the
    same reason code from every entry point.
    """

    book_id: BookId
    due_date: DueDate = None
    notes: LoanNotes = None


async def borrow_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the borrow_book tool.

    Args:
        arguments: Raw arguments from the MCP tools/call request

    Returns:
        The new loan, or an error result tagged with the refusal reason
    """
    try:
        params = BorrowBookInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("borrow_book", e)

    logger.debug("borrow_book: actor=%s book=%s", params.actor_id, params.book_id)

    def borrow() -> LoanRecord:
        with get_session() as session:
            actor = UserRepository(session).get_actor(params.actor_id)
            request = BorrowRequest(
                book_id=params.book_id,
                due_date=params.due_date,
                notes=params.notes,
            )
            return CirculationRepository(session).borrow_book(actor, request)

    try:
        loan = await run_blocking(borrow)
    except LibraryError as e:
        return error_response("borrow_book", e)
    except RepositoryException as e:
        return repository_error_response("borrow_book", e)
    except Exception as e:
        return unexpected_error_response("borrow_book", e)

    message = (
        f"Successfully borrowed book '{loan.book_id}' (loan {loan.id}). "
        f"Due date: {loan.due_date.strftime('%B %d, %Y')}"
    )
    return success_response(message, loan=_loan_data(loan))


async def borrow_book_tool(
    actor_id: ActorId,
    book_id: BookId,
    due_date: DueDate = None,
    notes: LoanNotes = None,
) -> dict[str, Any]:
    result = await borrow_book_handler(
        provided(actor_id=actor_id, book_id=book_id, due_date=due_date, notes=notes)
    )
    return tool_result(result)


# =============================================================================
# RETURN TOOL
# =============================================================================


class ReturnBookInput(LoanActionInput):
    """Input schema for the return_book tool. Borrower or admin."""


async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the return_book tool.

    MCP PATTERN - STATEFUL OPERATIONS:
    A return depends on the loan's current state. Two clients returning
    the same loan at once both reach the repository; exactly one succeeds
    and the other gets ALREADY_RETURNED.
    """
    outcome = await _run_loan_action("return_book", ReturnBookInput, arguments, "return_book")
    if isinstance(outcome, dict):
        return outcome
    loan, _ = outcome

    message = f"Successfully returned loan {loan.id}."
    if loan.has_outstanding_fine:
        message += f" Outstanding fine: ${loan.fine_amount:.2f}"
    return success_response(message, loan=_loan_data(loan))


async def return_book_tool(actor_id: ActorId, loan_id: LoanId) -> dict[str, Any]:
    return tool_result(await return_book_handler({"actor_id": actor_id, "loan_id": loan_id}))


# =============================================================================
# RENEW TOOL
# =============================================================================


class RenewLoanInput(LoanActionInput):
    """Input schema for the renew_loan tool. Borrower only."""


async def renew_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the renew_loan tool."""
    outcome = await _run_loan_action("renew_loan", RenewLoanInput, arguments, "renew_loan")
    if isinstance(outcome, dict):
        return outcome
    loan, circulation = outcome

    message = (
        f"Renewed loan {loan.id} ({loan.renewal_count}/{circulation.rules.max_renewals} "
        f"renewals). New due date: {loan.due_date.strftime('%B %d, %Y')}"
    )
    return success_response(message, loan=_loan_data(loan))


async def renew_loan_tool(actor_id: ActorId, loan_id: LoanId) -> dict[str, Any]:
    return tool_result(await renew_loan_handler({"actor_id": actor_id, "loan_id": loan_id}))


# =============================================================================
# LOST TOOL
# =============================================================================


class MarkLoanLostInput(LoanActionInput):
    """Input schema for the mark_loan_lost tool. Admin only."""


async def mark_loan_lost_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the mark_loan_lost tool."""
    outcome = await _run_loan_action("mark_loan_lost", MarkLoanLostInput, arguments, "mark_lost")
    if isinstance(outcome, dict):
        return outcome
    loan, _ = outcome

    message = f"Loan {loan.id} marked as lost; the copy was written off."
    return success_response(message, loan=_loan_data(loan))


async def mark_loan_lost_tool(actor_id: ActorId, loan_id: LoanId) -> dict[str, Any]:
    return tool_result(await mark_loan_lost_handler({"actor_id": actor_id, "loan_id": loan_id}))


# =============================================================================
# FINE TOOL
# =============================================================================


class PayFineInput(LoanActionInput):
    """Input schema for the pay_fine tool. Borrower or admin."""


async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the pay_fine tool."""
    outcome = await _run_loan_action("pay_fine", PayFineInput, arguments, "pay_fine")
    if isinstance(outcome, dict):
        return outcome
    loan, _ = outcome

    message = f"Paid fine of ${loan.fine_amount:.2f} on loan {loan.id}."
    return success_response(message, loan=_loan_data(loan))


async def pay_fine_tool(actor_id: ActorId, loan_id: LoanId) -> dict[str, Any]:
    return tool_result(await pay_fine_handler({"actor_id": actor_id, "loan_id": loan_id}))


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

borrow_book = {
    "name": "borrow_book",
    "description": (
        "Borrow one copy of a book for the acting user. Checks the account is "
        "active, the title is in the catalogue with a copy on the shelf, the user "
        "does not already hold it and is under the open-loan limit."
    ),
    "handler": borrow_book_tool,
}

return_book = {
    "name": "return_book",
    "description": (
        "Return a borrowed book. Puts the copy back on the shelf and adds a fine "
        "for every started day past the due date. Borrower or admin."
    ),
    "handler": return_book_tool,
}

renew_loan = {
    "name": "renew_loan",
    "description": (
        "Renew an open loan, extending the due date by the renewal period. "
        "Limited number of renewals per loan. Only the borrower may renew."
    ),
    "handler": renew_loan_tool,
}

mark_loan_lost = {
    "name": "mark_loan_lost",
    "description": (
        "Mark an open loan's copy as lost. Charges the late fine so far and "
        "removes the copy from the title's total. Admin only."
    ),
    "handler": mark_loan_lost_tool,
}

pay_fine = {
    "name": "pay_fine",
    "description": "Pay the outstanding fine on a returned or lost loan.",
    "handler": pay_fine_tool,
}
