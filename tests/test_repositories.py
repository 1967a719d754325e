"""
Tests for the account and ledger repositories.

Accounts are created, updated and soft-deleted through ``UserRepository``;
the ledger queries in ``LoanRepository`` read the loans the circulation
engine wrote, with Overdue computed at the time asked for.
"""

from datetime import timedelta

import pytest

from lending_library.database import PaginationParams
from lending_library.database.loan_repository import LoanFilterParams, LoanSortOptions
from lending_library.database.user_repository import (
    UserCreateSchema,
    UserSearchParams,
    UserUpdateSchema,
)
from lending_library.errors import (
    ConflictError,
    FailureReason,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from lending_library.models import BorrowRequest, LoanStatus, Role

# === Accounts ===


def test_self_registration_creates_a_member(user_repo):
    """Registering without an actor always yields an active Member."""
    user = user_repo.create(UserCreateSchema(name="Nina New", email="Nina.New@Example.com"))

    assert user.id.startswith("user_")
    assert user.role == Role.MEMBER
    assert user.is_active
    assert user.email == "nina.new@example.com"
    assert user_repo.get_by_email("NINA.NEW@example.com").id == user.id


def test_admin_accounts_need_an_admin(user_repo, member_actor):
    data = UserCreateSchema(name="Eve Admin", email="eve@library.org", role=Role.ADMIN)

    with pytest.raises(ForbiddenError):
        user_repo.create(data)
    with pytest.raises(ForbiddenError):
        user_repo.create(data, actor=member_actor)


def test_admin_creates_admin(user_repo, admin_actor):
    user = user_repo.create(
        UserCreateSchema(name="Eve Admin", email="eve@library.org", role=Role.ADMIN),
        actor=admin_actor,
    )

    assert user.is_admin


def test_duplicate_email_ignores_case(user_repo, member):
    with pytest.raises(ConflictError) as exc_info:
        user_repo.create(UserCreateSchema(name="Mia Again", email="MIA@example.com"))

    assert exc_info.value.reason == FailureReason.DUPLICATE_EMAIL


def test_get_actor(user_repo, admin, member, admin_actor):
    actor = user_repo.get_actor(admin.id)
    assert actor.user_id == admin.id
    assert actor.is_admin

    with pytest.raises(NotFoundError) as exc_info:
        user_repo.get_actor("user_ffffffffffff")
    assert exc_info.value.reason == FailureReason.USER_NOT_FOUND

    user_repo.deactivate(admin_actor, member.id)
    with pytest.raises(ForbiddenError) as exc_info:
        user_repo.get_actor(member.id)
    assert exc_info.value.reason == FailureReason.USER_INACTIVE


def test_members_edit_their_own_profile(user_repo, member, member_actor):
    updated = user_repo.update(
        member_actor,
        member.id,
        UserUpdateSchema(name="Mia M. Member", email="mia@new.example.com"),
    )

    assert updated.name == "Mia M. Member"
    assert updated.email == "mia@new.example.com"
    assert updated.role == Role.MEMBER


def test_members_cannot_escalate(user_repo, member, other_member, member_actor):
    with pytest.raises(ForbiddenError):
        user_repo.update(member_actor, member.id, UserUpdateSchema(role=Role.ADMIN))
    with pytest.raises(ForbiddenError):
        user_repo.update(member_actor, other_member.id, UserUpdateSchema(name="Hijacked"))

    assert user_repo.get_by_id(member.id).role == Role.MEMBER


def test_admin_changes_role_and_status(user_repo, member, admin_actor):
    promoted = user_repo.update(admin_actor, member.id, UserUpdateSchema(role=Role.ADMIN))
    assert promoted.is_admin

    suspended = user_repo.update(admin_actor, member.id, UserUpdateSchema(is_active=False))
    assert not suspended.is_active


def test_email_collision_on_update(user_repo, member, other_member, member_actor):
    with pytest.raises(ConflictError):
        user_repo.update(member_actor, member.id, UserUpdateSchema(email=other_member.email))


def test_deactivation_rules(user_repo, admin, member, admin_actor, member_actor):
    with pytest.raises(ForbiddenError):
        user_repo.deactivate(member_actor, admin.id)

    with pytest.raises(InvalidStateError) as exc_info:
        user_repo.deactivate(admin_actor, admin.id)
    assert exc_info.value.reason == FailureReason.SELF_DEACTIVATION

    with pytest.raises(NotFoundError):
        user_repo.deactivate(admin_actor, "user_ffffffffffff")

    assert not user_repo.deactivate(admin_actor, member.id).is_active


def test_deactivation_keeps_loan_history(
    user_repo, loan_repo, circulation, book, member, admin_actor, member_actor
):
    loan = circulation.borrow_book(member_actor, BorrowRequest(book_id=book.id))
    circulation.return_book(member_actor, loan.id)

    user_repo.deactivate(admin_actor, member.id)

    history = loan_repo.get_user_history(member.id)
    assert [item.id for item in history.items] == [loan.id]


def test_user_search(user_repo, admin, member, other_member, admin_actor):
    user_repo.deactivate(admin_actor, other_member.id)

    admins = user_repo.search(UserSearchParams(role=Role.ADMIN))
    assert [u.id for u in admins.items] == [admin.id]

    active_members = user_repo.search(UserSearchParams(role=Role.MEMBER, is_active=True))
    assert [u.id for u in active_members.items] == [member.id]

    by_text = user_repo.search(UserSearchParams(query="otto"))
    assert [u.id for u in by_text.items] == [other_member.id]


# === Loan ledger ===


@pytest.fixture
def three_loans(circulation, make_book, member_actor, clock):
    """Three loans a day apart, the last one returned."""
    loans = []
    for i in range(3):
        loans.append(
            circulation.borrow_book(
                member_actor, BorrowRequest(book_id=make_book(f"978000000003{i}").id)
            )
        )
        clock.advance(days=1)
    circulation.return_book(member_actor, loans[2].id)
    return loans


def test_history_is_newest_first(loan_repo, three_loans, member_actor):
    history = loan_repo.get_user_history(member_actor.user_id)

    assert [item.id for item in history.items] == [loan.id for loan in reversed(three_loans)]
    assert history.total == 3


def test_history_by_status(loan_repo, three_loans, member_actor, clock):
    returned = loan_repo.get_user_history(member_actor.user_id, status=LoanStatus.RETURNED)
    assert [item.id for item in returned.items] == [three_loans[2].id]

    clock.advance(days=20)
    overdue = loan_repo.get_user_history(
        member_actor.user_id, status=LoanStatus.OVERDUE, as_of=clock.now
    )
    borrowed = loan_repo.get_user_history(
        member_actor.user_id, status=LoanStatus.BORROWED, as_of=clock.now
    )
    assert {item.id for item in overdue.items} == {three_loans[0].id, three_loans[1].id}
    assert borrowed.total == 0


def test_history_pagination(loan_repo, three_loans, member_actor):
    page = loan_repo.get_user_history(
        member_actor.user_id, pagination=PaginationParams(page=2, page_size=2)
    )

    assert [item.id for item in page.items] == [three_loans[0].id]
    assert page.has_previous and not page.has_next
    assert page.total_pages == 2


def test_open_loans(loan_repo, three_loans, member_actor):
    open_loans = loan_repo.list_open_loans(member_actor.user_id)

    assert [loan.id for loan in open_loans] == [three_loans[0].id, three_loans[1].id]
    assert loan_repo.count_open_loans(member_actor.user_id) == 2
    assert loan_repo.find_open_loan(member_actor.user_id, three_loans[1].book_id).id == (
        three_loans[1].id
    )
    assert loan_repo.find_open_loan(member_actor.user_id, three_loans[2].book_id) is None


def test_overdue_is_computed_at_the_time_asked(loan_repo, three_loans, clock):
    first_due = three_loans[0].due_date

    assert loan_repo.list_overdue(as_of=first_due).total == 0

    late = loan_repo.list_overdue(as_of=first_due + timedelta(hours=1))
    assert [loan.id for loan in late.items] == [three_loans[0].id]

    later = loan_repo.list_overdue(as_of=first_due + timedelta(days=2))
    assert [loan.id for loan in later.items] == [three_loans[0].id, three_loans[1].id]


def test_stored_overdue_rows_are_still_overdue(loan_repo, three_loans, test_db_session):
    loan_repo.transition(
        three_loans[1].id, from_statuses=[LoanStatus.BORROWED], status=LoanStatus.OVERDUE
    )
    test_db_session.commit()

    overdue = loan_repo.list_overdue(as_of=three_loans[0].borrow_date)

    assert [loan.id for loan in overdue.items] == [three_loans[1].id]
    assert loan_repo.count_open_loans(three_loans[1].user_id) == 2


def test_list_all_filters(loan_repo, three_loans, other_actor, circulation, book):
    other_loan = circulation.borrow_book(other_actor, BorrowRequest(book_id=book.id))

    by_user = loan_repo.list_all(LoanFilterParams(user_id=other_actor.user_id))
    assert [loan.id for loan in by_user.items] == [other_loan.id]

    by_book = loan_repo.list_all(LoanFilterParams(book_id=three_loans[0].book_id))
    assert [loan.id for loan in by_book.items] == [three_loans[0].id]

    lost = loan_repo.list_all(LoanFilterParams(status=LoanStatus.LOST))
    assert lost.total == 0

    by_due = loan_repo.list_all(sort_by=LoanSortOptions.DUE_DATE, sort_desc=False)
    assert by_due.items[0].id == three_loans[0].id


def test_due_between(loan_repo, three_loans):
    first_due = three_loans[0].due_date

    due_soon = loan_repo.list_due_between(first_due, first_due + timedelta(days=1))
    assert [loan.id for loan in due_soon] == [three_loans[0].id]

    # Returned loans are not due
    window = loan_repo.list_due_between(first_due, first_due + timedelta(days=7))
    assert [loan.id for loan in window] == [three_loans[0].id, three_loans[1].id]


def test_transition_is_guarded(loan_repo, three_loans, test_db_session):
    open_loan = three_loans[0]

    assert not loan_repo.transition(
        open_loan.id, from_statuses=[LoanStatus.RETURNED], status=LoanStatus.LOST
    )
    assert not loan_repo.transition(
        open_loan.id,
        from_statuses=[LoanStatus.BORROWED],
        expected_renewals=2,
        renewal_count=3,
    )
    assert loan_repo.transition(
        open_loan.id, from_statuses=[LoanStatus.BORROWED], status=LoanStatus.LOST
    )
    test_db_session.commit()

    assert loan_repo.get_by_id(open_loan.id).status == LoanStatus.LOST
