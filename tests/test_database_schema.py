"""
Tests for database schema and session management.

These tests verify:
1. Database tables are created correctly
2. The copy-count and loan constraints hold even for writers that skip
   the repositories
3. Session management works properly
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError

from lending_library.database import (
    Book,
    DatabaseManager,
    LoanRecord,
    LoanStatusEnum,
    RoleEnum,
    User,
)

NOW = datetime(2024, 3, 1, 10, 0)


def user_row(suffix: str = "a", **fields) -> User:
    return User(
        **{
            "id": f"user_00000000000{suffix}",
            "name": "Schema User",
            "email": f"schema-{suffix}@example.com",
        }
        | fields
    )


def book_row(**fields) -> Book:
    return Book(
        **{
            "id": "book_00000000000a",
            "isbn": "9789999999999",
            "title": "Schema Book",
            "author": "Schema Author",
            "genre": "Fiction",
            "total_copies": 2,
            "available_copies": 2,
        }
        | fields
    )


def loan_row(suffix: str = "a", **fields) -> LoanRecord:
    return LoanRecord(
        **{
            "id": f"loan_00000000000{suffix}",
            "user_id": "user_00000000000a",
            "book_id": "book_00000000000a",
            "borrow_date": NOW,
            "due_date": NOW + timedelta(days=14),
        }
        | fields
    )


@pytest.fixture
def session(db_manager: DatabaseManager):
    with db_manager.session_scope() as session:
        yield session


@pytest.fixture
def seeded(db_manager: DatabaseManager):
    """A user and a book committed for loan tests."""
    with db_manager.session_scope() as session:
        session.add_all([user_row(), book_row()])


class TestDatabaseSchema:
    """Test schema creation and the constraints it carries."""

    def test_tables_created(self, db_manager: DatabaseManager):
        tables = set(inspect(db_manager.engine).get_table_names())

        assert tables == {"users", "books", "loan_records"}

    def test_open_loan_index_exists(self, db_manager: DatabaseManager):
        indexes = {ix["name"]: ix for ix in inspect(db_manager.engine).get_indexes("loan_records")}

        assert indexes["uq_loan_open_user_book"]["unique"]

    @pytest.mark.parametrize(
        "fields",
        [
            {"available_copies": 3},
            {"available_copies": -1},
            {"total_copies": -1, "available_copies": 0},
            {"borrow_count": -1},
            {"id": "gatsby"},
        ],
    )
    def test_book_constraints(self, db_manager: DatabaseManager, fields):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:  # noqa: PT012
            session.add(book_row(**fields))

    def test_unique_isbn(self, db_manager: DatabaseManager):
        with db_manager.session_scope() as session:
            session.add(book_row())

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:  # noqa: PT012
            session.add(book_row(id="book_00000000000b"))

    def test_unique_email(self, db_manager: DatabaseManager):
        with db_manager.session_scope() as session:
            session.add(user_row())

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:  # noqa: PT012
            session.add(user_row("b", email="schema-a@example.com"))

    @pytest.mark.parametrize(
        "fields",
        [
            {"renewal_count": 4},
            {"fine_amount": -1.0},
            {"due_date": NOW - timedelta(days=1)},
            {"return_date": NOW - timedelta(days=1)},
        ],
    )
    def test_loan_constraints(self, db_manager: DatabaseManager, seeded, fields):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:  # noqa: PT012
            session.add(loan_row(**fields))

    def test_foreign_keys_enforced(self, db_manager: DatabaseManager, seeded):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:  # noqa: PT012
            session.add(loan_row(user_id="user_ffffffffffff"))

    def test_one_open_loan_per_user_and_title(self, db_manager: DatabaseManager, seeded):
        with db_manager.session_scope() as session:
            session.add(loan_row("a"))

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:  # noqa: PT012
            session.add(loan_row("b", status=LoanStatusEnum.OVERDUE))

    def test_closed_loans_do_not_block(self, db_manager: DatabaseManager, seeded):
        with db_manager.session_scope() as session:
            session.add_all(
                [
                    loan_row("a", status=LoanStatusEnum.RETURNED, return_date=NOW),
                    loan_row("b", status=LoanStatusEnum.LOST),
                    loan_row("c"),
                ]
            )

        with db_manager.session_scope() as session:
            count = len(session.execute(select(LoanRecord)).scalars().all())
        assert count == 3


class TestSessionManagement:
    """Test database session management utilities."""

    def test_session_scope_commit(self, db_manager: DatabaseManager):
        with db_manager.session_scope() as session:
            session.add(user_row())

        with db_manager.session_scope() as session:
            assert session.get(User, "user_00000000000a") is not None

    def test_session_scope_rollback(self, db_manager: DatabaseManager):
        with pytest.raises(ValueError, match="Test error"), db_manager.session_scope() as session:
            session.add(user_row())
            session.flush()
            raise ValueError("Test error")

        with db_manager.session_scope() as session:
            assert session.get(User, "user_00000000000a") is None

    def test_memory_database(self):
        manager = DatabaseManager("sqlite:///:memory:")
        manager.init_database()
        try:
            with manager.session_scope() as session:
                session.add(user_row())
            with manager.session_scope() as session:
                assert session.get(User, "user_00000000000a") is not None
            assert manager.verify_connection()
        finally:
            manager.close()

    def test_drop_existing(self, db_manager: DatabaseManager):
        with db_manager.session_scope() as session:
            session.add(user_row())

        db_manager.init_database(drop_existing=True)

        with db_manager.session_scope() as session:
            assert session.get(User, "user_00000000000a") is None


class TestEnumHandling:
    """Test that enums are properly handled in the database."""

    def test_role_enum(self, session):
        session.add(user_row(role=RoleEnum.ADMIN))
        session.flush()

        saved = session.get(User, "user_00000000000a")
        assert saved.role == RoleEnum.ADMIN
        assert saved.role.value == "Admin"

    def test_loan_status_defaults_to_borrowed(self, session):
        session.add_all([user_row(), book_row()])
        session.flush()
        session.add(loan_row())
        session.flush()

        saved = session.get(LoanRecord, "loan_00000000000a")
        assert saved.status == LoanStatusEnum.BORROWED
        assert saved.renewal_count == 0
        assert saved.fine_paid is False
