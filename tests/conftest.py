"""Test configuration and fixtures for the Lending Library.

1. Isolated test databases - each test gets its own SQLite file, set up
   through ``DatabaseManager`` so tests run against the same engine
   configuration as the server (foreign keys, ``BEGIN IMMEDIATE``)
2. A frozen clock for the circulation engine so due dates and fines are
   exact
3. Ready-made accounts and titles created through the repositories
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from lending_library.config import reset_config
from lending_library.database.book_repository import BookCreateSchema, BookRepository
from lending_library.database.circulation_repository import CirculationRepository
from lending_library.database.loan_repository import LoanRepository
from lending_library.database.session import DatabaseManager
from lending_library.database.user_repository import UserCreateSchema, UserRepository
from lending_library.models.book import Book
from lending_library.models.user import Actor, Role, User
from lending_library.policy import LendingRules

# Stands in for an existing admin when the first admin account is created
BOOTSTRAP_ADMIN = Actor(user_id="user_000000000000", role=Role.ADMIN)

FROZEN_NOW = datetime(2024, 3, 1, 10, 0, 0)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: tests that run several threads against one database file"
    )


class FrozenClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# === Configuration Fixtures ===


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path: Path) -> Generator[None, None, None]:
    """Every test starts from default settings, whatever the environment holds."""
    for key in ("LENDING_LIBRARY_MAX_OPEN_LOANS", "LENDING_LIBRARY_FINE_PER_DAY"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LENDING_LIBRARY_DATABASE_PATH", str(tmp_path / "configured.db"))
    reset_config()
    yield
    reset_config()


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Generator[Path, None, None]:
    """Provide a temporary database path for each test."""
    db_path = tmp_path / "test_library.db"
    yield db_path

    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def test_database_url(test_db_path: Path) -> str:
    """Provide a SQLAlchemy database URL for testing."""
    return f"sqlite:///{test_db_path}"


@pytest.fixture
def db_manager(test_database_url: str) -> Generator[DatabaseManager, None, None]:
    """Database manager over a fresh schema."""
    manager = DatabaseManager(test_database_url)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def test_db_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    """Provide a SQLAlchemy session for database tests.

    On a file database every transaction holds the write lock, so tests that
    start threads must commit this session first.
    """
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# === Engine Fixtures ===


@pytest.fixture
def lending_rules() -> LendingRules:
    return LendingRules()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def book_repo(test_db_session: Session) -> BookRepository:
    return BookRepository(test_db_session)


@pytest.fixture
def loan_repo(test_db_session: Session) -> LoanRepository:
    return LoanRepository(test_db_session)


@pytest.fixture
def user_repo(test_db_session: Session) -> UserRepository:
    return UserRepository(test_db_session)


@pytest.fixture
def circulation(
    test_db_session: Session, lending_rules: LendingRules, clock: FrozenClock
) -> CirculationRepository:
    return CirculationRepository(
        test_db_session, rules=lending_rules, clock=clock, retry_attempts=3
    )


# === Data Fixtures ===


@pytest.fixture
def admin(user_repo: UserRepository) -> User:
    return user_repo.create(
        UserCreateSchema(name="Ada Admin", email="ada@library.org", role=Role.ADMIN),
        actor=BOOTSTRAP_ADMIN,
    )


@pytest.fixture
def member(user_repo: UserRepository) -> User:
    return user_repo.create(UserCreateSchema(name="Mia Member", email="mia@example.com"))


@pytest.fixture
def other_member(user_repo: UserRepository) -> User:
    return user_repo.create(UserCreateSchema(name="Otto Other", email="otto@example.com"))


@pytest.fixture
def admin_actor(admin: User) -> Actor:
    return Actor(user_id=admin.id, role=admin.role)


@pytest.fixture
def member_actor(member: User) -> Actor:
    return Actor(user_id=member.id, role=member.role)


@pytest.fixture
def other_actor(other_member: User) -> Actor:
    return Actor(user_id=other_member.id, role=other_member.role)


@pytest.fixture
def make_book(book_repo: BookRepository) -> Callable[..., Book]:
    """Factory adding a title; ``isbn`` is required, other fields have defaults."""

    def _make_book(isbn: str, total_copies: int = 3, **fields) -> Book:
        data = {
            "isbn": isbn,
            "title": f"Book {isbn[-4:]}",
            "author": "Test Author",
            "genre": "Fiction",
            "publication_year": 2001,
            "total_copies": total_copies,
        } | fields
        return book_repo.create(BookCreateSchema(**data))

    return _make_book


@pytest.fixture
def book(make_book) -> Book:
    """A title with three copies on the shelf."""
    return make_book("9780743273565", total_copies=3, title="The Great Gatsby")


@pytest.fixture
def single_copy_book(make_book) -> Book:
    return make_book("9780452284234", total_copies=1, title="1984")
