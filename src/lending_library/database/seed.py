"""
Sample data for the Lending Library.

Generates a catalogue, a set of accounts and a few months of circulation
history. Everything goes through the repositories and the circulation
engine with a clock that walks forward one day at a time, so the history
obeys the same rules as live traffic: copy counts stay consistent, limits
hold, and loans still out at the end are genuinely overdue.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from ..errors import LibraryError
from ..models.book import GENRES
from ..models.loan import BorrowRequest
from ..models.user import Actor, Role
from .book_repository import BookCreateSchema, BookRepository
from .circulation_repository import CirculationRepository
from .user_repository import UserCreateSchema, UserRepository

logger = logging.getLogger(__name__)

# Stands in for an existing admin when creating the first admin account
BOOTSTRAP_ADMIN = Actor(user_id="user_000000000000", role=Role.ADMIN)


@dataclass
class SeedClock:
    """Mutable clock handed to the circulation engine."""

    now: datetime

    def __call__(self) -> datetime:
        return self.now


@dataclass
class SeedSummary:
    books: int = 0
    users: int = 0
    loans: int = 0
    returned: int = 0
    refused: dict[str, int] = field(default_factory=dict)


def generate_isbn13(rng: random.Random) -> str:
    """Generate a valid ISBN-13 number."""
    body = f"978{rng.randint(0, 9)}{rng.randint(1000, 9999)}{rng.randint(1000, 9999)}"
    total = sum(int(digit) * (3 if i % 2 else 1) for i, digit in enumerate(body))
    return f"{body}{(10 - total % 10) % 10}"


def seed_database(
    session: Session,
    num_books: int = 60,
    num_users: int = 20,
    days_of_history: int = 90,
    seed: int = 42,
) -> SeedSummary:
    """
    Fill an empty database with sample data.

    Args:
        session: Session on an initialized, empty schema
        num_books: Titles to add
        num_users: Member accounts to add (plus one admin)
        days_of_history: Days of simulated borrowing and returning
        seed: Seed for repeatable output
    """
    rng = random.Random(seed)
    fake = Faker()
    fake.seed_instance(seed)
    summary = SeedSummary()

    users = UserRepository(session)
    admin = users.create(
        UserCreateSchema(name="Library Admin", email="admin@library.org", role=Role.ADMIN),
        actor=BOOTSTRAP_ADMIN,
    )
    members = [
        users.create(UserCreateSchema(name=fake.name(), email=fake.unique.email()))
        for _ in range(num_users)
    ]
    summary.users = len(members) + 1
    logger.info("Created admin %s and %d members", admin.id, len(members))

    catalogue = BookRepository(session)
    books = []
    while len(books) < num_books:
        isbn = generate_isbn13(rng)
        if catalogue.get_by_isbn(isbn) is not None:
            continue
        books.append(
            catalogue.create(
                BookCreateSchema(
                    isbn=isbn,
                    title=fake.catch_phrase().title()[:200],
                    author=fake.name(),
                    genre=rng.choice(GENRES),
                    publication_year=rng.randint(1900, datetime.now().year),
                    description=fake.text(max_nb_chars=400),
                    publisher=fake.company()[:100],
                    pages=rng.randint(80, 900),
                    total_copies=rng.randint(1, 4),
                )
            )
        )
    summary.books = len(books)
    logger.info("Created %d books", len(books))

    clock = SeedClock(datetime.now().replace(microsecond=0) - timedelta(days=days_of_history))
    circulation = CirculationRepository(session, clock=clock)
    open_loans: list[tuple[Actor, str]] = []

    for _day in range(days_of_history):
        clock.now += timedelta(days=1)

        still_open = []
        for actor, loan_id in open_loans:
            if rng.random() < 0.12:
                circulation.return_book(actor, loan_id)
                summary.returned += 1
            else:
                still_open.append((actor, loan_id))
        open_loans = still_open

        for _ in range(rng.randint(0, 4)):
            member = rng.choice(members)
            actor = Actor(user_id=member.id, role=member.role)
            book = rng.choice(books)
            try:
                loan = circulation.borrow_book(actor, BorrowRequest(book_id=book.id))
            except LibraryError as e:
                summary.refused[e.reason.value] = summary.refused.get(e.reason.value, 0) + 1
                continue
            open_loans.append((actor, loan.id))
            summary.loans += 1

    logger.info(
        "Simulated %d days: %d loans, %d returned, %d still out, refusals %s",
        days_of_history,
        summary.loans,
        summary.returned,
        len(open_loans),
        summary.refused,
    )
    return summary
