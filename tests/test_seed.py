"""Tests for the sample data generator."""

import random

from sqlalchemy import func, select

from lending_library.database.schema import Book, LoanRecord, LoanStatusEnum, User
from lending_library.database.seed import generate_isbn13, seed_database


def test_generated_isbns_have_valid_check_digit():
    rng = random.Random(7)
    for _ in range(20):
        isbn = generate_isbn13(rng)
        assert len(isbn) == 13
        assert sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(isbn)) % 10 == 0


def test_seed_counts(test_db_session):
    summary = seed_database(test_db_session, num_books=8, num_users=4, days_of_history=20)

    assert summary.books == 8
    assert summary.users == 5
    assert test_db_session.scalar(select(func.count()).select_from(Book)) == 8
    assert test_db_session.scalar(select(func.count()).select_from(User)) == 5
    assert test_db_session.scalar(select(func.count()).select_from(LoanRecord)) == summary.loans


def test_seeded_copy_counts_match_open_loans(test_db_session):
    seed_database(test_db_session, num_books=6, num_users=4, days_of_history=30)

    for book in test_db_session.scalars(select(Book)):
        open_loans = test_db_session.scalar(
            select(func.count())
            .select_from(LoanRecord)
            .where(
                LoanRecord.book_id == book.id,
                LoanRecord.status == LoanStatusEnum.BORROWED,
            )
        )
        assert book.available_copies + open_loans == book.total_copies
