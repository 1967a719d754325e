"""
Lending Library Models.

Pydantic models for the entities the library tracks. Repositories convert
database rows into these models so callers never hold live ORM objects.

- Book: Catalogue titles and their copy counts
- User: Accounts (Admin or Member) and the acting identity
- Loan: Loan records and borrow requests
"""

from .book import GENRES, Book
from .loan import OPEN_STATUSES, BorrowRequest, LoanRecord, LoanStatus
from .user import Actor, Role, User

__all__ = [
    "GENRES",
    "OPEN_STATUSES",
    "Actor",
    "Book",
    "BorrowRequest",
    "LoanRecord",
    "LoanStatus",
    "Role",
    "User",
]
