"""
Database package for the Lending Library.

- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- Repositories for the catalogue, the loan ledger, accounts and the
  circulation engine that ties them together
"""

from .book_repository import BookRepository
from .circulation_repository import CirculationRepository
from .loan_repository import LoanRepository
from .repository import (
    BaseRepository,
    PaginatedResponse,
    PaginationParams,
)
from .schema import (
    Base,
    Book,
    LoanRecord,
    LoanStatusEnum,
    RoleEnum,
    User,
)
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)
from .user_repository import UserRepository

__all__ = [
    "Base",
    "BaseRepository",
    "Book",
    "BookRepository",
    "CirculationRepository",
    "DatabaseManager",
    "LoanRecord",
    "LoanRepository",
    "LoanStatusEnum",
    "PaginatedResponse",
    "PaginationParams",
    "RoleEnum",
    "User",
    "UserRepository",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
]
