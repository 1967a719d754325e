"""
Error vocabulary for the Lending Library.

Every refusal the library can produce is tagged with a ``FailureReason``.
Each reason belongs to exactly one ``ErrorKind``, and each kind maps to an
HTTP-style status so a REST router or a GraphQL error extension can translate
failures mechanically. The policy layer returns reasons inside
``PolicyDecision`` objects; the repositories raise the matching
``LibraryError`` subclass so callers can catch by kind.
"""

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    """Broad failure categories, all recoverable at the request boundary."""

    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    CONFLICT = "Conflict"
    LIMIT_REACHED = "LimitReached"
    INVALID_STATE = "InvalidState"
    CAPACITY_EXCEEDED = "CapacityExceeded"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.LIMIT_REACHED: 422,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.CAPACITY_EXCEEDED: 400,
}


class FailureReason(str, enum.Enum):
    """Concrete reason codes surfaced to clients."""

    # NotFound
    BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
    LOAN_NOT_FOUND = "LOAN_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INACTIVE = "INACTIVE"

    # Forbidden
    FORBIDDEN = "FORBIDDEN"
    USER_INACTIVE = "USER_INACTIVE"

    # Conflict
    DUPLICATE_LOAN = "DUPLICATE_LOAN"
    DUPLICATE_ISBN = "DUPLICATE_ISBN"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    CONFLICT = "CONFLICT"

    # LimitReached
    BORROW_LIMIT_REACHED = "BORROW_LIMIT_REACHED"
    RENEWAL_LIMIT_REACHED = "RENEWAL_LIMIT_REACHED"

    # InvalidState
    ALREADY_RETURNED = "ALREADY_RETURNED"
    NOT_RETURNABLE = "NOT_RETURNABLE"
    NOT_RENEWABLE = "NOT_RENEWABLE"
    NO_OUTSTANDING_FINE = "NO_OUTSTANDING_FINE"
    INVALID_DUE_DATE = "INVALID_DUE_DATE"
    COPIES_ON_LOAN = "COPIES_ON_LOAN"
    SELF_DEACTIVATION = "SELF_DEACTIVATION"

    # CapacityExceeded
    UNAVAILABLE = "UNAVAILABLE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"

    @property
    def kind(self) -> ErrorKind:
        return _REASON_KINDS[self]


_REASON_KINDS: dict[FailureReason, ErrorKind] = {
    FailureReason.BOOK_NOT_FOUND: ErrorKind.NOT_FOUND,
    FailureReason.LOAN_NOT_FOUND: ErrorKind.NOT_FOUND,
    FailureReason.USER_NOT_FOUND: ErrorKind.NOT_FOUND,
    FailureReason.INACTIVE: ErrorKind.NOT_FOUND,
    FailureReason.FORBIDDEN: ErrorKind.FORBIDDEN,
    FailureReason.USER_INACTIVE: ErrorKind.FORBIDDEN,
    FailureReason.DUPLICATE_LOAN: ErrorKind.CONFLICT,
    FailureReason.DUPLICATE_ISBN: ErrorKind.CONFLICT,
    FailureReason.DUPLICATE_EMAIL: ErrorKind.CONFLICT,
    FailureReason.UNAVAILABLE: ErrorKind.CAPACITY_EXCEEDED,
    FailureReason.CONFLICT: ErrorKind.CONFLICT,
    FailureReason.BORROW_LIMIT_REACHED: ErrorKind.LIMIT_REACHED,
    FailureReason.RENEWAL_LIMIT_REACHED: ErrorKind.LIMIT_REACHED,
    FailureReason.ALREADY_RETURNED: ErrorKind.INVALID_STATE,
    FailureReason.NOT_RETURNABLE: ErrorKind.INVALID_STATE,
    FailureReason.NOT_RENEWABLE: ErrorKind.INVALID_STATE,
    FailureReason.NO_OUTSTANDING_FINE: ErrorKind.INVALID_STATE,
    FailureReason.INVALID_DUE_DATE: ErrorKind.INVALID_STATE,
    FailureReason.COPIES_ON_LOAN: ErrorKind.INVALID_STATE,
    FailureReason.SELF_DEACTIVATION: ErrorKind.INVALID_STATE,
    FailureReason.CAPACITY_EXCEEDED: ErrorKind.CAPACITY_EXCEEDED,
}


class RepositoryException(Exception):
    """Base exception for repository operations."""


class LibraryError(RepositoryException):
    """A business-rule refusal tagged with a ``FailureReason``."""

    default_reason: FailureReason = FailureReason.CONFLICT

    def __init__(self, message: str, reason: FailureReason | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason

    @property
    def kind(self) -> ErrorKind:
        return self.reason.kind

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def to_payload(self) -> dict[str, Any]:
        """Structured error body for the request boundary."""
        return {
            "code": self.reason.value,
            "kind": self.kind.value,
            "status": self.status_code,
            "message": self.message,
        }


class NotFoundError(LibraryError):
    """Raised when an entity is not found."""

    default_reason = FailureReason.BOOK_NOT_FOUND


class ForbiddenError(LibraryError):
    """Raised when the acting identity may not touch the target."""

    default_reason = FailureReason.FORBIDDEN


class ConflictError(LibraryError):
    """Raised on uniqueness collisions and lost races."""

    default_reason = FailureReason.CONFLICT


# Name used by the catalogue and account repositories for uniqueness collisions.
DuplicateError = ConflictError


class LimitReachedError(LibraryError):
    """Raised when a borrow or renewal limit is hit."""

    default_reason = FailureReason.BORROW_LIMIT_REACHED


class InvalidStateError(LibraryError):
    """Raised when a transition is not allowed from the current state."""

    default_reason = FailureReason.NOT_RENEWABLE


class CapacityExceededError(LibraryError):
    """Raised when a change would break the copy-count invariant."""

    default_reason = FailureReason.CAPACITY_EXCEEDED


_KIND_EXCEPTIONS: dict[ErrorKind, type[LibraryError]] = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.FORBIDDEN: ForbiddenError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.LIMIT_REACHED: LimitReachedError,
    ErrorKind.INVALID_STATE: InvalidStateError,
    ErrorKind.CAPACITY_EXCEEDED: CapacityExceededError,
}


def error_for(reason: FailureReason, message: str) -> LibraryError:
    """Build the exception whose kind matches ``reason``."""
    return _KIND_EXCEPTIONS[reason.kind](message, reason)
