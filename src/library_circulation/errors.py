"""
Outcome types for circulation operations.

Every public circulation operation returns a ``Result``: either a value, or a
``Failure`` naming a ``FailureReason`` and a human readable message. Callers
branch on ``Failure.kind`` (not found, precondition failed, conflict, ...) and
show ``Failure.message`` to people.

Inside the services a failed rule is raised as ``CirculationError`` so the
surrounding transaction rolls back; the operation boundary turns it into a
``Failure``. ``TransientError`` is the one outcome that is raised to callers,
because a timed out or unreachable database is not a business answer.
"""

import enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    """Broad categories callers can branch on."""

    NOT_FOUND = "not_found"
    PRECONDITION_FAILED = "precondition_failed"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    DATA_INCONSISTENCY = "data_inconsistency"


class FailureReason(str, enum.Enum):
    """Specific reasons an operation can be refused."""

    # Lookups
    MEMBER_NOT_FOUND = "member_not_found"
    BOOK_NOT_FOUND = "book_not_found"
    COPY_NOT_FOUND = "copy_not_found"
    LOAN_NOT_FOUND = "loan_not_found"
    RESERVATION_NOT_FOUND = "reservation_not_found"
    FINE_NOT_FOUND = "fine_not_found"

    # Membership
    DUPLICATE_MEMBER = "duplicate_member"
    INVALID_MEMBER_DETAILS = "invalid_member_details"

    # Borrowing eligibility
    MEMBER_NOT_ACTIVE = "member_not_active"
    EXCESSIVE_FINES = "excessive_fines"
    LOAN_LIMIT_REACHED = "loan_limit_reached"

    # Loans
    COPY_NOT_AVAILABLE = "copy_not_available"
    INVALID_DUE_DATE = "invalid_due_date"
    NOT_RETURNABLE = "not_returnable"
    NOT_ACTIVE = "not_active"
    INVALID_EXTENSION = "invalid_extension"
    EXTENSION_LIMIT_EXCEEDED = "extension_limit_exceeded"
    RESERVATION_CONFLICT = "reservation_conflict"
    EMPTY_REQUEST = "empty_request"

    # Reservations
    DUPLICATE_RESERVATION = "duplicate_reservation"
    COPIES_AVAILABLE = "copies_available"
    REASON_REQUIRED = "reason_required"

    # Fines
    ALREADY_SETTLED = "already_settled"
    PAYMENT_AMOUNT_MISMATCH = "payment_amount_mismatch"
    PAYMENT_METHOD_REQUIRED = "payment_method_required"
    INVALID_AMOUNT = "invalid_amount"

    # Catalog
    DUPLICATE_BOOK = "duplicate_book"
    INVALID_COPY_COUNT = "invalid_copy_count"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    BOOK_HAS_ACTIVE_LOANS = "book_has_active_loans"
    BOOK_HAS_ACTIVE_RESERVATIONS = "book_has_active_reservations"
    BOOK_HAS_HISTORY = "book_has_history"

    # Storage
    CONCURRENT_MODIFICATION = "concurrent_modification"
    DATABASE_UNAVAILABLE = "database_unavailable"
    DATA_INCONSISTENCY = "data_inconsistency"

    @property
    def kind(self) -> ErrorKind:
        if self in _NOT_FOUND_REASONS:
            return ErrorKind.NOT_FOUND
        if self is FailureReason.CONCURRENT_MODIFICATION:
            return ErrorKind.CONFLICT
        if self is FailureReason.DATABASE_UNAVAILABLE:
            return ErrorKind.TRANSIENT
        if self is FailureReason.DATA_INCONSISTENCY:
            return ErrorKind.DATA_INCONSISTENCY
        return ErrorKind.PRECONDITION_FAILED


_NOT_FOUND_REASONS = frozenset(
    {
        FailureReason.MEMBER_NOT_FOUND,
        FailureReason.BOOK_NOT_FOUND,
        FailureReason.COPY_NOT_FOUND,
        FailureReason.LOAN_NOT_FOUND,
        FailureReason.RESERVATION_NOT_FOUND,
        FailureReason.FINE_NOT_FOUND,
    }
)


class Failure(BaseModel):
    """Why an operation did not happen."""

    model_config = ConfigDict(frozen=True)

    reason: FailureReason
    message: str

    @property
    def kind(self) -> ErrorKind:
        return self.reason.kind


class Result(BaseModel, Generic[T]):
    """Value-or-failure returned by every public circulation operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: T | None = None
    error: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "Result[Any]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: FailureReason | Failure, message: str | None = None) -> "Result[Any]":
        if isinstance(reason, Failure):
            return cls(error=reason)
        return cls(error=Failure(reason=reason, message=message or reason.value))

    def unwrap(self) -> T:
        """Return the value, raising ``CirculationError`` for a failure."""
        if self.error is not None:
            raise CirculationError(self.error.reason, self.error.message)
        return self.value  # type: ignore[return-value]


class CirculationError(Exception):
    """A circulation rule refused the operation.

    Raised inside a transaction so that every change made so far is rolled back.
    """

    def __init__(self, reason: FailureReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    @property
    def kind(self) -> ErrorKind:
        return self.reason.kind

    @property
    def failure(self) -> Failure:
        return Failure(reason=self.reason, message=self.message)


class ConflictError(CirculationError):
    """A concurrent writer changed the same rows first."""

    def __init__(self, message: str = "The record was modified by another operation. Retry."):
        super().__init__(FailureReason.CONCURRENT_MODIFICATION, message)


class TransientError(Exception):
    """The database timed out or could not be reached."""

    reason = FailureReason.DATABASE_UNAVAILABLE
    kind = ErrorKind.TRANSIENT
