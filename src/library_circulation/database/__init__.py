"""Database layer for the library circulation core."""

from .repository import PaginatedResponse, PaginationParams, Repository
from .schema import (
    OPEN_LOAN_STATUSES,
    AuditActionEnum,
    AuditLog,
    Base,
    Book,
    BookCopy,
    CopyConditionEnum,
    CopyStatusEnum,
    Fine,
    FineStatusEnum,
    FineTypeEnum,
    Loan,
    LoanStatusEnum,
    Member,
    MembershipStatusEnum,
    Reservation,
    ReservationStatusEnum,
)
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    session_scope,
)
from .unit_of_work import UnitOfWork

__all__ = [
    "OPEN_LOAN_STATUSES",
    "AuditActionEnum",
    "AuditLog",
    "Base",
    "Book",
    "BookCopy",
    "CopyConditionEnum",
    "CopyStatusEnum",
    "DatabaseManager",
    "Fine",
    "FineStatusEnum",
    "FineTypeEnum",
    "Loan",
    "LoanStatusEnum",
    "Member",
    "MembershipStatusEnum",
    "PaginatedResponse",
    "PaginationParams",
    "Repository",
    "Reservation",
    "ReservationStatusEnum",
    "UnitOfWork",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "session_scope",
]
