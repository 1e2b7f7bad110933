"""
SQLAlchemy database schema for the library circulation core.

These tables hold the state the circulation services move through: members,
books and their physical copies, loans, reservation queues, fines, and the
audit trail. The Pydantic models in ``library_circulation.models`` mirror them
for everything handed back to callers.

Two invariants are enforced by the database as well as by the services:

1. At most one open (Active or Overdue) loan per copy
2. At most one Active reservation per member per book

Both are partial unique indexes, so a concurrent writer that slips past the
service checks still fails at commit instead of corrupting the data.
"""

import enum
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

ZERO = Decimal("0.00")


class MembershipStatusEnum(str, enum.Enum):
    """Database enum for membership status."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class CopyStatusEnum(str, enum.Enum):
    """Database enum for the status of a physical copy."""

    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"
    LOST = "lost"
    DAMAGED = "damaged"


class CopyConditionEnum(str, enum.Enum):
    """Condition of a copy as recorded at return."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"
    LOST = "lost"


class LoanStatusEnum(str, enum.Enum):
    """Database enum for loan status."""

    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    LOST = "lost"


class ReservationStatusEnum(str, enum.Enum):
    """Database enum for reservation status."""

    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class FineTypeEnum(str, enum.Enum):
    """Why a fine was charged."""

    OVERDUE = "overdue"
    LOST = "lost"
    DAMAGE = "damage"


class FineStatusEnum(str, enum.Enum):
    """Database enum for fine status."""

    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class AuditActionEnum(str, enum.Enum):
    """Actions written to the audit log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CHECKOUT = "checkout"
    RETURN = "return"
    RENEW = "renew"
    LOST = "lost"
    RESERVE = "reserve"
    CANCEL = "cancel"
    FULFILL = "fulfill"
    EXPIRE = "expire"
    FINE_ASSESSED = "fine_assessed"
    FINE_PAID = "fine_paid"
    FINE_WAIVED = "fine_waived"
    RECONCILE = "reconcile"


# Loans in these states hold their copy and count against the member's limit
OPEN_LOAN_STATUSES = (LoanStatusEnum.ACTIVE, LoanStatusEnum.OVERDUE)


class Member(Base):
    """
    Members table - library members who borrow and reserve books.

    ``outstanding_fines`` and ``current_loan_count`` are cached projections of
    the member's Pending fines and open loans. Every mutating operation updates
    them in the same transaction; the reconciliation service verifies them.
    """

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    membership_number = Column(String(20), nullable=False, unique=True)
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True)
    status = Column(
        Enum(MembershipStatusEnum), nullable=False, default=MembershipStatusEnum.ACTIVE
    )
    outstanding_fines = Column(Numeric(10, 2), nullable=False, default=ZERO)
    current_loan_count = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    # Relationships
    loans = relationship("Loan", back_populates="member")
    reservations = relationship("Reservation", back_populates="member")
    fines = relationship("Fine", back_populates="member")

    __table_args__ = (
        Index("idx_member_status", "status"),
        CheckConstraint("outstanding_fines >= 0", name="check_fines_non_negative"),
        CheckConstraint("current_loan_count >= 0", name="check_loan_count_non_negative"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatusEnum.ACTIVE


class Book(Base):
    """
    Books table - catalog titles.

    A book owns its copies. Deleting a book is an explicit routine in the
    catalog service, so no ORM cascade is configured here.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(13), nullable=False, unique=True)
    title = Column(String(500), nullable=False)
    author = Column(String(200), nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copies = relationship("BookCopy", back_populates="book", order_by="BookCopy.id")
    reservations = relationship("Reservation", back_populates="book")

    __table_args__ = (
        Index("idx_book_title", "title"),
        Index("idx_book_author", "author"),
    )


class BookCopy(Base):
    """
    Book copies table - the physical items that are lent out.

    ``version`` is SQLAlchemy's optimistic concurrency counter: every UPDATE
    checks the version it read, so two transactions racing to change the same
    copy cannot both succeed.
    """

    __tablename__ = "book_copies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    copy_number = Column(String(50), nullable=False)
    status = Column(Enum(CopyStatusEnum), nullable=False, default=CopyStatusEnum.AVAILABLE)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="copies")
    loans = relationship("Loan", back_populates="book_copy")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("book_id", "copy_number", name="uq_copy_number_per_book"),
        Index("idx_copy_book_status", "book_id", "status"),
    )


class Loan(Base):
    """
    Loans table - one row per lending of a copy to a member.

    Once Returned a loan is history: only fines may still reference it.
    """

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    book_copy_id = Column(Integer, ForeignKey("book_copies.id"), nullable=False)
    loan_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(Enum(LoanStatusEnum), nullable=False, default=LoanStatusEnum.ACTIVE)
    return_condition = Column(Enum(CopyConditionEnum), nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="loans")
    book_copy = relationship("BookCopy", back_populates="loans")
    fines = relationship("Fine", back_populates="loan")

    __table_args__ = (
        Index("idx_loan_member_status", "member_id", "status"),
        Index("idx_loan_due_date", "due_date"),
        # Enum columns store member names, hence the upper-case literals
        Index(
            "uq_open_loan_per_copy",
            "book_copy_id",
            unique=True,
            sqlite_where=text("status IN ('ACTIVE', 'OVERDUE')"),
            postgresql_where=text("status IN ('ACTIVE', 'OVERDUE')"),
        ),
        CheckConstraint("renewal_count >= 0", name="check_renewal_count_non_negative"),
    )

    @property
    def book_id(self) -> int:
        return self.book_copy.book_id

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LOAN_STATUSES


class Reservation(Base):
    """
    Reservations table - per-book FIFO hold queues.

    Queue order is (reservation_date, id); no position is stored, so cancelling
    one entry never renumbers the others.
    """

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    book_copy_id = Column(Integer, ForeignKey("book_copies.id"), nullable=True)
    reservation_date = Column(DateTime, nullable=False)
    status = Column(
        Enum(ReservationStatusEnum), nullable=False, default=ReservationStatusEnum.ACTIVE
    )
    notes = Column(Text, nullable=True)

    # Fulfillment and pickup
    fulfilled_at = Column(DateTime, nullable=True)
    pickup_deadline = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    # Cancellation
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by_staff = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="reservations")
    book = relationship("Book", back_populates="reservations")
    book_copy = relationship("BookCopy")

    __table_args__ = (
        Index("idx_reservation_queue", "book_id", "status", "reservation_date"),
        Index("idx_reservation_member", "member_id"),
        Index(
            "uq_active_reservation_per_member_book",
            "member_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


class Fine(Base):
    """
    Fines table - charges against a member, optionally tied to a loan.

    Fines are never deleted. Settling one (paid or waived) moves its amount out
    of the member's outstanding balance.
    """

    __tablename__ = "fines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True)
    fine_type = Column(Enum(FineTypeEnum), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=ZERO)
    status = Column(Enum(FineStatusEnum), nullable=False, default=FineStatusEnum.PENDING)
    description = Column(String(500), nullable=False, default="")
    fine_date = Column(DateTime, nullable=False)

    # Settlement
    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    payment_date = Column(DateTime, nullable=True)
    waived_by = Column(String(100), nullable=True)
    waiver_reason = Column(Text, nullable=True)
    waived_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="fines")
    loan = relationship("Loan", back_populates="fines")

    __table_args__ = (
        Index("idx_fine_member_status", "member_id", "status"),
        Index("idx_fine_loan", "loan_id"),
        CheckConstraint("amount > 0", name="check_fine_amount_positive"),
        CheckConstraint("amount_paid >= 0", name="check_amount_paid_non_negative"),
    )


class AuditLog(Base):
    """
    Audit log table - append-only record of circulation changes.

    Written by ``DatabaseAuditSink`` after the change it describes has been
    committed.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(50), nullable=False)
    action = Column(Enum(AuditActionEnum), nullable=False)
    before_state = Column(Text, nullable=True)
    after_state = Column(Text, nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    __table_args__ = (Index("idx_audit_entity", "entity_type", "entity_id"),)
