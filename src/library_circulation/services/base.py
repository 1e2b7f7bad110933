"""
Shared plumbing for the circulation services.

Every service works on one ``UnitOfWork`` and reads policy from
``CirculationConfig``. Public operations are wrapped with
``circulation_operation``, which gives each call its transaction and its
``Result``:

```python
class CheckoutService(CirculationService):
    @circulation_operation("checkout")
    def checkout(self, member_id, copy_id, due_date=None) -> Loan:
        member = self._get_member(member_id)   # raises CirculationError
        ...
        return Loan.model_validate(loan)

result = CheckoutService(uow).checkout(1, 12)
if not result.ok:
    print(result.error.message)
```

A ``CirculationError`` raised anywhere inside the operation rolls back every
change it made and comes back as ``Result.failure``. ``TransientError`` is
re-raised after rollback.
"""

import functools
import logging
from collections.abc import Callable, Hashable
from contextlib import nullcontext
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Any

from ..audit import AuditSink, LoggingAuditSink
from ..config import CirculationConfig, get_config
from ..database.schema import OPEN_LOAN_STATUSES, AuditActionEnum
from ..database.schema import Book as BookDB
from ..database.schema import BookCopy as BookCopyDB
from ..database.schema import Fine as FineDB
from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from ..database.schema import Reservation as ReservationDB
from ..database.unit_of_work import UnitOfWork
from ..errors import CirculationError, ErrorKind, FailureReason, Result
from ..notifications import LoggingNotifier, Notifier, NotificationType
from ..observability import traced
from .locks import book_locks

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")

Clock = Callable[[], datetime]


def to_money(value: Any) -> Decimal:
    """Coerce an amount to a two-place Decimal."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def circulation_operation(name: str, lock_key: Callable[..., Hashable | None] | None = None):
    """Run a service method as one atomic circulation operation.

    Args:
        name: Operation name used for tracing and logs.
        lock_key: Optional function of the call arguments naming an in-process
            lock to hold for the whole transaction, commit included.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self: "CirculationService", *args, **kwargs) -> Result:
            key = lock_key(self, *args, **kwargs) if lock_key else None
            with book_locks.hold(key) if key is not None else nullcontext():
                try:
                    with self.uow.transaction():
                        value = func(self, *args, **kwargs)
                except CirculationError as e:
                    level = logging.WARNING if e.kind is ErrorKind.CONFLICT else logging.INFO
                    logger.log(level, "%s refused (%s): %s", name, e.reason.value, e.message)
                    return Result.failure(e.failure)
            return Result.success(value)

        return traced(name)(wrapper)

    return decorator


def book_lock(book_id: Any) -> tuple[str, Any]:
    return ("book", book_id)


class CirculationService:
    """Base class holding the collaborators every service needs."""

    def __init__(
        self,
        uow: UnitOfWork,
        config: CirculationConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        audit: AuditSink | None = None,
    ):
        self.uow = uow
        self.config = config or get_config()
        self.clock = clock or datetime.now
        self.notifier = notifier or LoggingNotifier()
        self.audit = audit or LoggingAuditSink()

        self.members = uow.repository(MemberDB)
        self.books = uow.repository(BookDB)
        self.copies = uow.repository(BookCopyDB)
        self.loans = uow.repository(LoanDB)
        self.reservations = uow.repository(ReservationDB)
        self.fines = uow.repository(FineDB)

    def _collaborator_kwargs(self) -> dict[str, Any]:
        return {
            "config": self.config,
            "clock": self.clock,
            "notifier": self.notifier,
            "audit": self.audit,
        }

    def now(self) -> datetime:
        return self.clock()

    # === Lookups that fail the operation ===

    def _get_member(self, member_id: int) -> MemberDB:
        member = self.members.get(member_id)
        if member is None:
            raise CirculationError(
                FailureReason.MEMBER_NOT_FOUND, f"Member with ID {member_id} not found."
            )
        return member

    def _get_book(self, book_id: int) -> BookDB:
        book = self.books.get(book_id)
        if book is None:
            raise CirculationError(FailureReason.BOOK_NOT_FOUND, f"Book with ID {book_id} not found.")
        return book

    def _get_copy(self, copy_id: int, *, for_update: bool = False) -> BookCopyDB:
        copy = self.copies.get(copy_id, for_update=for_update)
        if copy is None:
            raise CirculationError(
                FailureReason.COPY_NOT_FOUND, f"Book copy with ID {copy_id} not found."
            )
        return copy

    def _get_loan(self, loan_id: int) -> LoanDB:
        loan = self.loans.get(loan_id)
        if loan is None:
            raise CirculationError(FailureReason.LOAN_NOT_FOUND, f"Loan with ID {loan_id} not found.")
        return loan

    def _get_reservation(self, reservation_id: int) -> ReservationDB:
        reservation = self.reservations.get(reservation_id)
        if reservation is None:
            raise CirculationError(
                FailureReason.RESERVATION_NOT_FOUND,
                f"Reservation with ID {reservation_id} not found.",
            )
        return reservation

    def _get_fine(self, fine_id: int) -> FineDB:
        fine = self.fines.get(fine_id)
        if fine is None:
            raise CirculationError(FailureReason.FINE_NOT_FOUND, f"Fine with ID {fine_id} not found.")
        return fine

    # === Cached member counters ===

    def _refresh_loan_count(self, member: MemberDB) -> None:
        """Recompute the member's open loan count from the loans table."""
        self.uow.flush()
        member.current_loan_count = self.loans.count(
            LoanDB.member_id == member.id, LoanDB.status.in_(OPEN_LOAN_STATUSES)
        )

    def _add_outstanding(self, member: MemberDB, amount: Decimal) -> None:
        member.outstanding_fines = to_money((member.outstanding_fines or ZERO) + amount)

    def _reduce_outstanding(self, member: MemberDB, amount: Decimal) -> None:
        """Take a settled amount off the balance, clamping at zero."""
        remaining = to_money((member.outstanding_fines or ZERO) - amount)
        if remaining < ZERO:
            logger.warning(
                "Data inconsistency: member %s owes %s but %s was settled; clamping balance to 0.00",
                member.id,
                member.outstanding_fines,
                amount,
            )
            remaining = ZERO
        member.outstanding_fines = remaining

    # === After-commit side effects ===

    def _audit(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditActionEnum,
        before_state: str | None = None,
        after_state: str | None = None,
        details: str | None = None,
    ) -> None:
        self.uow.after_commit(
            partial(
                self.audit.record,
                entity_type,
                entity_id,
                action,
                before_state=before_state,
                after_state=after_state,
                details=details,
            )
        )

    def _notify(
        self, member_id: int, notification_type: NotificationType, subject: str, message: str
    ) -> None:
        self.uow.after_commit(
            partial(self.notifier.notify, member_id, notification_type, subject, message)
        )
