"""
The circulation desk: the entry point callers use.

The services operate on a unit of work they are given. The desk gives each
operation its own session and unit of work, closes them afterwards, and adds
the behaviour that spans more than one transaction:

1. An operation that loses a race (Conflict) is retried once with fresh reads
2. A return that puts a copy back on the shelf is followed by fulfilling the
   title's reservation queue
3. Bulk checkout and bulk return run every copy in its own transaction, so one
   refused copy does not undo the others

```python
desk = CirculationDesk()
result = desk.checkout(member_id=1, copy_id=12)
if result.ok:
    print("due", result.value.due_date)
else:
    print(result.error.message)
```

The desk is safe to share between threads: nothing session-bound outlives a
call. This holds for file and server databases. An in-memory SQLite database
is one shared connection, so a desk over it must stay on a single thread.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .audit import AuditSink, DatabaseAuditSink
from .config import CirculationConfig, get_config
from .database.repository import PaginatedResponse, PaginationParams
from .database.schema import (
    OPEN_LOAN_STATUSES,
    CopyConditionEnum,
    CopyStatusEnum,
    FineTypeEnum,
    MembershipStatusEnum,
)
from .database.schema import Loan as LoanDB
from .database.session import get_db_manager
from .database.unit_of_work import UnitOfWork
from .errors import ErrorKind, Failure, FailureReason, Result
from .models import Loan
from .notifications import LoggingNotifier, Notifier
from .observability import traced
from .services import (
    CatalogService,
    CheckoutService,
    CirculationService,
    CopyAvailabilityTracker,
    EligibilityEvaluator,
    FineLedger,
    MemberService,
    OverdueService,
    ReconciliationService,
    RenewalService,
    ReservationQueueManager,
    ReturnService,
)

logger = logging.getLogger(__name__)


class BulkItemResult(BaseModel):
    """Outcome for one copy or loan in a bulk request."""

    item_id: int
    loan: Loan | None = None
    error: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BulkOperationReport(BaseModel):
    """Per-item outcomes of a bulk checkout or return."""

    items: list[BulkItemResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[BulkItemResult]:
        return [item for item in self.items if item.ok]

    @property
    def failed(self) -> list[BulkItemResult]:
        return [item for item in self.items if not item.ok]


class CirculationDesk:
    """Runs circulation operations, one unit of work each."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        config: CirculationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        notifier: Notifier | None = None,
        audit: AuditSink | None = None,
    ):
        self.session_factory = session_factory or get_db_manager().create_session
        self.config = config or get_config()
        self.clock = clock or datetime.now
        self.notifier = notifier or LoggingNotifier()
        self.audit = audit or DatabaseAuditSink(self.session_factory)

    # === Plumbing ===

    @contextmanager
    def unit_of_work(self) -> Generator[UnitOfWork, None, None]:
        session = self.session_factory()
        try:
            yield UnitOfWork(session)
        finally:
            session.close()

    def _service(self, service_cls: type[CirculationService], uow: UnitOfWork):
        return service_cls(
            uow,
            config=self.config,
            clock=self.clock,
            notifier=self.notifier,
            audit=self.audit,
        )

    def _attempt(self, service_cls, operation: str, *args, **kwargs) -> Result:
        with self.unit_of_work() as uow:
            return getattr(self._service(service_cls, uow), operation)(*args, **kwargs)

    def _run(self, service_cls, operation: str, *args, **kwargs) -> Result:
        """Run one operation, retrying once if it lost a race."""
        result = self._attempt(service_cls, operation, *args, **kwargs)
        if not result.ok and result.error.kind is ErrorKind.CONFLICT:
            logger.info("%s conflicted with a concurrent update; retrying once", operation)
            result = self._attempt(service_cls, operation, *args, **kwargs)
        return result

    def _read(self, service_cls, reader: Callable[[Any], Any]) -> Any:
        with self.unit_of_work() as uow:
            with uow.transaction():
                return reader(self._service(service_cls, uow))

    # === Members ===

    def register_member(self, membership_number: str, name: str, email: str):
        return self._run(MemberService, "register", membership_number, name, email)

    def get_member(self, member_id: int):
        return self._run(MemberService, "get", member_id)

    def find_member(self, membership_number: str):
        return self._run(MemberService, "find_by_membership_number", membership_number)

    def update_membership_status(self, member_id: int, status: MembershipStatusEnum | str):
        return self._run(MemberService, "update_status", member_id, status)

    # === Loans ===

    def checkout(
        self, member_id: int, copy_id: int, due_date: datetime | date | None = None
    ) -> Result[Loan]:
        return self._run(CheckoutService, "checkout", member_id, copy_id, due_date)

    def return_loan(
        self, loan_id: int, condition: CopyConditionEnum | str = CopyConditionEnum.GOOD
    ) -> Result[Loan]:
        """Return a loan, then offer the copy to the title's reservation queue."""
        result = self._run(ReturnService, "return_loan", loan_id, condition)
        if result.ok:
            self._offer_to_queue(result.value.book_id)
        return result

    def declare_lost(
        self, loan_id: int, replacement_fee: Decimal | str | float | None = None
    ) -> Result[Loan]:
        return self._run(ReturnService, "declare_lost", loan_id, replacement_fee)

    def renew(self, loan_id: int, new_due_date: datetime | date | None = None) -> Result[Loan]:
        return self._run(RenewalService, "renew", loan_id, new_due_date)

    @traced("bulk_checkout")
    def bulk_checkout(
        self,
        member_id: int,
        copy_ids: list[int],
        due_date: datetime | date | None = None,
    ) -> Result[BulkOperationReport]:
        """Check out several copies, each in its own transaction.

        The whole request is refused up front when the member could not take
        every copy even if all were available.
        """
        if not copy_ids:
            return Result.failure(
                FailureReason.EMPTY_REQUEST, "No book copies specified for checkout."
            )

        eligibility = self.check_eligibility(member_id)
        if not eligibility.ok:
            return eligibility
        status = eligibility.value
        if not status.eligible:
            return Result.failure(status.first_violation)
        if len(copy_ids) > status.available_loan_slots:
            return Result.failure(
                FailureReason.LOAN_LIMIT_REACHED,
                f"Cannot checkout {len(copy_ids)} books. "
                f"Member has only {status.available_loan_slots} available loan slots.",
            )

        report = BulkOperationReport()
        for copy_id in copy_ids:
            outcome = self.checkout(member_id, copy_id, due_date)
            report.items.append(BulkItemResult(item_id=copy_id, loan=outcome.value, error=outcome.error))
        logger.info(
            "Bulk checkout for member %s: %d succeeded, %d failed",
            member_id,
            len(report.succeeded),
            len(report.failed),
        )
        return Result.success(report)

    @traced("bulk_return")
    def bulk_return(
        self,
        loan_ids: list[int],
        condition: CopyConditionEnum | str = CopyConditionEnum.GOOD,
    ) -> Result[BulkOperationReport]:
        """Return several loans, each in its own transaction."""
        if not loan_ids:
            return Result.failure(FailureReason.EMPTY_REQUEST, "No loans specified for return.")

        report = BulkOperationReport()
        for loan_id in loan_ids:
            outcome = self.return_loan(loan_id, condition)
            report.items.append(BulkItemResult(item_id=loan_id, loan=outcome.value, error=outcome.error))
        return Result.success(report)

    def member_loans(
        self,
        member_id: int,
        pagination: PaginationParams | None = None,
        open_only: bool = False,
    ) -> PaginatedResponse[Loan]:
        """A page of a member's loans, newest first."""

        def read(service: CirculationService):
            predicates = [LoanDB.member_id == member_id]
            if open_only:
                predicates.append(LoanDB.status.in_(OPEN_LOAN_STATUSES))
            return service.loans.list_paged(
                pagination or PaginationParams(),
                Loan.model_validate,
                *predicates,
                order_by=(LoanDB.loan_date.desc(), LoanDB.id.desc()),
            )

        return self._read(CirculationService, read)

    # === Reservations ===

    def reserve(self, member_id: int, book_id: int, notes: str | None = None):
        return self._run(ReservationQueueManager, "reserve", member_id, book_id, notes)

    def cancel_reservation(
        self, reservation_id: int, staff_initiated: bool = False, reason: str | None = None
    ):
        return self._run(
            ReservationQueueManager, "cancel", reservation_id, staff_initiated, reason
        )

    def fulfill(self, book_id: int):
        return self._run(ReservationQueueManager, "fulfill", book_id)

    def expire_stale_pickups(self):
        with self.unit_of_work() as uow:
            return self._service(ReservationQueueManager, uow).expire_stale_pickups()

    def reservation_queue(self, book_id: int):
        return self._run(ReservationQueueManager, "queue", book_id)

    def queue_position(self, reservation_id: int):
        return self._run(ReservationQueueManager, "queue_position", reservation_id)

    def _offer_to_queue(self, book_id: int) -> None:
        outcome = self.fulfill(book_id)
        if not outcome.ok:
            logger.warning(
                "Could not fulfill reservations for book %s: %s", book_id, outcome.error.message
            )

    # === Fines ===

    def calculate_fine(self, loan_id: int):
        return self._run(FineLedger, "calculate", loan_id)

    def assess_fine(
        self,
        member_id: int,
        fine_type: FineTypeEnum | str,
        amount: Decimal | str | float,
        loan_id: int | None = None,
        description: str = "",
    ):
        return self._run(FineLedger, "assess", member_id, fine_type, amount, loan_id, description)

    def pay_fine(
        self,
        fine_id: int,
        amount: Decimal | str | float,
        method: str,
        reference: str | None = None,
    ):
        return self._run(FineLedger, "pay", fine_id, amount, method, reference)

    def waive_fine(self, fine_id: int, staff_id: str, reason: str):
        return self._run(FineLedger, "waive", fine_id, staff_id, reason)

    def member_fines(self, member_id: int, pending_only: bool = False):
        return self._run(FineLedger, "member_fines", member_id, pending_only)

    # === Eligibility and availability ===

    def check_eligibility(self, member_id: int):
        return self._run(EligibilityEvaluator, "check", member_id)

    def is_copy_available(self, copy_id: int) -> bool:
        return self._read(CopyAvailabilityTracker, lambda t: t.is_copy_available(copy_id))

    def is_book_available(self, book_id: int) -> bool:
        return self._read(CopyAvailabilityTracker, lambda t: t.is_book_available(book_id))

    def available_copies(self, book_id: int):
        return self._run(CopyAvailabilityTracker, "list_available", book_id)

    # === Catalog ===

    def add_book(self, title: str, author: str, isbn: str, copies: int = 1):
        return self._run(CatalogService, "add_book", title, author, isbn, copies)

    def add_copies(self, book_id: int, count: int = 1):
        return self._run(CatalogService, "add_copies", book_id, count)

    def get_book(self, book_id: int):
        return self._run(CatalogService, "get_book", book_id)

    def update_copy_status(
        self, copy_id: int, status: CopyStatusEnum | str, notes: str | None = None
    ):
        """Change a copy's status; a copy put back on the shelf goes to the queue."""
        result = self._run(CatalogService, "update_copy_status", copy_id, status, notes)
        if result.ok and result.value.status == CopyStatusEnum.AVAILABLE:
            self._offer_to_queue(result.value.book_id)
        return result

    def delete_book(self, book_id: int):
        return self._run(CatalogService, "delete_book", book_id)

    # === Maintenance ===

    def reconcile_member(self, member_id: int, repair: bool = False):
        return self._run(ReconciliationService, "reconcile_member", member_id, repair)

    def reconcile_all(self, repair: bool = False):
        return self._run(ReconciliationService, "reconcile_all", repair)

    def run_overdue_sweep(self):
        return self._run(OverdueService, "sweep")

    @traced("availability_sweep")
    def run_availability_sweep(self) -> Result:
        """Fulfill every queue that has an Available copy waiting."""
        book_ids = self._read(
            ReservationQueueManager, lambda manager: manager.books_awaiting_fulfillment()
        )
        fulfilled = []
        for book_id in book_ids:
            while True:
                outcome = self.fulfill(book_id)
                if not outcome.ok:
                    logger.warning(
                        "Fulfilling book %s failed: %s", book_id, outcome.error.message
                    )
                    break
                if outcome.value is None:
                    break
                fulfilled.append(outcome.value)
        return Result.success(fulfilled)
