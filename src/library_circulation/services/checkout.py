"""
Checkout: lending a copy to a member.

A checkout opens a loan, marks the copy Borrowed and bumps the member's loan
count in one transaction. The copy row carries a version counter, so if two
desks lend the same copy at the same moment only one commit succeeds; the
other gets a Conflict.

A copy held for a member (status Reserved, with that member's Fulfilled
reservation pointing at it) can be checked out by that member only. That
checkout is the pickup and closes the hold.
"""

import logging
from datetime import date, datetime, timedelta

from ..database.schema import AuditActionEnum, CopyStatusEnum, LoanStatusEnum, ReservationStatusEnum
from ..database.schema import BookCopy as BookCopyDB
from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from ..database.schema import Reservation as ReservationDB
from ..errors import CirculationError, FailureReason
from ..models import Loan
from .base import CirculationService, circulation_operation
from .eligibility import EligibilityEvaluator

logger = logging.getLogger(__name__)


class CheckoutService(CirculationService):
    """Opens loans."""

    def __init__(self, uow, **kwargs):
        super().__init__(uow, **kwargs)
        self.eligibility = EligibilityEvaluator(uow, **self._collaborator_kwargs())

    @circulation_operation("checkout")
    def checkout(
        self,
        member_id: int,
        copy_id: int,
        due_date: datetime | date | None = None,
    ) -> Loan:
        """Lend ``copy_id`` to ``member_id``.

        Args:
            member_id: Borrowing member.
            copy_id: Copy being lent.
            due_date: Optional custom due date; must be after now and within
                ``max_loan_days``. Defaults to now + ``default_loan_days``.
        """
        now = self.now()
        member = self._get_member(member_id)
        self.eligibility.ensure_can_borrow(member)

        copy = self._get_copy(copy_id, for_update=True)
        hold = self._pickup_hold(member, copy)
        if copy.status != CopyStatusEnum.AVAILABLE and hold is None:
            raise CirculationError(
                FailureReason.COPY_NOT_AVAILABLE,
                f"Book copy is not available. Current status: {copy.status.value}.",
            )

        due = self._resolve_due_date(now, due_date)

        loan = self.loans.add(
            LoanDB(
                member_id=member.id,
                book_copy_id=copy.id,
                loan_date=now,
                due_date=due,
                status=LoanStatusEnum.ACTIVE,
                renewal_count=0,
            )
        )
        previous_status = copy.status
        copy.status = CopyStatusEnum.BORROWED
        if hold is not None:
            hold.picked_up_at = now
            logger.info("Reservation %s picked up by member %s", hold.id, member.id)

        self._refresh_loan_count(member)

        logger.info(
            "Loan %s opened: copy %s to member %s, due %s", loan.id, copy.id, member.id, due
        )
        self._audit(
            "BookCopy",
            copy.id,
            AuditActionEnum.UPDATE,
            before_state=previous_status.value,
            after_state=CopyStatusEnum.BORROWED.value,
            details=f"Checked out on loan {loan.id}",
        )
        self._audit(
            "Loan",
            loan.id,
            AuditActionEnum.CHECKOUT,
            after_state=LoanStatusEnum.ACTIVE.value,
            details=f"Member {member.id} borrowed copy {copy.id}, due {due.isoformat()}",
        )
        return Loan.model_validate(loan)

    def _pickup_hold(self, member: MemberDB, copy: BookCopyDB) -> ReservationDB | None:
        """The member's uncollected Fulfilled reservation holding this copy."""
        if copy.status != CopyStatusEnum.RESERVED:
            return None
        return self.reservations.find(
            ReservationDB.book_copy_id == copy.id,
            ReservationDB.member_id == member.id,
            ReservationDB.status == ReservationStatusEnum.FULFILLED,
            ReservationDB.picked_up_at.is_(None),
        )

    def _resolve_due_date(self, now: datetime, due_date: datetime | date | None) -> datetime:
        if due_date is None:
            return now + timedelta(days=self.config.default_loan_days)

        if not isinstance(due_date, datetime):
            due_date = datetime.combine(due_date, now.time())

        latest = now + timedelta(days=self.config.max_loan_days)
        if due_date <= now:
            raise CirculationError(FailureReason.INVALID_DUE_DATE, "Due date must be in the future.")
        if due_date > latest:
            raise CirculationError(
                FailureReason.INVALID_DUE_DATE,
                f"Due date cannot be more than {self.config.max_loan_days} days from now.",
            )
        return due_date
