"""Renewal: moving an Active loan's due date later."""

import logging
from datetime import date, datetime, timedelta

from ..database.schema import AuditActionEnum, LoanStatusEnum
from ..errors import CirculationError, FailureReason
from ..models import Loan
from .availability import CopyAvailabilityTracker
from .base import CirculationService, circulation_operation

logger = logging.getLogger(__name__)


class RenewalService(CirculationService):
    """Extends loans.

    A renewal is refused, in this order, when the loan is not Active, when the
    new date is not later than the current one, when it lies more than
    ``max_extension_days`` from now, when the member is no longer Active, and
    when other members are queued for the title.
    """

    def __init__(self, uow, **kwargs):
        super().__init__(uow, **kwargs)
        self.availability = CopyAvailabilityTracker(uow, **self._collaborator_kwargs())

    @circulation_operation("renew")
    def renew(self, loan_id: int, new_due_date: datetime | date | None = None) -> Loan:
        now = self.now()
        loan = self._get_loan(loan_id)
        if loan.status != LoanStatusEnum.ACTIVE:
            raise CirculationError(
                FailureReason.NOT_ACTIVE,
                f"Only active loans can be extended. Current status: {loan.status.value}.",
            )

        limit = now + timedelta(days=self.config.max_extension_days)
        if new_due_date is None:
            target = min(loan.due_date + timedelta(days=self.config.default_loan_days), limit)
        elif isinstance(new_due_date, datetime):
            target = new_due_date
        else:
            target = datetime.combine(new_due_date, loan.due_date.time())

        if target <= loan.due_date:
            raise CirculationError(
                FailureReason.INVALID_EXTENSION, "New due date must be after the current due date."
            )
        if target > limit:
            raise CirculationError(
                FailureReason.EXTENSION_LIMIT_EXCEEDED,
                f"New due date cannot be more than {self.config.max_extension_days} days "
                f"from now ({limit:%Y-%m-%d}).",
            )

        member = self._get_member(loan.member_id)
        if not member.is_active:
            raise CirculationError(
                FailureReason.MEMBER_NOT_ACTIVE,
                "Loan cannot be extended because the member is not active.",
            )

        book_id = loan.book_copy.book_id
        if self.availability.has_active_reservations(book_id):
            raise CirculationError(
                FailureReason.RESERVATION_CONFLICT,
                "Loan cannot be renewed while other members are waiting for this title.",
            )

        previous_due = loan.due_date
        loan.due_date = target
        loan.renewal_count = (loan.renewal_count or 0) + 1

        logger.info("Loan %s renewed: due %s -> %s", loan.id, previous_due, target)
        self._audit(
            "Loan",
            loan.id,
            AuditActionEnum.RENEW,
            before_state=previous_due.isoformat(),
            after_state=target.isoformat(),
        )
        return Loan.model_validate(loan)
