"""
Returns: closing loans.

Returning a copy closes its loan, puts the copy back on the shelf (or marks
it Damaged or Lost according to its condition), frees one of the member's
loan slots and charges any overdue fine, all in one transaction. If anything
fails the whole return is rolled back and the copy stays Borrowed.

Handing the freed copy to the next member in the reservation queue is a
separate step: the circulation desk runs ``ReservationQueueManager.fulfill``
after a successful return.
"""

import logging
from decimal import Decimal

from ..database.schema import (
    OPEN_LOAN_STATUSES,
    AuditActionEnum,
    CopyConditionEnum,
    CopyStatusEnum,
    FineTypeEnum,
    LoanStatusEnum,
)
from ..database.schema import Loan as LoanDB
from ..errors import CirculationError, FailureReason
from ..models import Loan
from .base import ZERO, CirculationService, circulation_operation, to_money
from .fines import FineLedger

logger = logging.getLogger(__name__)

COPY_STATUS_FOR_CONDITION = {
    CopyConditionEnum.EXCELLENT: CopyStatusEnum.AVAILABLE,
    CopyConditionEnum.GOOD: CopyStatusEnum.AVAILABLE,
    CopyConditionEnum.FAIR: CopyStatusEnum.AVAILABLE,
    CopyConditionEnum.POOR: CopyStatusEnum.AVAILABLE,
    CopyConditionEnum.DAMAGED: CopyStatusEnum.DAMAGED,
    CopyConditionEnum.LOST: CopyStatusEnum.LOST,
}


class ReturnService(CirculationService):
    """Closes loans and frees their copies."""

    def __init__(self, uow, **kwargs):
        super().__init__(uow, **kwargs)
        self.ledger = FineLedger(uow, **self._collaborator_kwargs())

    @circulation_operation("return")
    def return_loan(
        self,
        loan_id: int,
        condition: CopyConditionEnum | str = CopyConditionEnum.GOOD,
    ) -> Loan:
        """Check a loaned copy back in.

        Args:
            loan_id: Loan being closed.
            condition: Condition of the copy as handed back. Damaged and Lost
                take the copy out of circulation.
        """
        now = self.now()
        loan = self._get_loan(loan_id)
        self._ensure_open(loan, "returned")
        condition = CopyConditionEnum(condition)

        copy = self._get_copy(loan.book_copy_id, for_update=True)
        previous_status = copy.status
        previous_loan_status = loan.status
        new_status = COPY_STATUS_FOR_CONDITION[condition]

        loan.return_date = now
        loan.status = LoanStatusEnum.RETURNED
        loan.return_condition = condition
        copy.status = new_status

        accrued = self.ledger.accrue_overdue(loan, now)
        member = self._get_member(loan.member_id)
        self._refresh_loan_count(member)

        logger.info(
            "Loan %s returned in %s condition; copy %s now %s; fine accrued %s",
            loan.id,
            condition.value,
            copy.id,
            new_status.value,
            accrued,
        )
        self._audit(
            "BookCopy",
            copy.id,
            AuditActionEnum.UPDATE,
            before_state=previous_status.value,
            after_state=new_status.value,
            details=f"Returned on loan {loan.id}",
        )
        self._audit(
            "Loan",
            loan.id,
            AuditActionEnum.RETURN,
            before_state=previous_loan_status.value,
            after_state=LoanStatusEnum.RETURNED.value,
            details=f"Condition {condition.value}; overdue fine {accrued}",
        )
        return Loan.model_validate(loan)

    @circulation_operation("declare_lost")
    def declare_lost(
        self,
        loan_id: int,
        replacement_fee: Decimal | str | float | None = None,
    ) -> Loan:
        """Write off a loaned copy the member cannot return.

        The loan and copy become Lost and the loan stops counting against the
        member. A replacement fee, when given, is charged as a Lost fine.
        """
        loan = self._get_loan(loan_id)
        self._ensure_open(loan, "declared lost")

        fee = to_money(replacement_fee) if replacement_fee is not None else None
        if fee is not None and fee <= ZERO:
            raise CirculationError(
                FailureReason.INVALID_AMOUNT, "Replacement fee must be greater than zero."
            )

        copy = self._get_copy(loan.book_copy_id, for_update=True)
        previous_status = copy.status
        copy.status = CopyStatusEnum.LOST
        loan.status = LoanStatusEnum.LOST

        member = self._get_member(loan.member_id)
        if fee is not None:
            self.ledger.charge(
                member,
                FineTypeEnum.LOST,
                fee,
                loan.id,
                f"Replacement fee for lost copy {copy.id} (loan {loan.id})",
            )
        self._refresh_loan_count(member)

        logger.info("Loan %s declared lost; copy %s written off", loan.id, copy.id)
        self._audit(
            "BookCopy",
            copy.id,
            AuditActionEnum.UPDATE,
            before_state=previous_status.value,
            after_state=CopyStatusEnum.LOST.value,
            details=f"Declared lost on loan {loan.id}",
        )
        self._audit("Loan", loan.id, AuditActionEnum.LOST, after_state=LoanStatusEnum.LOST.value)
        return Loan.model_validate(loan)

    @staticmethod
    def _ensure_open(loan: LoanDB, verb: str) -> None:
        if loan.status not in OPEN_LOAN_STATUSES:
            raise CirculationError(
                FailureReason.NOT_RETURNABLE,
                f"Only active or overdue loans can be {verb}. Current status: {loan.status.value}.",
            )
