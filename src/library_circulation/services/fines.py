"""
Fine ledger.

Overdue fines are charged per *whole* day late: a copy returned 23 hours after
its due date owes nothing, one returned 5 days and 2 hours late owes 5 days.
The amount can be capped per loan via ``max_fine_amount``.

A loan's overdue charge can be recorded in pieces: the nightly overdue sweep
accrues what is owed so far and the return accrues the rest. ``accrue_overdue``
always tops the loan's recorded overdue charges up to the amount owed at the
given instant and never charges the same day twice.

Settling a fine (paid in full or waived by staff) removes it from the member's
outstanding balance. Partial payments are not accepted.
"""

import logging
from datetime import datetime
from decimal import Decimal

from ..database.schema import AuditActionEnum, FineStatusEnum, FineTypeEnum, LoanStatusEnum
from ..database.schema import Fine as FineDB
from ..database.schema import Loan as LoanDB
from ..errors import CirculationError, FailureReason
from ..models import Fine
from ..notifications import NotificationType
from .base import ZERO, CirculationService, circulation_operation, to_money

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def days_overdue(due_date: datetime, as_of: datetime) -> int:
    """Whole days between ``due_date`` and ``as_of``; partial days do not count."""
    if as_of <= due_date:
        return 0
    return int((as_of - due_date).total_seconds() // SECONDS_PER_DAY)


class FineLedger(CirculationService):
    """Calculates, records and settles fines."""

    def overdue_amount(self, loan: LoanDB, as_of: datetime | None = None) -> Decimal:
        """What ``loan`` owes in overdue fines at ``as_of``.

        Returned loans are measured to their return date; open loans to
        ``as_of`` (default now). Lost loans accrue nothing further.
        """
        if loan.status == LoanStatusEnum.LOST:
            return ZERO
        end = loan.return_date or as_of or self.now()
        amount = to_money(Decimal(days_overdue(loan.due_date, end)) * self.config.daily_fine_rate)
        if self.config.max_fine_amount is not None:
            amount = min(amount, self.config.max_fine_amount)
        return max(amount, ZERO)

    def accrue_overdue(self, loan: LoanDB, as_of: datetime) -> Decimal:
        """Bring the loan's recorded overdue charges up to what it owes.

        Returns the amount newly charged (zero when nothing more is owed).
        """
        owed = self.overdue_amount(loan, as_of)
        if owed <= ZERO:
            return ZERO

        charged = self.fines.find_all(
            FineDB.loan_id == loan.id,
            FineDB.fine_type == FineTypeEnum.OVERDUE,
            order_by=(FineDB.id,),
        )
        already = sum((fine.amount for fine in charged), ZERO)
        delta = to_money(owed - already)
        if delta <= ZERO:
            return ZERO

        days = days_overdue(loan.due_date, loan.return_date or as_of)
        description = f"Overdue fine for {days} day(s) late (loan {loan.id})"
        pending = next((f for f in charged if f.status == FineStatusEnum.PENDING), None)
        if pending is not None:
            pending.amount = to_money(pending.amount + delta)
            pending.description = description
            fine = pending
        else:
            fine = self.fines.add(
                FineDB(
                    member_id=loan.member_id,
                    loan_id=loan.id,
                    fine_type=FineTypeEnum.OVERDUE,
                    amount=delta,
                    amount_paid=ZERO,
                    status=FineStatusEnum.PENDING,
                    description=description,
                    fine_date=as_of,
                )
            )

        member = self._get_member(loan.member_id)
        self._add_outstanding(member, delta)
        self.uow.flush()

        logger.info("Accrued %s overdue fine on loan %s (%d days late)", delta, loan.id, days)
        self._audit(
            "Fine",
            fine.id,
            AuditActionEnum.FINE_ASSESSED,
            after_state=str(fine.amount),
            details=f"Overdue accrual of {delta} for loan {loan.id}",
        )
        return delta

    @circulation_operation("calculate_fine")
    def calculate(self, loan_id: int) -> Decimal:
        """Overdue fine owed by a loan right now, without recording anything."""
        return self.overdue_amount(self._get_loan(loan_id))

    @circulation_operation("assess_fine")
    def assess(
        self,
        member_id: int,
        fine_type: FineTypeEnum,
        amount: Decimal | str | float,
        loan_id: int | None = None,
        description: str = "",
    ) -> Fine:
        """Charge a staff-assessed fine, typically for a lost or damaged copy."""
        amount = to_money(amount)
        if amount <= ZERO:
            raise CirculationError(
                FailureReason.INVALID_AMOUNT, "Fine amount must be greater than zero."
            )
        member = self._get_member(member_id)
        if loan_id is not None:
            self._get_loan(loan_id)

        fine = self.charge(member, FineTypeEnum(fine_type), amount, loan_id, description)
        return Fine.model_validate(fine)

    def charge(
        self,
        member,
        fine_type: FineTypeEnum,
        amount: Decimal,
        loan_id: int | None = None,
        description: str = "",
    ) -> FineDB:
        """Record a Pending fine inside the caller's transaction."""
        fine = self.fines.add(
            FineDB(
                member_id=member.id,
                loan_id=loan_id,
                fine_type=fine_type,
                amount=amount,
                amount_paid=ZERO,
                status=FineStatusEnum.PENDING,
                description=description or f"{fine_type.value.capitalize()} fine",
                fine_date=self.now(),
            )
        )
        self._add_outstanding(member, amount)
        self.uow.flush()

        self._audit(
            "Fine",
            fine.id,
            AuditActionEnum.FINE_ASSESSED,
            after_state=str(amount),
            details=fine.description,
        )
        self._notify(
            member.id,
            NotificationType.FINE_NOTICE,
            "Fine assessed",
            f"A {fine_type.value} fine of ${amount:.2f} has been added to your account.",
        )
        return fine

    @circulation_operation("pay_fine")
    def pay(
        self,
        fine_id: int,
        amount: Decimal | str | float,
        method: str,
        reference: str | None = None,
    ) -> Fine:
        """Settle a Pending fine in full."""
        fine = self._get_fine(fine_id)
        self._ensure_pending(fine, "paid")

        amount = to_money(amount)
        if amount != fine.amount:
            raise CirculationError(
                FailureReason.PAYMENT_AMOUNT_MISMATCH,
                f"Payment amount ${amount:.2f} does not match the fine amount "
                f"${fine.amount:.2f}. Partial payments are not accepted.",
            )
        if not method or not method.strip():
            raise CirculationError(
                FailureReason.PAYMENT_METHOD_REQUIRED, "A payment method is required."
            )

        fine.status = FineStatusEnum.PAID
        fine.amount_paid = amount
        fine.payment_method = method.strip()
        fine.payment_reference = reference
        fine.payment_date = self.now()
        self._reduce_outstanding(self._get_member(fine.member_id), fine.amount)

        self._audit(
            "Fine",
            fine.id,
            AuditActionEnum.FINE_PAID,
            before_state=FineStatusEnum.PENDING.value,
            after_state=FineStatusEnum.PAID.value,
            details=f"Paid {amount} by {fine.payment_method}",
        )
        return Fine.model_validate(fine)

    @circulation_operation("waive_fine")
    def waive(self, fine_id: int, staff_id: str, reason: str) -> Fine:
        """Cancel a Pending fine on staff authority."""
        if not reason or not reason.strip():
            raise CirculationError(
                FailureReason.REASON_REQUIRED, "A reason is required to waive a fine."
            )
        fine = self._get_fine(fine_id)
        self._ensure_pending(fine, "waived")

        fine.status = FineStatusEnum.WAIVED
        fine.waived_by = str(staff_id)
        fine.waiver_reason = reason.strip()
        fine.waived_at = self.now()
        self._reduce_outstanding(self._get_member(fine.member_id), fine.amount)

        self._audit(
            "Fine",
            fine.id,
            AuditActionEnum.FINE_WAIVED,
            before_state=FineStatusEnum.PENDING.value,
            after_state=FineStatusEnum.WAIVED.value,
            details=f"Waived by {staff_id}: {fine.waiver_reason}",
        )
        return Fine.model_validate(fine)

    @circulation_operation("list_member_fines")
    def member_fines(self, member_id: int, pending_only: bool = False) -> list[Fine]:
        self._get_member(member_id)
        predicates = [FineDB.member_id == member_id]
        if pending_only:
            predicates.append(FineDB.status == FineStatusEnum.PENDING)
        rows = self.fines.find_all(*predicates, order_by=(FineDB.fine_date, FineDB.id))
        return [Fine.model_validate(row) for row in rows]

    @staticmethod
    def _ensure_pending(fine: FineDB, verb: str) -> None:
        if fine.status != FineStatusEnum.PENDING:
            raise CirculationError(
                FailureReason.ALREADY_SETTLED,
                f"Only pending fines can be {verb}. Current status: {fine.status.value}.",
            )
