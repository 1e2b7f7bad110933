"""
Overdue sweep.

Run periodically, the sweep marks Active loans past their due date as
Overdue, tells each member once (on that transition), and accrues the fine
owed so far. Running it again without the clock moving changes nothing:
statuses are already Overdue and ``FineLedger.accrue_overdue`` only ever
charges the difference.
"""

import logging
from decimal import Decimal

from pydantic import BaseModel

from ..database.schema import OPEN_LOAN_STATUSES, AuditActionEnum, LoanStatusEnum
from ..database.schema import Loan as LoanDB
from ..notifications import NotificationType
from .base import ZERO, CirculationService, circulation_operation
from .fines import FineLedger, days_overdue

logger = logging.getLogger(__name__)


class OverdueSweepReport(BaseModel):
    """What one overdue sweep changed."""

    loans_checked: int = 0
    loans_marked_overdue: int = 0
    fines_accrued: int = 0
    total_accrued: Decimal = ZERO
    notices_sent: int = 0


class OverdueService(CirculationService):
    """Flags overdue loans and keeps their fines current."""

    def __init__(self, uow, **kwargs):
        super().__init__(uow, **kwargs)
        self.ledger = FineLedger(uow, **self._collaborator_kwargs())

    @circulation_operation("overdue_sweep")
    def sweep(self) -> OverdueSweepReport:
        now = self.now()
        report = OverdueSweepReport()
        loans = self.loans.find_all(
            LoanDB.status.in_(OPEN_LOAN_STATUSES),
            LoanDB.due_date < now,
            order_by=(LoanDB.due_date, LoanDB.id),
        )

        for loan in loans:
            report.loans_checked += 1
            newly_overdue = loan.status == LoanStatusEnum.ACTIVE
            if newly_overdue:
                loan.status = LoanStatusEnum.OVERDUE
                report.loans_marked_overdue += 1
                self._audit(
                    "Loan",
                    loan.id,
                    AuditActionEnum.UPDATE,
                    before_state=LoanStatusEnum.ACTIVE.value,
                    after_state=LoanStatusEnum.OVERDUE.value,
                )

            accrued = self.ledger.accrue_overdue(loan, now)
            if accrued > ZERO:
                report.fines_accrued += 1
                report.total_accrued += accrued

            if newly_overdue:
                self._send_overdue_notice(loan, now)
                report.notices_sent += 1

        logger.info(
            "Overdue sweep: %d checked, %d newly overdue, %s accrued",
            report.loans_checked,
            report.loans_marked_overdue,
            report.total_accrued,
        )
        return report

    def _send_overdue_notice(self, loan: LoanDB, now) -> None:
        title = loan.book_copy.book.title
        days = days_overdue(loan.due_date, now)
        owed = self.ledger.overdue_amount(loan, now)
        self._notify(
            loan.member_id,
            NotificationType.OVERDUE_NOTICE,
            f"Overdue Book: {title}",
            f'"{title}" was due on {loan.due_date:%Y-%m-%d} and is {days} day(s) overdue. '
            f"Current fine: ${owed:.2f}. Please return it as soon as possible.",
        )
