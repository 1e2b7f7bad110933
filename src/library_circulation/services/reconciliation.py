"""
Reconciliation of cached member counters.

``Member.outstanding_fines`` and ``Member.current_loan_count`` are kept up to
date by every circulation operation, but they are still copies of numbers
the fines and loans tables already hold. This service recomputes both from
the source rows, reports members whose cached values drifted, and rewrites
them on request.
"""

import logging
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy import func, select

from ..database.schema import OPEN_LOAN_STATUSES, AuditActionEnum, FineStatusEnum
from ..database.schema import Fine as FineDB
from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from .base import ZERO, CirculationService, circulation_operation, to_money

logger = logging.getLogger(__name__)


class MemberDrift(BaseModel):
    """Cached versus recomputed counters for one member."""

    member_id: int
    stored_outstanding_fines: Decimal
    computed_outstanding_fines: Decimal
    stored_loan_count: int
    computed_loan_count: int
    repaired: bool = False

    @property
    def has_drift(self) -> bool:
        return (
            self.stored_outstanding_fines != self.computed_outstanding_fines
            or self.stored_loan_count != self.computed_loan_count
        )


class ReconciliationService(CirculationService):
    """Verifies and repairs cached member counters."""

    def pending_fines_total(self, member_id: int) -> Decimal:
        query = select(func.coalesce(func.sum(FineDB.amount), 0)).where(
            FineDB.member_id == member_id, FineDB.status == FineStatusEnum.PENDING
        )
        return to_money(self.uow.session.execute(query).scalar() or ZERO)

    def open_loan_count(self, member_id: int) -> int:
        return self.loans.count(
            LoanDB.member_id == member_id, LoanDB.status.in_(OPEN_LOAN_STATUSES)
        )

    def _check(self, member: MemberDB, repair: bool) -> MemberDrift:
        drift = MemberDrift(
            member_id=member.id,
            stored_outstanding_fines=to_money(member.outstanding_fines or ZERO),
            computed_outstanding_fines=self.pending_fines_total(member.id),
            stored_loan_count=member.current_loan_count or 0,
            computed_loan_count=self.open_loan_count(member.id),
        )
        if not drift.has_drift:
            return drift

        logger.warning(
            "Member %s counters drifted: fines %s (expected %s), loans %s (expected %s)",
            member.id,
            drift.stored_outstanding_fines,
            drift.computed_outstanding_fines,
            drift.stored_loan_count,
            drift.computed_loan_count,
        )
        if repair:
            member.outstanding_fines = drift.computed_outstanding_fines
            member.current_loan_count = drift.computed_loan_count
            drift.repaired = True
            self._audit(
                "Member",
                member.id,
                AuditActionEnum.RECONCILE,
                before_state=f"fines={drift.stored_outstanding_fines} loans={drift.stored_loan_count}",
                after_state=(
                    f"fines={drift.computed_outstanding_fines} loans={drift.computed_loan_count}"
                ),
            )
        return drift

    @circulation_operation("reconcile_member")
    def reconcile_member(self, member_id: int, repair: bool = False) -> MemberDrift:
        return self._check(self._get_member(member_id), repair)

    @circulation_operation("reconcile_all")
    def reconcile_all(self, repair: bool = False) -> list[MemberDrift]:
        """Check every member; returns only the ones that drifted."""
        drifted = []
        for member in self.members.find_all(order_by=(MemberDB.id,)):
            drift = self._check(member, repair)
            if drift.has_drift:
                drifted.append(drift)
        if drifted:
            logger.warning("Reconciliation found %d drifted member(s)", len(drifted))
        return drifted
