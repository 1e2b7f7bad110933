"""
Borrowing eligibility.

A member may borrow when, checked in this order:

1. their membership is Active
2. their outstanding fines do not exceed the configured ceiling
3. they hold fewer open (Active or Overdue) loans than the configured cap

The evaluator reports every violated rule, not just the first, so a desk
clerk can tell the member everything that needs fixing. Checkout refuses with
the first one.
"""

import logging
from decimal import Decimal

from pydantic import BaseModel, Field

from ..database.schema import OPEN_LOAN_STATUSES, LoanStatusEnum
from ..database.schema import Loan as LoanDB
from ..database.schema import Member as MemberDB
from ..errors import CirculationError, Failure, FailureReason
from .base import CirculationService, circulation_operation

logger = logging.getLogger(__name__)


class EligibilityResult(BaseModel):
    """Outcome of an eligibility check."""

    member_id: int
    eligible: bool
    violations: list[Failure] = Field(default_factory=list)
    available_loan_slots: int = Field(..., ge=0)
    open_loans: int = Field(..., ge=0)
    overdue_loans: int = Field(default=0, ge=0)
    outstanding_fines: Decimal
    warnings: list[str] = Field(default_factory=list)

    @property
    def reasons(self) -> list[FailureReason]:
        return [violation.reason for violation in self.violations]

    @property
    def first_violation(self) -> Failure | None:
        return self.violations[0] if self.violations else None


class EligibilityEvaluator(CirculationService):
    """Decides whether a member may borrow, renew or reserve."""

    def open_loan_count(self, member_id: int) -> int:
        return self.loans.count(
            LoanDB.member_id == member_id, LoanDB.status.in_(OPEN_LOAN_STATUSES)
        )

    def overdue_loan_count(self, member_id: int) -> int:
        """Loans already marked Overdue plus Active loans past their due date."""
        now = self.now()
        return self.loans.count(
            LoanDB.member_id == member_id,
            (LoanDB.status == LoanStatusEnum.OVERDUE)
            | ((LoanDB.status == LoanStatusEnum.ACTIVE) & (LoanDB.due_date < now)),
        )

    def evaluate(self, member: MemberDB) -> EligibilityResult:
        """Check every borrowing rule for ``member``. Never raises."""
        violations: list[Failure] = []

        if not member.is_active:
            violations.append(
                Failure(
                    reason=FailureReason.MEMBER_NOT_ACTIVE,
                    message=(
                        f"Member with ID {member.id} is not active. "
                        f"Current status: {member.status.value}."
                    ),
                )
            )

        fines = member.outstanding_fines or Decimal("0.00")
        ceiling = self.config.max_outstanding_fines
        if fines > ceiling:
            violations.append(
                Failure(
                    reason=FailureReason.EXCESSIVE_FINES,
                    message=(
                        f"Member has excessive outstanding fines (${fines:.2f}). "
                        f"Maximum allowed is ${ceiling:.2f}."
                    ),
                )
            )

        open_loans = self.open_loan_count(member.id)
        cap = self.config.max_active_loans
        if open_loans >= cap:
            violations.append(
                Failure(
                    reason=FailureReason.LOAN_LIMIT_REACHED,
                    message=f"Member has reached the maximum number of active loans ({cap}).",
                )
            )

        overdue = self.overdue_loan_count(member.id)
        warnings = []
        if overdue:
            warnings.append(f"Member has {overdue} overdue loan(s).")

        return EligibilityResult(
            member_id=member.id,
            eligible=not violations,
            violations=violations,
            available_loan_slots=max(0, cap - open_loans),
            open_loans=open_loans,
            overdue_loans=overdue,
            outstanding_fines=fines,
            warnings=warnings,
        )

    def ensure_can_borrow(self, member: MemberDB) -> EligibilityResult:
        """Raise the first violated rule, if any."""
        result = self.evaluate(member)
        violation = result.first_violation
        if violation is not None:
            raise CirculationError(violation.reason, violation.message)
        return result

    def can_reserve(self, member: MemberDB) -> bool:
        """Reservations only require an Active membership."""
        return member.is_active

    def ensure_can_reserve(self, member: MemberDB) -> None:
        if not self.can_reserve(member):
            raise CirculationError(
                FailureReason.MEMBER_NOT_ACTIVE,
                f"Member with ID {member.id} is not active. Current status: {member.status.value}.",
            )

    @circulation_operation("check_eligibility")
    def check(self, member_id: int) -> EligibilityResult:
        """Report whether a member may borrow right now."""
        return self.evaluate(self._get_member(member_id))
