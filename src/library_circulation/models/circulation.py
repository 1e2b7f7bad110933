"""
Circulation models for the library circulation core.

These are the values circulation operations hand back:

- Loan: a copy lent to a member
- Reservation: a member's place in a title's hold queue
- Fine: a charge against a member, optionally tied to a loan
- AuditEntry: one line of the audit trail
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..database.schema import (
    OPEN_LOAN_STATUSES,
    AuditActionEnum,
    CopyConditionEnum,
    FineStatusEnum,
    FineTypeEnum,
    LoanStatusEnum,
    ReservationStatusEnum,
)


class Loan(BaseModel):
    """A loan of one copy to one member."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    member_id: int
    book_copy_id: int
    book_id: int = Field(..., description="Title the lent copy belongs to")
    loan_date: datetime
    due_date: datetime
    return_date: datetime | None = None
    status: LoanStatusEnum = LoanStatusEnum.ACTIVE
    return_condition: CopyConditionEnum | None = None
    renewal_count: int = Field(default=0, ge=0)

    @property
    def is_open(self) -> bool:
        """Active and Overdue loans still hold their copy."""
        return self.status in OPEN_LOAN_STATUSES

    def is_overdue_at(self, moment: datetime) -> bool:
        return self.is_open and moment > self.due_date


class Reservation(BaseModel):
    """A hold on a title.

    Active reservations wait in the queue. A Fulfilled reservation holds a
    specific copy until ``pickup_deadline``.
    """

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    member_id: int
    book_id: int
    book_copy_id: int | None = None
    reservation_date: datetime
    status: ReservationStatusEnum = ReservationStatusEnum.ACTIVE
    notes: str | None = None
    fulfilled_at: datetime | None = None
    pickup_deadline: datetime | None = None
    picked_up_at: datetime | None = None
    expired_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by_staff: bool = False

    @property
    def awaiting_pickup(self) -> bool:
        return self.status == ReservationStatusEnum.FULFILLED and self.picked_up_at is None


class Fine(BaseModel):
    """A charge against a member."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    member_id: int
    loan_id: int | None = None
    fine_type: FineTypeEnum
    amount: Decimal = Field(..., gt=0)
    amount_paid: Decimal = Field(default=Decimal("0.00"), ge=0)
    status: FineStatusEnum = FineStatusEnum.PENDING
    description: str = ""
    fine_date: datetime
    payment_method: str | None = None
    payment_reference: str | None = None
    payment_date: datetime | None = None
    waived_by: str | None = None
    waiver_reason: str | None = None
    waived_at: datetime | None = None

    @property
    def is_settled(self) -> bool:
        return self.status != FineStatusEnum.PENDING


class AuditEntry(BaseModel):
    """One audit trail record."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    entity_type: str
    entity_id: str
    action: AuditActionEnum
    before_state: str | None = None
    after_state: str | None = None
    details: str | None = None
    created_at: datetime | None = None
