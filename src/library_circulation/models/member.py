"""
Member model for the library circulation core.

Members borrow copies, queue for titles and owe fines. The two cached
counters on a member are what the eligibility rules read, so they are exposed
here alongside the derived ``available_loan_slots`` helper.
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..database.schema import MembershipStatusEnum


class Member(BaseModel):
    """A library member as returned by circulation operations."""

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "membership_number": "M-000123",
                "name": "Ada Lovelace",
                "email": "ada@example.org",
                "status": "active",
                "outstanding_fines": "2.50",
                "current_loan_count": 2,
            }
        },
    )

    id: int
    membership_number: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    status: MembershipStatusEnum = Field(
        default=MembershipStatusEnum.ACTIVE,
        description="Only Active members may borrow, renew or reserve",
    )
    outstanding_fines: Decimal = Field(
        default=Decimal("0.00"),
        description="Sum of the member's Pending fines",
        ge=0,
    )
    current_loan_count: int = Field(
        default=0,
        description="Number of the member's Active or Overdue loans",
        ge=0,
    )

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatusEnum.ACTIVE

    def available_loan_slots(self, max_active_loans: int) -> int:
        """Remaining loans before the configured cap is reached."""
        return max(0, max_active_loans - self.current_loan_count)


class MemberRegistration(BaseModel):
    """Details needed to enrol a new member."""

    model_config = ConfigDict(str_strip_whitespace=True)

    membership_number: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()
