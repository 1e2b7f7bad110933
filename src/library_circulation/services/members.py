"""
Member enrolment and lookup.

New members start Active with no loans and no fines. Membership numbers and
email addresses are unique across the library; email is compared
case-insensitively. Suspending or expiring a membership only stops new
borrowing, renewals and reservations; loans already out are unaffected.
"""

import logging

from pydantic import ValidationError
from sqlalchemy import func

from ..database.schema import AuditActionEnum, MembershipStatusEnum
from ..database.schema import Member as MemberDB
from ..errors import CirculationError, FailureReason
from ..models import Member, MemberRegistration
from .base import ZERO, CirculationService, circulation_operation

logger = logging.getLogger(__name__)


class MemberService(CirculationService):
    """Enrols members and reads them back."""

    @circulation_operation("register_member")
    def register(self, membership_number: str, name: str, email: str) -> Member:
        """Enrol an Active member with a clean balance."""
        try:
            details = MemberRegistration(
                membership_number=membership_number, name=name, email=email
            )
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            raise CirculationError(
                FailureReason.INVALID_MEMBER_DETAILS, f"Invalid {field}: {first['msg']}."
            ) from e

        if self.members.exists(MemberDB.membership_number == details.membership_number):
            raise CirculationError(
                FailureReason.DUPLICATE_MEMBER,
                f"Member with membership number '{details.membership_number}' already exists.",
            )
        if self.members.exists(func.lower(MemberDB.email) == details.email):
            raise CirculationError(
                FailureReason.DUPLICATE_MEMBER,
                f"Member with email '{details.email}' already exists.",
            )

        member = self.members.add(
            MemberDB(
                membership_number=details.membership_number,
                name=details.name,
                email=details.email,
                status=MembershipStatusEnum.ACTIVE,
                outstanding_fines=ZERO,
                current_loan_count=0,
            )
        )
        self.uow.flush()

        logger.info("Registered member %s (%s)", member.id, member.membership_number)
        self._audit(
            "Member",
            member.id,
            AuditActionEnum.CREATE,
            after_state=MembershipStatusEnum.ACTIVE.value,
            details=member.membership_number,
        )
        return Member.model_validate(member)

    @circulation_operation("get_member")
    def get(self, member_id: int) -> Member:
        return Member.model_validate(self._get_member(member_id))

    @circulation_operation("find_member")
    def find_by_membership_number(self, membership_number: str) -> Member:
        member = self.members.find(MemberDB.membership_number == membership_number.strip())
        if member is None:
            raise CirculationError(
                FailureReason.MEMBER_NOT_FOUND,
                f"Member with membership number '{membership_number}' not found.",
            )
        return Member.model_validate(member)

    @circulation_operation("update_membership_status")
    def update_status(self, member_id: int, status: MembershipStatusEnum | str) -> Member:
        """Suspend, expire or reinstate a membership."""
        new_status = MembershipStatusEnum(status)
        member = self._get_member(member_id)
        if member.status == new_status:
            return Member.model_validate(member)

        previous = member.status
        member.status = new_status

        logger.info("Member %s status %s -> %s", member.id, previous.value, new_status.value)
        self._audit(
            "Member",
            member.id,
            AuditActionEnum.UPDATE,
            before_state=previous.value,
            after_state=new_status.value,
        )
        return Member.model_validate(member)
