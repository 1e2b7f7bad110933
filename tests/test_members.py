"""
Tests for member enrolment and lookup.

These tests cover:
1. Registering members and the uniqueness rules
2. Looking members up by id and membership number
3. Changing membership status and its effect on borrowing
"""

from decimal import Decimal

import pytest

from library_circulation.database.schema import AuditActionEnum, MembershipStatusEnum
from library_circulation.database.schema import Member as MemberDB
from library_circulation.errors import FailureReason
from library_circulation.models import Member
from library_circulation.services import CheckoutService, MemberService


@pytest.fixture
def members(build) -> MemberService:
    return build(MemberService)


class TestRegister:
    def test_register(self, members, session, audit_sink):
        result = members.register("M-100200", "  Grace Hopper ", "Grace@Navy.MIL")

        assert result.ok
        member = result.value
        assert isinstance(member, Member)
        assert member.name == "Grace Hopper"
        assert member.email == "grace@navy.mil"
        assert member.status == MembershipStatusEnum.ACTIVE
        assert member.outstanding_fines == Decimal("0.00")
        assert member.current_loan_count == 0
        assert member.available_loan_slots(5) == 5
        assert session.get(MemberDB, member.id).membership_number == "M-100200"
        assert AuditActionEnum.CREATE.value in audit_sink.actions()

    def test_duplicate_membership_number(self, members, member):
        result = members.register(member.membership_number, "Someone Else", "else@library.org")

        assert result.error.reason is FailureReason.DUPLICATE_MEMBER
        assert result.error.message == (
            f"Member with membership number '{member.membership_number}' already exists."
        )

    def test_duplicate_email_ignores_case(self, members, member):
        result = members.register("M-999999", "Someone Else", member.email.upper())

        assert result.error.reason is FailureReason.DUPLICATE_MEMBER
        assert "email" in result.error.message

    @pytest.mark.parametrize(
        ("membership_number", "name", "email"),
        [
            ("M-1", "Ada Lovelace", "not-an-email"),
            ("", "Ada Lovelace", "ada@library.org"),
            ("M-1", "   ", "ada@library.org"),
            ("M-" + "9" * 30, "Ada Lovelace", "ada@library.org"),
        ],
    )
    def test_invalid_details(self, members, session, membership_number, name, email):
        result = members.register(membership_number, name, email)

        assert result.error.reason is FailureReason.INVALID_MEMBER_DETAILS
        assert result.error.message.startswith("Invalid ")
        assert session.query(MemberDB).count() == 0


class TestLookup:
    def test_get(self, members, member):
        found = members.get(member.id).unwrap()

        assert found.id == member.id
        assert found.membership_number == member.membership_number
        assert found.is_active

    def test_get_reflects_open_loans(self, build, members, member, book):
        build(CheckoutService).checkout(member.id, book.copies[0].id).unwrap()

        assert members.get(member.id).unwrap().current_loan_count == 1

    def test_get_unknown(self, members):
        result = members.get(404)

        assert result.error.reason is FailureReason.MEMBER_NOT_FOUND
        assert result.error.message == "Member with ID 404 not found."

    def test_find_by_membership_number(self, members, member):
        found = members.find_by_membership_number(f" {member.membership_number} ").unwrap()

        assert found.id == member.id

    def test_find_unknown_number(self, members):
        result = members.find_by_membership_number("M-404")

        assert result.error.reason is FailureReason.MEMBER_NOT_FOUND
        assert result.error.message == "Member with membership number 'M-404' not found."


class TestUpdateStatus:
    def test_suspend_blocks_borrowing(self, build, members, member, book, audit_sink):
        suspended = members.update_status(member.id, "suspended").unwrap()

        assert suspended.status == MembershipStatusEnum.SUSPENDED
        assert not suspended.is_active
        assert AuditActionEnum.UPDATE.value in audit_sink.actions()
        refused = build(CheckoutService).checkout(member.id, book.copies[0].id)
        assert refused.error.reason is FailureReason.MEMBER_NOT_ACTIVE

    def test_reinstate(self, members, make_member):
        member = make_member(status=MembershipStatusEnum.EXPIRED)

        assert members.update_status(member.id, MembershipStatusEnum.ACTIVE).unwrap().is_active

    def test_same_status_is_a_no_op(self, members, member, audit_sink):
        members.update_status(member.id, MembershipStatusEnum.ACTIVE).unwrap()

        assert audit_sink.actions() == []

    def test_unknown_member(self, members):
        result = members.update_status(404, "expired")

        assert result.error.reason is FailureReason.MEMBER_NOT_FOUND

    def test_unknown_status_raises(self, members, member):
        with pytest.raises(ValueError):
            members.update_status(member.id, "banned")
