"""Tests for renewing loans."""

from datetime import date, datetime, timedelta

import pytest

from library_circulation.database.schema import LoanStatusEnum, MembershipStatusEnum
from library_circulation.database.schema import Loan as LoanDB
from library_circulation.errors import FailureReason
from library_circulation.services import (
    CheckoutService,
    RenewalService,
    ReservationQueueManager,
    ReturnService,
)


@pytest.fixture
def renewal(build) -> RenewalService:
    return build(RenewalService)


@pytest.fixture
def loan(build, member, book):
    """A 14 day loan taken out at the start of the test clock."""
    return build(CheckoutService).checkout(member.id, book.copies[0].id).unwrap()


class TestRenew:
    def test_default_extension(self, renewal, clock, loan):
        clock.advance(days=10)

        result = renewal.renew(loan.id)

        assert result.ok
        # Due moves by one loan period, as long as it stays within 30 days of now
        assert result.value.due_date == loan.due_date + timedelta(days=14)
        assert result.value.renewal_count == 1

    def test_default_extension_is_capped(self, build, config, clock, loan):
        short = build(RenewalService, config=config.model_copy(update={"max_extension_days": 20}))

        result = short.renew(loan.id)

        assert result.value.due_date == clock() + timedelta(days=20)

    def test_explicit_date(self, renewal, loan):
        target = loan.due_date + timedelta(days=5)

        assert renewal.renew(loan.id, target).value.due_date == target

    def test_date_keeps_due_time(self, renewal, loan):
        result = renewal.renew(loan.id, date(2024, 1, 20))

        assert result.value.due_date == datetime(2024, 1, 20, 10, 0)

    def test_only_due_date_changes(self, renewal, session, loan):
        renewal.renew(loan.id).unwrap()

        stored = session.get(LoanDB, loan.id)
        assert stored.loan_date == loan.loan_date
        assert stored.status == LoanStatusEnum.ACTIVE
        assert stored.book_copy_id == loan.book_copy_id


class TestRenewRefusals:
    def test_unknown_loan(self, renewal):
        assert renewal.renew(404).error.reason is FailureReason.LOAN_NOT_FOUND

    def test_returned_loan(self, build, renewal, loan):
        build(ReturnService).return_loan(loan.id).unwrap()

        result = renewal.renew(loan.id)

        assert result.error.reason is FailureReason.NOT_ACTIVE
        assert result.error.message == (
            "Only active loans can be extended. Current status: returned."
        )

    def test_overdue_loan(self, renewal, session, loan):
        session.get(LoanDB, loan.id).status = LoanStatusEnum.OVERDUE
        session.commit()

        assert renewal.renew(loan.id).error.reason is FailureReason.NOT_ACTIVE

    def test_new_date_must_be_later(self, renewal, loan):
        result = renewal.renew(loan.id, loan.due_date)

        assert result.error.reason is FailureReason.INVALID_EXTENSION
        assert result.error.message == "New due date must be after the current due date."

    def test_extension_limit(self, renewal, clock, loan):
        result = renewal.renew(loan.id, clock() + timedelta(days=31))

        assert result.error.reason is FailureReason.EXTENSION_LIMIT_EXCEEDED

    def test_default_extension_beyond_limit_is_invalid(self, build, renewal, member, make_book):
        book = make_book()
        far = build(CheckoutService).checkout(
            member.id, book.copies[0].id, datetime(2024, 1, 31, 10, 0)
        ).unwrap()

        # Due already sits at now + 30 days; there is no later date left to move to
        result = renewal.renew(far.id)

        assert result.error.reason is FailureReason.INVALID_EXTENSION

    def test_inactive_member(self, renewal, session, member, loan):
        member.status = MembershipStatusEnum.SUSPENDED
        session.commit()

        assert renewal.renew(loan.id).error.reason is FailureReason.MEMBER_NOT_ACTIVE

    def test_waiting_reservation_blocks_renewal(self, build, renewal, make_member, book, loan):
        for copy in book.copies[1:]:
            build(CheckoutService).checkout(make_member().id, copy.id).unwrap()
        build(ReservationQueueManager).reserve(make_member(name="Grace Hopper").id, book.id).unwrap()

        result = renewal.renew(loan.id)

        assert result.error.reason is FailureReason.RESERVATION_CONFLICT

    def test_checks_run_in_order(self, renewal, session, clock, member, loan):
        """A date problem is reported before a membership problem."""
        member.status = MembershipStatusEnum.SUSPENDED
        session.commit()

        result = renewal.renew(loan.id, clock() + timedelta(days=45))

        assert result.error.reason is FailureReason.EXTENSION_LIMIT_EXCEEDED
