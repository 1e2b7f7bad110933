"""
Tests for the fine ledger.

These tests cover:
1. Day counting and fine calculation
2. Staff-assessed fines
3. Paying in full and waiving
4. The outstanding balance always equals the sum of Pending fines
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func

from library_circulation.database.schema import FineStatusEnum, FineTypeEnum
from library_circulation.database.schema import Fine as FineDB
from library_circulation.database.schema import Member as MemberDB
from library_circulation.errors import FailureReason
from library_circulation.notifications import NotificationType
from library_circulation.services import CheckoutService, FineLedger, ReturnService, days_overdue


@pytest.fixture
def ledger(build) -> FineLedger:
    return build(FineLedger)


def pending_total(session, member_id) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(FineDB.amount), 0))
        .filter(FineDB.member_id == member_id, FineDB.status == FineStatusEnum.PENDING)
        .scalar()
    )
    return Decimal(str(total)).quantize(Decimal("0.01"))


class TestDaysOverdue:
    @pytest.mark.parametrize(
        ("late_by", "days"),
        [
            (timedelta(0), 0),
            (timedelta(seconds=1), 0),
            (timedelta(hours=23, minutes=59, seconds=59), 0),
            (timedelta(days=1), 1),
            (timedelta(days=5, hours=2), 5),
            (timedelta(days=-3), 0),
        ],
    )
    def test_whole_days_only(self, late_by, days):
        due = datetime(2024, 1, 10, 10, 0)

        assert days_overdue(due, due + late_by) == days


class TestCalculate:
    def test_open_loan_measured_to_now(self, build, ledger, clock, member, book):
        loan = build(CheckoutService).checkout(member.id, book.copies[0].id).unwrap()
        clock.set(loan.due_date + timedelta(days=4, hours=5))

        assert ledger.calculate(loan.id).unwrap() == Decimal("2.00")

    def test_returned_loan_measured_to_return_date(self, build, ledger, clock, member, book):
        loan = build(CheckoutService).checkout(member.id, book.copies[0].id).unwrap()
        clock.set(loan.due_date + timedelta(days=2))
        build(ReturnService).return_loan(loan.id).unwrap()
        clock.advance(days=30)

        assert ledger.calculate(loan.id).unwrap() == Decimal("1.00")

    def test_not_yet_due(self, build, ledger, member, book):
        loan = build(CheckoutService).checkout(member.id, book.copies[0].id).unwrap()

        assert ledger.calculate(loan.id).unwrap() == Decimal("0.00")

    def test_unknown_loan(self, ledger):
        assert ledger.calculate(404).error.reason is FailureReason.LOAN_NOT_FOUND


class TestAssess:
    def test_assess_damage_fine(self, ledger, session, member, notifier):
        fine = ledger.assess(member.id, FineTypeEnum.DAMAGE, "7.5", description="Water damage").unwrap()

        assert fine.amount == Decimal("7.50")
        assert fine.status == FineStatusEnum.PENDING
        assert fine.description == "Water damage"
        assert session.get(MemberDB, member.id).outstanding_fines == Decimal("7.50")
        [notice] = notifier.of_type(NotificationType.FINE_NOTICE)
        assert notice.member_id == member.id

    def test_default_description(self, ledger, member):
        fine = ledger.assess(member.id, "lost", Decimal("30")).unwrap()

        assert fine.description == "Lost fine"

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_amount_must_be_positive(self, ledger, member, amount):
        result = ledger.assess(member.id, FineTypeEnum.DAMAGE, amount)

        assert result.error.reason is FailureReason.INVALID_AMOUNT

    def test_unknown_member_and_loan(self, ledger, member):
        assert ledger.assess(404, FineTypeEnum.DAMAGE, "1").error.reason is (
            FailureReason.MEMBER_NOT_FOUND
        )
        assert ledger.assess(member.id, FineTypeEnum.DAMAGE, "1", loan_id=404).error.reason is (
            FailureReason.LOAN_NOT_FOUND
        )


class TestPay:
    @pytest.fixture
    def fine(self, ledger, member):
        return ledger.assess(member.id, FineTypeEnum.DAMAGE, "4.50").unwrap()

    def test_pay_in_full(self, ledger, session, clock, member, fine):
        paid = ledger.pay(fine.id, "4.50", "card", reference="TX-1001").unwrap()

        assert paid.status == FineStatusEnum.PAID
        assert paid.amount_paid == Decimal("4.50")
        assert paid.payment_method == "card"
        assert paid.payment_reference == "TX-1001"
        assert paid.payment_date == clock()
        assert paid.is_settled
        assert session.get(MemberDB, member.id).outstanding_fines == Decimal("0.00")

    def test_partial_payment_refused(self, ledger, fine):
        result = ledger.pay(fine.id, "2.00", "cash")

        assert result.error.reason is FailureReason.PAYMENT_AMOUNT_MISMATCH
        assert "Partial payments are not accepted" in result.error.message

    def test_payment_method_required(self, ledger, fine):
        assert ledger.pay(fine.id, "4.50", " ").error.reason is FailureReason.PAYMENT_METHOD_REQUIRED

    def test_cannot_pay_twice(self, ledger, fine):
        ledger.pay(fine.id, "4.50", "cash").unwrap()

        result = ledger.pay(fine.id, "4.50", "cash")

        assert result.error.reason is FailureReason.ALREADY_SETTLED
        assert result.error.message == "Only pending fines can be paid. Current status: paid."

    def test_unknown_fine(self, ledger):
        assert ledger.pay(404, "1.00", "cash").error.reason is FailureReason.FINE_NOT_FOUND


class TestWaive:
    @pytest.fixture
    def fine(self, ledger, member):
        return ledger.assess(member.id, FineTypeEnum.DAMAGE, "3.00").unwrap()

    def test_waive(self, ledger, session, clock, member, fine):
        waived = ledger.waive(fine.id, "staff-17", "First offence").unwrap()

        assert waived.status == FineStatusEnum.WAIVED
        assert waived.waived_by == "staff-17"
        assert waived.waiver_reason == "First offence"
        assert waived.waived_at == clock()
        assert session.get(MemberDB, member.id).outstanding_fines == Decimal("0.00")

    def test_reason_checked_first(self, ledger):
        assert ledger.waive(404, "staff-17", "").error.reason is FailureReason.REASON_REQUIRED
        assert ledger.waive(404, "staff-17", "ok").error.reason is FailureReason.FINE_NOT_FOUND

    def test_cannot_waive_paid_fine(self, ledger, fine):
        ledger.pay(fine.id, "3.00", "cash").unwrap()

        assert ledger.waive(fine.id, "staff-17", "Oops").error.reason is FailureReason.ALREADY_SETTLED


class TestBalance:
    def test_balance_tracks_pending_fines(self, build, ledger, session, clock, member, book):
        loan = build(CheckoutService).checkout(member.id, book.copies[0].id).unwrap()
        clock.set(loan.due_date + timedelta(days=6))
        build(ReturnService).return_loan(loan.id).unwrap()
        damage = ledger.assess(member.id, FineTypeEnum.DAMAGE, "5.00").unwrap()
        lost = ledger.assess(member.id, FineTypeEnum.LOST, "20.00").unwrap()

        def balance():
            return session.get(MemberDB, member.id).outstanding_fines

        assert balance() == pending_total(session, member.id) == Decimal("28.00")

        ledger.pay(damage.id, "5.00", "cash").unwrap()
        assert balance() == pending_total(session, member.id) == Decimal("23.00")

        ledger.waive(lost.id, "staff-1", "Copy found").unwrap()
        assert balance() == pending_total(session, member.id) == Decimal("3.00")

    def test_balance_clamped_at_zero(self, ledger, session, member, fine_with_drifted_balance, caplog):
        with caplog.at_level("WARNING"):
            ledger.pay(fine_with_drifted_balance.id, "6.00", "cash").unwrap()

        assert session.get(MemberDB, member.id).outstanding_fines == Decimal("0.00")
        assert "Data inconsistency" in caplog.text

    @pytest.fixture
    def fine_with_drifted_balance(self, ledger, session, member):
        fine = ledger.assess(member.id, FineTypeEnum.DAMAGE, "6.00").unwrap()
        session.get(MemberDB, member.id).outstanding_fines = Decimal("2.00")
        session.commit()
        return fine


class TestMemberFines:
    def test_list_fines(self, ledger, member):
        first = ledger.assess(member.id, FineTypeEnum.DAMAGE, "1.00").unwrap()
        second = ledger.assess(member.id, FineTypeEnum.DAMAGE, "2.00").unwrap()
        ledger.pay(first.id, "1.00", "cash").unwrap()

        everything = ledger.member_fines(member.id).unwrap()
        pending = ledger.member_fines(member.id, pending_only=True).unwrap()

        assert [f.id for f in everything] == [first.id, second.id]
        assert [f.id for f in pending] == [second.id]
