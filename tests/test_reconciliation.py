"""Tests for reconciling cached member counters."""

from decimal import Decimal

import pytest

from library_circulation.database.schema import AuditActionEnum, FineTypeEnum
from library_circulation.database.schema import Member as MemberDB
from library_circulation.errors import FailureReason
from library_circulation.services import CheckoutService, FineLedger, ReconciliationService


@pytest.fixture
def reconciliation(build) -> ReconciliationService:
    return build(ReconciliationService)


@pytest.fixture
def busy_member(build, member, book):
    """A member with two open loans and a $4.00 pending fine."""
    checkout = build(CheckoutService)
    checkout.checkout(member.id, book.copies[0].id).unwrap()
    checkout.checkout(member.id, book.copies[1].id).unwrap()
    build(FineLedger).assess(member.id, FineTypeEnum.DAMAGE, "4.00").unwrap()
    return member


class TestReconcileMember:
    def test_consistent_member(self, reconciliation, busy_member):
        drift = reconciliation.reconcile_member(busy_member.id).unwrap()

        assert not drift.has_drift
        assert drift.computed_outstanding_fines == Decimal("4.00")
        assert drift.computed_loan_count == 2

    def test_detects_drift_without_repairing(self, reconciliation, session, busy_member):
        busy_member.outstanding_fines = Decimal("9.99")
        busy_member.current_loan_count = 0
        session.commit()

        drift = reconciliation.reconcile_member(busy_member.id).unwrap()

        assert drift.has_drift
        assert drift.stored_outstanding_fines == Decimal("9.99")
        assert drift.stored_loan_count == 0
        assert drift.repaired is False
        assert session.get(MemberDB, busy_member.id).outstanding_fines == Decimal("9.99")

    def test_repair(self, reconciliation, session, busy_member, audit_sink):
        busy_member.outstanding_fines = Decimal("0.00")
        session.commit()

        drift = reconciliation.reconcile_member(busy_member.id, repair=True).unwrap()

        assert drift.repaired is True
        stored = session.get(MemberDB, busy_member.id)
        assert stored.outstanding_fines == Decimal("4.00")
        assert stored.current_loan_count == 2
        assert AuditActionEnum.RECONCILE.value in audit_sink.actions()

    def test_unknown_member(self, reconciliation):
        assert reconciliation.reconcile_member(404).error.reason is FailureReason.MEMBER_NOT_FOUND


class TestReconcileAll:
    def test_reports_only_drifted_members(self, reconciliation, session, make_member, busy_member):
        drifted = make_member(name="Drifted", current_loan_count=3)
        make_member(name="Fine")

        report = reconciliation.reconcile_all().unwrap()

        assert [d.member_id for d in report] == [drifted.id]

    def test_repair_all(self, reconciliation, make_member):
        make_member(outstanding_fines="12.00")
        make_member(current_loan_count=1)

        assert len(reconciliation.reconcile_all(repair=True).unwrap()) == 2
        assert reconciliation.reconcile_all().unwrap() == []
