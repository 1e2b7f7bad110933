"""Circulation services: the rules that move copies, loans, reservations and fines."""

from .availability import CopyAvailabilityTracker
from .base import CirculationService, circulation_operation
from .catalog import CatalogService
from .checkout import CheckoutService
from .eligibility import EligibilityEvaluator, EligibilityResult
from .fines import FineLedger, days_overdue
from .locks import KeyedLocks, book_locks
from .members import MemberService
from .overdue import OverdueService, OverdueSweepReport
from .reconciliation import MemberDrift, ReconciliationService
from .renewal import RenewalService
from .reservations import ReservationQueueManager
from .returns import ReturnService

__all__ = [
    "CatalogService",
    "CheckoutService",
    "CirculationService",
    "CopyAvailabilityTracker",
    "EligibilityEvaluator",
    "EligibilityResult",
    "FineLedger",
    "KeyedLocks",
    "MemberDrift",
    "MemberService",
    "OverdueService",
    "OverdueSweepReport",
    "ReconciliationService",
    "RenewalService",
    "ReservationQueueManager",
    "ReturnService",
    "book_locks",
    "circulation_operation",
    "days_overdue",
]
