"""
Copy availability.

A copy is lendable exactly when its status is Available; a title is
lendable when at least one of its copies is. This module is also the one
place that answers "does this copy/title still have open loans or waiting
reservations", which the checkout, renewal, catalog and reservation code all
ask.
"""

from sqlalchemy import func, select

from ..database.schema import OPEN_LOAN_STATUSES, CopyStatusEnum, ReservationStatusEnum
from ..database.schema import BookCopy as BookCopyDB
from ..database.schema import Loan as LoanDB
from ..database.schema import Reservation as ReservationDB
from ..models import BookCopy
from .base import CirculationService, circulation_operation


def _copy_number_order():
    # Copy numbers are strings; order "2" before "10"
    return (func.length(BookCopyDB.copy_number), BookCopyDB.copy_number, BookCopyDB.id)


class CopyAvailabilityTracker(CirculationService):
    """Read-only availability queries."""

    def is_copy_available(self, copy_id: int) -> bool:
        copy = self.copies.get(copy_id)
        return copy is not None and copy.status == CopyStatusEnum.AVAILABLE

    def is_book_available(self, book_id: int) -> bool:
        return self.copies.exists(
            BookCopyDB.book_id == book_id, BookCopyDB.status == CopyStatusEnum.AVAILABLE
        )

    def available_copies(self, book_id: int) -> list[BookCopyDB]:
        return self.copies.find_all(
            BookCopyDB.book_id == book_id,
            BookCopyDB.status == CopyStatusEnum.AVAILABLE,
            order_by=_copy_number_order(),
        )

    def next_available_copy(self, book_id: int, lock: bool = True) -> BookCopyDB | None:
        """The lowest-numbered Available copy, read FOR UPDATE when ``lock``."""
        return self.copies.find(
            BookCopyDB.book_id == book_id,
            BookCopyDB.status == CopyStatusEnum.AVAILABLE,
            order_by=_copy_number_order(),
            for_update=lock,
        )

    def open_loan_for_copy(self, copy_id: int) -> LoanDB | None:
        return self.loans.find(
            LoanDB.book_copy_id == copy_id, LoanDB.status.in_(OPEN_LOAN_STATUSES)
        )

    def has_active_loans(self, copy_id: int) -> bool:
        return self.loans.exists(
            LoanDB.book_copy_id == copy_id, LoanDB.status.in_(OPEN_LOAN_STATUSES)
        )

    def has_active_loans_for_book(self, book_id: int) -> bool:
        copy_ids = self._copy_ids(book_id)
        return self.loans.exists(
            LoanDB.book_copy_id.in_(copy_ids), LoanDB.status.in_(OPEN_LOAN_STATUSES)
        )

    def has_active_reservations(self, book_id: int) -> bool:
        """True while members are queued for the title."""
        return self.reservations.exists(
            ReservationDB.book_id == book_id,
            ReservationDB.status == ReservationStatusEnum.ACTIVE,
        )

    def has_loan_history(self, book_id: int) -> bool:
        return self.loans.exists(LoanDB.book_copy_id.in_(self._copy_ids(book_id)))

    def has_reservation_history(self, book_id: int) -> bool:
        return self.reservations.exists(ReservationDB.book_id == book_id)

    def _copy_ids(self, book_id: int):
        return select(BookCopyDB.id).where(BookCopyDB.book_id == book_id)

    @circulation_operation("list_available_copies")
    def list_available(self, book_id: int) -> list[BookCopy]:
        self._get_book(book_id)
        return [BookCopy.model_validate(copy) for copy in self.available_copies(book_id)]
