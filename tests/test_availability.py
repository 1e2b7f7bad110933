"""Tests for copy availability queries."""

from library_circulation.database.schema import CopyStatusEnum, ReservationStatusEnum
from library_circulation.database.schema import Reservation as ReservationDB
from library_circulation.errors import FailureReason
from library_circulation.services import CheckoutService, CopyAvailabilityTracker


class TestCopyAvailability:
    def test_available_copy(self, build, book):
        tracker = build(CopyAvailabilityTracker)

        assert tracker.is_copy_available(book.copies[0].id)
        assert tracker.is_book_available(book.id)

    def test_unknown_copy_is_not_available(self, build):
        assert not build(CopyAvailabilityTracker).is_copy_available(999)

    def test_every_other_status_is_unavailable(self, build, session, make_book):
        tracker = build(CopyAvailabilityTracker)
        book = make_book(copies=4)
        for copy, status in zip(
            book.copies,
            [
                CopyStatusEnum.BORROWED,
                CopyStatusEnum.RESERVED,
                CopyStatusEnum.LOST,
                CopyStatusEnum.DAMAGED,
            ],
            strict=True,
        ):
            copy.status = status
        session.commit()

        assert not any(tracker.is_copy_available(copy.id) for copy in book.copies)
        assert not tracker.is_book_available(book.id)

    def test_lowest_numbered_copy_comes_first(self, build, session, make_book):
        tracker = build(CopyAvailabilityTracker)
        book = make_book(copies=11)
        book.copies[0].status = CopyStatusEnum.DAMAGED
        session.commit()

        available = tracker.available_copies(book.id)

        # "2" sorts before "10" even though the numbers are strings
        assert [c.copy_number for c in available[:3]] == ["2", "3", "4"]
        assert available[-1].copy_number == "11"
        assert tracker.next_available_copy(book.id).copy_number == "2"

    def test_no_available_copy(self, build, session, book):
        for copy in book.copies:
            copy.status = CopyStatusEnum.LOST
        session.commit()

        assert build(CopyAvailabilityTracker).next_available_copy(book.id) is None


class TestExistenceChecks:
    def test_active_loans(self, build, member, book):
        tracker = build(CopyAvailabilityTracker)
        copy = book.copies[0]
        assert not tracker.has_active_loans(copy.id)
        assert not tracker.has_active_loans_for_book(book.id)

        build(CheckoutService).checkout(member.id, copy.id).unwrap()

        assert tracker.has_active_loans(copy.id)
        assert tracker.has_active_loans_for_book(book.id)
        assert tracker.open_loan_for_copy(copy.id).member_id == member.id
        assert tracker.has_loan_history(book.id)

    def test_active_reservations(self, build, session, clock, member, book):
        tracker = build(CopyAvailabilityTracker)
        assert not tracker.has_active_reservations(book.id)
        assert not tracker.has_reservation_history(book.id)

        session.add(
            ReservationDB(
                member_id=member.id,
                book_id=book.id,
                reservation_date=clock(),
                status=ReservationStatusEnum.CANCELLED,
            )
        )
        session.commit()
        assert not tracker.has_active_reservations(book.id)
        assert tracker.has_reservation_history(book.id)


class TestListAvailable:
    def test_returns_models(self, build, book):
        result = build(CopyAvailabilityTracker).list_available(book.id)

        assert result.ok
        assert [c.copy_number for c in result.value] == ["1", "2", "3"]
        assert all(c.is_available for c in result.value)

    def test_unknown_book(self, build):
        result = build(CopyAvailabilityTracker).list_available(404)

        assert result.error.reason is FailureReason.BOOK_NOT_FOUND
