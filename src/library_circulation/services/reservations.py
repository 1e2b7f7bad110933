"""
Reservation queues.

Each title has a first-come first-served queue of Active reservations,
ordered by reservation time with ties broken by id. When a copy of the title
becomes Available the head of the queue is fulfilled: the lowest-numbered
Available copy is set aside (status Reserved), the reservation records which
copy it holds and a pickup deadline, and the member is told.

A member who does not collect by the deadline loses the hold. The pickup
sweep expires the reservation, puts the copy back to Available and fulfills
the next reservation in line, one at a time.

Reserve and fulfill for a title hold that title's in-process lock for the
whole transaction, so queue appends and copy assignment never interleave.
"""

import logging
from datetime import timedelta

from sqlalchemy import and_, or_, select

from ..database.schema import AuditActionEnum, CopyStatusEnum, ReservationStatusEnum
from ..database.schema import BookCopy as BookCopyDB
from ..database.schema import Reservation as ReservationDB
from ..errors import CirculationError, FailureReason, Result
from ..models import Reservation
from ..notifications import NotificationType
from ..observability import traced
from .availability import CopyAvailabilityTracker
from .base import CirculationService, book_lock, circulation_operation
from .eligibility import EligibilityEvaluator

logger = logging.getLogger(__name__)

QUEUE_ORDER = (ReservationDB.reservation_date, ReservationDB.id)


def _lock_book_arg(service, book_id, *args, **kwargs):
    return book_lock(book_id)


def _lock_member_book_args(service, member_id, book_id, *args, **kwargs):
    return book_lock(book_id)


class ReservationQueueManager(CirculationService):
    """Maintains per-title reservation queues."""

    def __init__(self, uow, **kwargs):
        super().__init__(uow, **kwargs)
        collaborators = self._collaborator_kwargs()
        self.eligibility = EligibilityEvaluator(uow, **collaborators)
        self.availability = CopyAvailabilityTracker(uow, **collaborators)

    # === Queue maintenance ===

    @circulation_operation("reserve", lock_key=_lock_member_book_args)
    def reserve(self, member_id: int, book_id: int, notes: str | None = None) -> Reservation:
        """Put a member at the back of a title's queue.

        Only titles with no Available copy can be reserved.
        """
        member = self._get_member(member_id)
        book = self._get_book(book_id)
        self.eligibility.ensure_can_reserve(member)

        if self.reservations.exists(
            ReservationDB.member_id == member.id,
            ReservationDB.book_id == book.id,
            ReservationDB.status == ReservationStatusEnum.ACTIVE,
        ):
            raise CirculationError(
                FailureReason.DUPLICATE_RESERVATION,
                "Member already has an active reservation for this book.",
            )
        if self.availability.is_book_available(book.id):
            raise CirculationError(
                FailureReason.COPIES_AVAILABLE,
                "There are available copies of this book. A reservation is not needed.",
            )

        reservation = self.reservations.add(
            ReservationDB(
                member_id=member.id,
                book_id=book.id,
                reservation_date=self.now(),
                status=ReservationStatusEnum.ACTIVE,
                notes=notes,
                cancelled_by_staff=False,
            )
        )
        self.uow.flush()

        logger.info("Member %s reserved book %s (reservation %s)", member.id, book.id, reservation.id)
        self._audit(
            "Reservation",
            reservation.id,
            AuditActionEnum.RESERVE,
            after_state=ReservationStatusEnum.ACTIVE.value,
            details=f"Member {member.id} queued for book {book.id}",
        )
        return Reservation.model_validate(reservation)

    @circulation_operation("cancel_reservation")
    def cancel(
        self,
        reservation_id: int,
        staff_initiated: bool = False,
        reason: str | None = None,
    ) -> Reservation:
        """Withdraw an Active reservation. Staff must say why."""
        reservation = self._get_reservation(reservation_id)
        if reservation.status != ReservationStatusEnum.ACTIVE:
            raise CirculationError(
                FailureReason.NOT_ACTIVE,
                "Only active reservations can be cancelled. "
                f"Current status: {reservation.status.value}.",
            )
        if staff_initiated and not (reason and reason.strip()):
            raise CirculationError(
                FailureReason.REASON_REQUIRED,
                "A reason is required when staff cancel a reservation.",
            )

        reservation.status = ReservationStatusEnum.CANCELLED
        reservation.cancelled_at = self.now()
        reservation.cancelled_by_staff = staff_initiated
        reservation.cancellation_reason = reason.strip() if reason else None

        logger.info(
            "Reservation %s cancelled%s", reservation.id, " by staff" if staff_initiated else ""
        )
        self._audit(
            "Reservation",
            reservation.id,
            AuditActionEnum.CANCEL,
            before_state=ReservationStatusEnum.ACTIVE.value,
            after_state=ReservationStatusEnum.CANCELLED.value,
            details=reservation.cancellation_reason,
        )
        return Reservation.model_validate(reservation)

    # === Fulfillment ===

    @circulation_operation("fulfill_reservation", lock_key=_lock_book_arg)
    def fulfill(self, book_id: int) -> Reservation | None:
        """Hand the next Available copy to the head of the queue, if both exist."""
        self._get_book(book_id)
        reservation = self._fulfill_next(book_id)
        return Reservation.model_validate(reservation) if reservation is not None else None

    def _fulfill_next(self, book_id: int) -> ReservationDB | None:
        head = self.reservations.find(
            ReservationDB.book_id == book_id,
            ReservationDB.status == ReservationStatusEnum.ACTIVE,
            order_by=QUEUE_ORDER,
        )
        if head is None:
            return None
        copy = self.availability.next_available_copy(book_id, lock=True)
        if copy is None:
            return None

        now = self.now()
        copy.status = CopyStatusEnum.RESERVED
        head.status = ReservationStatusEnum.FULFILLED
        head.book_copy_id = copy.id
        head.fulfilled_at = now
        head.pickup_deadline = now + timedelta(days=self.config.pickup_window_days)
        self.uow.flush()

        title = head.book.title
        logger.info(
            "Reservation %s fulfilled with copy %s; pickup by %s",
            head.id,
            copy.id,
            head.pickup_deadline,
        )
        self._notify(
            head.member_id,
            NotificationType.RESERVATION_AVAILABLE,
            f"Book Available: {title}",
            f'Your reserved book "{title}" is ready for pickup. '
            f"Please collect it by {head.pickup_deadline:%Y-%m-%d %H:%M}.",
        )
        self._audit(
            "Reservation",
            head.id,
            AuditActionEnum.FULFILL,
            before_state=ReservationStatusEnum.ACTIVE.value,
            after_state=ReservationStatusEnum.FULFILLED.value,
            details=f"Copy {copy.id} held until {head.pickup_deadline.isoformat()}",
        )
        return head

    # === Pickup expiry ===

    @circulation_operation("expire_pickups", lock_key=_lock_book_arg)
    def expire_pickups(self, book_id: int) -> list[Reservation]:
        """Expire one title's uncollected holds, passing each copy down the queue."""
        now = self.now()
        stale = self.reservations.find_all(
            ReservationDB.book_id == book_id,
            ReservationDB.status == ReservationStatusEnum.FULFILLED,
            ReservationDB.picked_up_at.is_(None),
            ReservationDB.pickup_deadline < now,
            order_by=QUEUE_ORDER,
        )

        expired = []
        for reservation in stale:
            reservation.status = ReservationStatusEnum.EXPIRED
            reservation.expired_at = now
            copy = self.copies.get(reservation.book_copy_id, for_update=True)
            if copy is not None and copy.status == CopyStatusEnum.RESERVED:
                copy.status = CopyStatusEnum.AVAILABLE
            self.uow.flush()

            title = reservation.book.title
            logger.info("Reservation %s expired uncollected", reservation.id)
            self._notify(
                reservation.member_id,
                NotificationType.RESERVATION_EXPIRED,
                f"Reservation Expired: {title}",
                f'Your hold on "{title}" expired because it was not collected in time.',
            )
            self._audit(
                "Reservation",
                reservation.id,
                AuditActionEnum.EXPIRE,
                before_state=ReservationStatusEnum.FULFILLED.value,
                after_state=ReservationStatusEnum.EXPIRED.value,
            )
            expired.append(Reservation.model_validate(reservation))

            self._fulfill_next(book_id)

        return expired

    @traced("expire_stale_pickups")
    def expire_stale_pickups(self) -> Result[list[Reservation]]:
        """Expire uncollected holds for every title, one title per transaction."""
        with self.uow.transaction():
            book_ids = self.books_with_stale_pickups()

        expired: list[Reservation] = []
        for book_id in book_ids:
            result = self.expire_pickups(book_id)
            if not result.ok:
                return result
            expired.extend(result.value or [])
        return Result.success(expired)

    def books_with_stale_pickups(self) -> list[int]:
        query = (
            select(ReservationDB.book_id)
            .where(
                ReservationDB.status == ReservationStatusEnum.FULFILLED,
                ReservationDB.picked_up_at.is_(None),
                ReservationDB.pickup_deadline < self.now(),
            )
            .distinct()
            .order_by(ReservationDB.book_id)
        )
        return list(self.uow.session.execute(query).scalars().all())

    def books_awaiting_fulfillment(self) -> list[int]:
        """Titles with a waiting queue and at least one Available copy."""
        has_available_copy = (
            select(BookCopyDB.id)
            .where(
                BookCopyDB.book_id == ReservationDB.book_id,
                BookCopyDB.status == CopyStatusEnum.AVAILABLE,
            )
            .exists()
        )
        query = (
            select(ReservationDB.book_id)
            .where(ReservationDB.status == ReservationStatusEnum.ACTIVE, has_available_copy)
            .distinct()
            .order_by(ReservationDB.book_id)
        )
        return list(self.uow.session.execute(query).scalars().all())

    # === Queue inspection ===

    @circulation_operation("reservation_queue")
    def queue(self, book_id: int) -> list[Reservation]:
        """Active reservations for a title, in the order they will be served."""
        self._get_book(book_id)
        rows = self.reservations.find_all(
            ReservationDB.book_id == book_id,
            ReservationDB.status == ReservationStatusEnum.ACTIVE,
            order_by=QUEUE_ORDER,
        )
        return [Reservation.model_validate(row) for row in rows]

    @circulation_operation("reservation_queue_position")
    def queue_position(self, reservation_id: int) -> int:
        """1-based place of an Active reservation in its title's queue."""
        reservation = self._get_reservation(reservation_id)
        if reservation.status != ReservationStatusEnum.ACTIVE:
            raise CirculationError(
                FailureReason.NOT_ACTIVE,
                "Only active reservations have a queue position. "
                f"Current status: {reservation.status.value}.",
            )
        ahead = self.reservations.count(
            ReservationDB.book_id == reservation.book_id,
            ReservationDB.status == ReservationStatusEnum.ACTIVE,
            or_(
                ReservationDB.reservation_date < reservation.reservation_date,
                and_(
                    ReservationDB.reservation_date == reservation.reservation_date,
                    ReservationDB.id < reservation.id,
                ),
            ),
        )
        return ahead + 1
