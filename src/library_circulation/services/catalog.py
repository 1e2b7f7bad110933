"""
Catalog maintenance: titles, copies and manual copy status changes.

Staff can move a copy between statuses by hand (send it for repair, write it
off, put it back on the shelf), but never in a way that contradicts the
loans and reservations that reference it. Deleting a title is only allowed
while it has no circulation history; copies are deleted first, then the
title.
"""

import logging

from sqlalchemy import select

from ..database.schema import AuditActionEnum, CopyStatusEnum
from ..database.schema import Book as BookDB
from ..database.schema import BookCopy as BookCopyDB
from ..errors import CirculationError, FailureReason
from ..models import Book, BookCopy
from .availability import CopyAvailabilityTracker
from .base import CirculationService, circulation_operation

logger = logging.getLogger(__name__)


class CatalogService(CirculationService):
    """Adds and removes titles and copies and edits copy status."""

    def __init__(self, uow, **kwargs):
        super().__init__(uow, **kwargs)
        self.availability = CopyAvailabilityTracker(uow, **self._collaborator_kwargs())

    @circulation_operation("add_book")
    def add_book(self, title: str, author: str, isbn: str, copies: int = 1) -> Book:
        """Create a title with ``copies`` Available copies numbered from 1."""
        if copies < 0:
            raise CirculationError(
                FailureReason.INVALID_COPY_COUNT, "Number of copies cannot be negative."
            )
        isbn = isbn.replace("-", "").strip()
        if self.books.exists(BookDB.isbn == isbn):
            raise CirculationError(
                FailureReason.DUPLICATE_BOOK, f"A book with ISBN {isbn} already exists."
            )

        book = self.books.add(BookDB(title=title.strip(), author=author.strip(), isbn=isbn))
        self.uow.flush()
        self._create_copies(book, copies)

        logger.info("Added book %s (%s) with %d copies", book.id, book.title, copies)
        self._audit("Book", book.id, AuditActionEnum.CREATE, details=f"{book.title} ({isbn})")
        return Book.model_validate(book)

    @circulation_operation("add_copies")
    def add_copies(self, book_id: int, count: int = 1) -> list[BookCopy]:
        """Append ``count`` Available copies after the highest existing copy number."""
        if count < 1:
            raise CirculationError(
                FailureReason.INVALID_COPY_COUNT, "Number of copies to add must be at least 1."
            )
        book = self._get_book(book_id)
        created = self._create_copies(book, count)
        return [BookCopy.model_validate(copy) for copy in created]

    def _create_copies(self, book: BookDB, count: int) -> list[BookCopyDB]:
        start = self._highest_copy_number(book.id) + 1
        created = []
        for number in range(start, start + count):
            created.append(
                self.copies.add(
                    BookCopyDB(
                        book=book,
                        copy_number=str(number),
                        status=CopyStatusEnum.AVAILABLE,
                    )
                )
            )
        self.uow.flush()
        for copy in created:
            self._audit(
                "BookCopy",
                copy.id,
                AuditActionEnum.CREATE,
                after_state=CopyStatusEnum.AVAILABLE.value,
                details=f"Copy {copy.copy_number} of book {book.id}",
            )
        return created

    def _highest_copy_number(self, book_id: int) -> int:
        query = select(BookCopyDB.copy_number).where(BookCopyDB.book_id == book_id)
        numbers = self.uow.session.execute(query).scalars().all()
        return max((int(n) for n in numbers if n.isdigit()), default=0)

    @circulation_operation("update_copy_status")
    def update_copy_status(
        self,
        copy_id: int,
        status: CopyStatusEnum | str,
        notes: str | None = None,
    ) -> BookCopy:
        """Change a copy's status by hand, refusing transitions that contradict circulation."""
        new_status = CopyStatusEnum(status)
        copy = self._get_copy(copy_id, for_update=True)
        if copy.status == new_status:
            return BookCopy.model_validate(copy)

        has_loans = self.availability.has_active_loans(copy.id)
        if new_status == CopyStatusEnum.AVAILABLE and has_loans:
            raise CirculationError(
                FailureReason.INVALID_STATUS_TRANSITION,
                "Cannot mark book copy as Available while it has active loans.",
            )
        if new_status == CopyStatusEnum.RESERVED and not self.availability.has_active_reservations(
            copy.book_id
        ):
            raise CirculationError(
                FailureReason.INVALID_STATUS_TRANSITION,
                "Cannot mark book copy as Reserved without active reservations for this book.",
            )
        if copy.status == CopyStatusEnum.BORROWED and has_loans:
            raise CirculationError(
                FailureReason.INVALID_STATUS_TRANSITION,
                f"Cannot change status from Borrowed to {new_status.value.capitalize()} "
                "while copy has active loans.",
            )

        previous = copy.status
        copy.status = new_status
        if notes:
            copy.notes = notes

        logger.info("Copy %s status %s -> %s", copy.id, previous.value, new_status.value)
        self._audit(
            "BookCopy",
            copy.id,
            AuditActionEnum.UPDATE,
            before_state=previous.value,
            after_state=new_status.value,
            details=notes,
        )
        return BookCopy.model_validate(copy)

    @circulation_operation("delete_book")
    def delete_book(self, book_id: int) -> int:
        """Delete a title that never circulated, copies first. Returns its id."""
        book = self._get_book(book_id)

        if self.availability.has_active_loans_for_book(book.id):
            raise CirculationError(
                FailureReason.BOOK_HAS_ACTIVE_LOANS, "Cannot delete book with active loans."
            )
        if self.availability.has_active_reservations(book.id):
            raise CirculationError(
                FailureReason.BOOK_HAS_ACTIVE_RESERVATIONS,
                "Cannot delete book with active reservations.",
            )
        if self.availability.has_loan_history(book.id) or self.availability.has_reservation_history(
            book.id
        ):
            raise CirculationError(
                FailureReason.BOOK_HAS_HISTORY,
                "Cannot delete book with circulation history. "
                "Mark its copies as Lost or Damaged instead.",
            )

        copies = self.copies.find_all(BookCopyDB.book_id == book.id)
        for copy in copies:
            self.copies.delete(copy)
        self.uow.flush()
        self.uow.session.expire(book, ["copies"])
        self.books.delete(book)
        self.uow.flush()

        logger.info("Deleted book %s and %d copies", book_id, len(copies))
        self._audit(
            "Book",
            book_id,
            AuditActionEnum.DELETE,
            details=f"{book.title} ({book.isbn}); {len(copies)} copies removed",
        )
        return book_id

    @circulation_operation("get_book")
    def get_book(self, book_id: int) -> Book:
        return Book.model_validate(self._get_book(book_id))
