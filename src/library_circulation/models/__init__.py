"""Pydantic models returned by circulation operations."""

from .catalog import Book, BookCopy
from .circulation import AuditEntry, Fine, Loan, Reservation
from .member import Member, MemberRegistration

__all__ = [
    "AuditEntry",
    "Book",
    "BookCopy",
    "Fine",
    "Loan",
    "Member",
    "MemberRegistration",
    "Reservation",
]
