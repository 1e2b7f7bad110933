"""Catalog models: books and their physical copies."""

from pydantic import BaseModel, ConfigDict, Field

from ..database.schema import CopyStatusEnum


class BookCopy(BaseModel):
    """One physical copy of a book."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    book_id: int
    copy_number: str
    status: CopyStatusEnum = CopyStatusEnum.AVAILABLE
    notes: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status == CopyStatusEnum.AVAILABLE


class Book(BaseModel):
    """A catalog title with its copies."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 7,
                "isbn": "9780134685479",
                "title": "Effective Java",
                "author": "Joshua Bloch",
                "copies": [{"id": 12, "book_id": 7, "copy_number": "1", "status": "available"}],
            }
        },
    )

    id: int
    isbn: str = Field(..., min_length=10, max_length=13)
    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=200)
    copies: list[BookCopy] = Field(default_factory=list)

    @property
    def available_copies(self) -> int:
        return sum(1 for copy in self.copies if copy.is_available)
