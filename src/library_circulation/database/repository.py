"""
Repository pattern implementation for the library circulation core.

The circulation services never build sessions or commit. They ask a
``Repository`` for rows matching SQLAlchemy predicates and add or remove rows,
all inside the transaction the unit of work opened for them:

```python
loans = uow.repository(Loan)
overdue = loans.find_all(Loan.status == LoanStatusEnum.ACTIVE, Loan.due_date < now)
```

Paged listings are returned as ``PaginatedResponse`` objects of Pydantic models,
ready to hand to callers.
"""

from collections.abc import Callable, Sequence
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .schema import Base

# Type variables for generic repository
ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class Repository(Generic[ModelType]):
    """
    Predicate-based data access for one table.

    Every method runs in the session's current transaction; nothing here
    commits. ``for_update`` adds ``SELECT ... FOR UPDATE`` on backends that
    support row locks and is ignored by SQLite.
    """

    def __init__(self, session: Session, model_class: type[ModelType]):
        self.session = session
        self.model_class = model_class

    def get(self, id: Any, *, for_update: bool = False) -> ModelType | None:
        """Get one row by primary key."""
        if not for_update:
            return self.session.get(self.model_class, id)
        query = (
            select(self.model_class)
            .where(self.model_class.id == id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(query).scalar_one_or_none()

    def find(
        self,
        *predicates: Any,
        order_by: Sequence[Any] = (),
        for_update: bool = False,
    ) -> ModelType | None:
        """Get the first row matching all predicates, in ``order_by`` order."""
        query = self._select(predicates, order_by, for_update).limit(1)
        return self.session.execute(query).scalars().first()

    def find_all(
        self,
        *predicates: Any,
        order_by: Sequence[Any] = (),
        limit: int | None = None,
        for_update: bool = False,
    ) -> list[ModelType]:
        """Get every row matching all predicates."""
        query = self._select(predicates, order_by, for_update)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    def exists(self, *predicates: Any) -> bool:
        query = select(self.model_class.id).where(*predicates).limit(1)
        return self.session.execute(query).first() is not None

    def count(self, *predicates: Any) -> int:
        query = select(func.count()).select_from(self.model_class).where(*predicates)
        return self.session.execute(query).scalar() or 0

    def add(self, obj: ModelType) -> ModelType:
        self.session.add(obj)
        return obj

    def update(self, obj: ModelType, **values: Any) -> ModelType:
        """Set attributes on a tracked row; written at the next flush."""
        for field, value in values.items():
            if not hasattr(obj, field):
                raise AttributeError(f"{self.model_class.__name__} has no field {field!r}")
            setattr(obj, field, value)
        self.session.add(obj)
        return obj

    def delete(self, obj: ModelType) -> None:
        self.session.delete(obj)

    def list_paged(
        self,
        pagination: PaginationParams,
        to_model: Callable[[ModelType], ResponseSchemaType],
        *predicates: Any,
        order_by: Sequence[Any] = (),
    ) -> PaginatedResponse[ResponseSchemaType]:
        """One page of matching rows converted with ``to_model``."""
        pagination.validate_params()

        total = self.count(*predicates)
        query = self._select(predicates, order_by or (self.model_class.id,), False)
        query = query.offset(pagination.offset).limit(pagination.page_size)
        rows = self.session.execute(query).scalars().all()

        total_pages = (total + pagination.page_size - 1) // pagination.page_size
        return PaginatedResponse(
            items=[to_model(row) for row in rows],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=total_pages,
            has_next=pagination.page < total_pages,
            has_previous=pagination.page > 1,
        )

    def _select(self, predicates: Sequence[Any], order_by: Sequence[Any], for_update: bool):
        query = select(self.model_class).where(*predicates)
        if order_by:
            query = query.order_by(*order_by)
        if for_update:
            # Refresh rows already in the identity map with what was locked
            query = query.with_for_update().execution_options(populate_existing=True)
        return query
