"""
Unit of work: one transaction boundary around a circulation operation.

The unit of work wraps a SQLAlchemy session and owns three things:

1. Transaction control (``begin_transaction``, ``commit``, ``rollback`` and the
   ``transaction()`` context manager that the services use)
2. Translation of storage errors into circulation errors: a stale version or a
   violated unique index becomes ``ConflictError``; a timeout or operational
   failure becomes ``TransientError``
3. After-commit hooks, which is where notifications and audit records are sent,
   so they only ever describe changes that actually happened
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, TransientError
from .repository import ModelType, Repository

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Transaction boundary and repository provider for one session."""

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0
        self._after_commit: list[Callable[[], Any]] = []
        self._repositories: dict[type, Repository] = {}

    def repository(self, model_class: type[ModelType]) -> Repository[ModelType]:
        """Get the repository for a table, bound to this unit's session."""
        if model_class not in self._repositories:
            self._repositories[model_class] = Repository(self.session, model_class)
        return self._repositories[model_class]

    def after_commit(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` once the current transaction commits.

        Callbacks are discarded on rollback. A failing callback is logged and
        never undoes the commit.
        """
        self._after_commit.append(callback)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def begin_transaction(self) -> None:
        if not self.session.in_transaction():
            self.session.begin()

    def flush(self) -> None:
        """Send pending changes to the database inside the open transaction."""
        try:
            self.session.flush()
        except StaleDataError as e:
            raise ConflictError() from e
        except IntegrityError as e:
            raise ConflictError(_integrity_message(e)) from e
        except (OperationalError, PoolTimeoutError) as e:
            raise TransientError(f"Database unavailable: {e}") from e

    def commit(self) -> None:
        try:
            self.session.commit()
        except StaleDataError as e:
            self.rollback()
            raise ConflictError() from e
        except IntegrityError as e:
            self.rollback()
            raise ConflictError(_integrity_message(e)) from e
        except (OperationalError, PoolTimeoutError) as e:
            self.rollback()
            raise TransientError(f"Database unavailable: {e}") from e

        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("After-commit hook failed")

    def rollback(self) -> None:
        self._after_commit.clear()
        self.session.rollback()

    @contextmanager
    def transaction(self) -> Generator["UnitOfWork", None, None]:
        """
        Run a block atomically.

        Commits when the block finishes, rolls back when it raises. Nested
        blocks join the outer transaction; only the outermost one commits.
        Storage errors raised inside the block are translated the same way as
        errors raised at commit.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self.begin_transaction()
        self._depth = 1
        try:
            yield self
        except (OperationalError, PoolTimeoutError) as e:
            self._depth = 0
            self.rollback()
            raise TransientError(f"Database unavailable: {e}") from e
        except StaleDataError as e:
            self._depth = 0
            self.rollback()
            raise ConflictError() from e
        except BaseException:
            self._depth = 0
            self.rollback()
            raise

        self._depth = 0
        self.commit()


def _integrity_message(error: IntegrityError) -> str:
    return f"The change conflicts with a concurrent operation: {error.orig}"
