"""
Audit trail for circulation changes.

Services report every successful mutation to an ``AuditSink`` after commit.
The default ``DatabaseAuditSink`` appends rows to ``audit_logs`` in a session
of its own, so an audit write can fail without touching the change it
describes.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from .database.schema import AuditActionEnum, AuditLog
from .models import AuditEntry

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Destination for audit records."""

    @abstractmethod
    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditActionEnum,
        before_state: str | None = None,
        after_state: str | None = None,
        details: str | None = None,
    ) -> None:
        """Record one change."""


class LoggingAuditSink(AuditSink):
    """Writes audit records to the log."""

    def record(self, entity_type, entity_id, action, before_state=None, after_state=None, details=None):
        logger.info(
            "Audit %s %s#%s: %s -> %s %s",
            AuditActionEnum(action).value,
            entity_type,
            entity_id,
            before_state,
            after_state,
            details or "",
        )


class DatabaseAuditSink(AuditSink):
    """Appends audit records to the ``audit_logs`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(self, entity_type, entity_id, action, before_state=None, after_state=None, details=None):
        session = self.session_factory()
        try:
            session.add(
                AuditLog(
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    action=action,
                    before_state=before_state,
                    after_state=after_state,
                    details=details,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class InMemoryAuditSink(AuditSink):
    """Keeps audit records in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.entries: list[AuditEntry] = []

    def record(self, entity_type, entity_id, action, before_state=None, after_state=None, details=None):
        with self._lock:
            self.entries.append(
                AuditEntry(
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    action=action,
                    before_state=before_state,
                    after_state=after_state,
                    details=details,
                )
            )

    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]
