"""Test configuration and fixtures for the library circulation core.

This conftest.py sets up:
1. Isolated test databases - each test gets its own SQLite file
2. A frozen clock - date rules are exercised at exact, movable instants
3. Observable side effects - a recording notifier and an in-memory audit sink
4. Factories for members and books with numbered copies
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from library_circulation.audit import InMemoryAuditSink
from library_circulation.config import CirculationConfig, reset_config
from library_circulation.database import DatabaseManager, UnitOfWork, reset_db_manager
from library_circulation.database.schema import Book as BookDB
from library_circulation.database.schema import BookCopy as BookCopyDB
from library_circulation.database.schema import CopyStatusEnum, MembershipStatusEnum
from library_circulation.database.schema import Member as MemberDB
from library_circulation.notifications import RecordingNotifier
from library_circulation.observability import ObservabilityConfig, initialize_observability

# Monday morning, so due dates fall on readable days
START = datetime(2024, 1, 1, 10, 0)


class FrozenClock:
    """A clock that only moves when a test moves it."""

    def __init__(self, moment: datetime = START):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta) -> datetime:
        self.moment += timedelta(**delta)
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment


# === Session-wide setup ===


@pytest.fixture(scope="session", autouse=True)
def quiet_observability():
    """Configure Logfire to keep spans local and off the console."""
    initialize_observability(
        ObservabilityConfig(enabled=True, console=False, export=False)
    )


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch) -> Generator[None, None, None]:
    """Point the global configuration at a per-test database path."""
    for key in (
        "LIBRARY_CIRCULATION_DATABASE_URL",
        "LIBRARY_CIRCULATION_MAX_ACTIVE_LOANS",
        "LIBRARY_CIRCULATION_DAILY_FINE_RATE",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LIBRARY_CIRCULATION_DATABASE_PATH", str(tmp_path / "global.db"))
    reset_config()
    reset_db_manager()
    yield
    reset_db_manager()
    reset_config()


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database file for each test."""
    return tmp_path / "test_circulation.db"


@pytest.fixture
def db_manager(test_db_path: Path) -> Generator[DatabaseManager, None, None]:
    """Provide a database manager with the schema created."""
    manager = DatabaseManager(f"sqlite:///{test_db_path}", timeout_seconds=10)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    """Provide a SQLAlchemy session for service tests.

    Service tests run every operation on this one session, so nothing else
    competes for the SQLite write lock.
    """
    db_session = db_manager.create_session()
    try:
        yield db_session
    finally:
        db_session.rollback()
        db_session.close()


@pytest.fixture
def uow(session: Session) -> UnitOfWork:
    return UnitOfWork(session)


# === Policy, clock and collaborators ===


@pytest.fixture
def config(test_db_path: Path) -> CirculationConfig:
    """Standard lending policy against the test database."""
    return CirculationConfig(database_path=test_db_path)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def build(uow, config, clock, notifier, audit_sink) -> Callable:
    """Build any circulation service wired to the test collaborators."""

    def _build(service_cls, **overrides):
        kwargs = {
            "config": config,
            "clock": clock,
            "notifier": notifier,
            "audit": audit_sink,
        }
        kwargs.update(overrides)
        return service_cls(uow, **kwargs)

    return _build


# === Test Data Fixtures ===


@pytest.fixture
def make_member(session: Session) -> Callable[..., MemberDB]:
    """Create members with unique membership numbers and emails."""
    numbers = count(1)

    def _make(
        name: str = "Ada Lovelace",
        status: MembershipStatusEnum = MembershipStatusEnum.ACTIVE,
        outstanding_fines: Decimal | str = "0.00",
        current_loan_count: int = 0,
    ) -> MemberDB:
        n = next(numbers)
        member = MemberDB(
            membership_number=f"M-{n:06d}",
            name=name,
            email=f"member{n}@library.org",
            status=status,
            outstanding_fines=Decimal(outstanding_fines),
            current_loan_count=current_loan_count,
        )
        session.add(member)
        session.commit()
        return member

    return _make


@pytest.fixture
def make_book(session: Session) -> Callable[..., BookDB]:
    """Create a book with ``copies`` Available copies numbered from 1."""
    numbers = count(1)

    def _make(
        title: str = "The Pragmatic Programmer",
        author: str = "Andrew Hunt",
        copies: int = 1,
    ) -> BookDB:
        n = next(numbers)
        book = BookDB(isbn=f"978000000{n:04d}", title=title, author=author)
        session.add(book)
        for number in range(1, copies + 1):
            session.add(
                BookCopyDB(book=book, copy_number=str(number), status=CopyStatusEnum.AVAILABLE)
            )
        session.commit()
        return book

    return _make


@pytest.fixture
def member(make_member) -> MemberDB:
    return make_member()


@pytest.fixture
def book(make_book) -> BookDB:
    """A title with three copies."""
    return make_book(copies=3)
