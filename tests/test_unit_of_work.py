"""
Tests for the unit of work and the database manager.

These tests cover:
1. Commit and rollback around a block
2. Nested blocks joining the outer transaction
3. After-commit hooks
4. Translation of storage errors into circulation errors
"""

from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.pool import StaticPool

from library_circulation.database import DatabaseManager
from library_circulation.database.schema import CopyStatusEnum, LoanStatusEnum
from library_circulation.database.schema import Loan as LoanDB
from library_circulation.database.schema import Member as MemberDB
from library_circulation.errors import CirculationError, ConflictError, FailureReason


class TestTransaction:
    """Test commit, rollback and nesting."""

    def test_block_commits(self, uow, session, make_member):
        member = make_member()

        with uow.transaction():
            member.name = "Grace Hopper"

        session.expire_all()
        assert session.get(MemberDB, member.id).name == "Grace Hopper"

    def test_exception_rolls_back(self, uow, session, make_member):
        member = make_member()

        with pytest.raises(CirculationError):
            with uow.transaction():
                member.name = "Grace Hopper"
                uow.flush()
                raise CirculationError(FailureReason.MEMBER_NOT_ACTIVE, "nope")

        session.expire_all()
        assert session.get(MemberDB, member.id).name == "Ada Lovelace"
        assert not uow.in_transaction

    def test_nested_blocks_join_outer_transaction(self, uow, session, make_member):
        member = make_member()

        with pytest.raises(RuntimeError):
            with uow.transaction():
                with uow.transaction():
                    member.name = "Inner"
                assert uow.in_transaction
                raise RuntimeError("outer fails after inner finished")

        session.expire_all()
        assert session.get(MemberDB, member.id).name == "Ada Lovelace"


class TestAfterCommit:
    """Test hooks that run once the transaction commits."""

    def test_hooks_run_after_commit(self, uow):
        calls = []

        with uow.transaction():
            uow.after_commit(lambda: calls.append("sent"))
            assert calls == []

        assert calls == ["sent"]

    def test_hooks_discarded_on_rollback(self, uow):
        calls = []

        with pytest.raises(ValueError):
            with uow.transaction():
                uow.after_commit(lambda: calls.append("sent"))
                raise ValueError("boom")

        with uow.transaction():
            pass

        assert calls == []

    def test_failing_hook_does_not_undo_commit(self, uow, session, make_member):
        member = make_member()

        def broken():
            raise RuntimeError("mail server down")

        with uow.transaction():
            member.name = "Committed"
            uow.after_commit(broken)

        session.expire_all()
        assert session.get(MemberDB, member.id).name == "Committed"


class TestErrorTranslation:
    """Storage errors surface as circulation errors."""

    def test_stale_copy_version_is_a_conflict(self, uow, session, book):
        copy = book.copies[0]

        with pytest.raises(ConflictError):
            with uow.transaction():
                # Another writer bumped the version behind this session's back
                session.execute(
                    text("UPDATE book_copies SET version = 99 WHERE id = :id"), {"id": copy.id}
                )
                copy.status = CopyStatusEnum.DAMAGED
                uow.flush()

    def test_second_open_loan_for_copy_is_a_conflict(self, uow, clock, member, book):
        copy = book.copies[0]

        with pytest.raises(ConflictError):
            with uow.transaction():
                for _ in range(2):
                    uow.session.add(
                        LoanDB(
                            member_id=member.id,
                            book_copy_id=copy.id,
                            loan_date=clock(),
                            due_date=clock() + timedelta(days=14),
                            status=LoanStatusEnum.ACTIVE,
                        )
                    )
                uow.flush()

    def test_returned_loans_do_not_collide(self, uow, session, clock, member, book):
        copy = book.copies[0]

        with uow.transaction():
            for status in (LoanStatusEnum.RETURNED, LoanStatusEnum.RETURNED, LoanStatusEnum.ACTIVE):
                session.add(
                    LoanDB(
                        member_id=member.id,
                        book_copy_id=copy.id,
                        loan_date=clock(),
                        due_date=clock() + timedelta(days=14),
                        status=status,
                    )
                )

        assert uow.repository(LoanDB).count(LoanDB.book_copy_id == copy.id) == 3


class TestDatabaseManager:
    """Test engine and session management."""

    def test_verify_connection(self, test_db_path):
        manager = DatabaseManager(f"sqlite:///{test_db_path}")
        try:
            assert manager.verify_connection() is True
        finally:
            manager.close()

    def test_foreign_keys_are_enforced(self, db_manager):
        with db_manager.session_scope() as db_session:
            assert db_session.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_session_scope_rolls_back_on_error(self, db_manager):
        with pytest.raises(RuntimeError):
            with db_manager.session_scope() as db_session:
                db_session.add(
                    MemberDB(
                        membership_number="M-999999",
                        name="Rolled Back",
                        email="rolled.back@library.org",
                    )
                )
                db_session.flush()
                raise RuntimeError("abort")

        with db_manager.session_scope() as db_session:
            assert db_session.query(MemberDB).count() == 0

    def test_in_memory_database_is_shared_between_sessions(self):
        manager = DatabaseManager("sqlite:///:memory:")
        try:
            manager.init_database()
            with manager.session_scope() as db_session:
                db_session.add(
                    MemberDB(
                        membership_number="M-000001",
                        name="Shared",
                        email="shared@library.org",
                    )
                )
            with manager.session_scope() as db_session:
                assert db_session.query(MemberDB).count() == 1
        finally:
            manager.close()

    def test_in_memory_database_is_single_connection(self, caplog):
        manager = DatabaseManager("sqlite://")
        try:
            with caplog.at_level("WARNING"):
                engine = manager.engine

            assert manager.single_connection is True
            assert isinstance(engine.pool, StaticPool)
            assert "single thread" in caplog.text
        finally:
            manager.close()

    def test_file_database_is_pooled(self, db_manager):
        assert db_manager.single_connection is False
        assert not isinstance(db_manager.engine.pool, StaticPool)
