"""
Database plumbing: engine lifecycle, transactional scope, triggers and
the audit sequence counter.
"""

import pytest
from sqlalchemy import func, select

from approval_kernel.db import engine as engine_module
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.db.triggers import ALL_TRIGGER_NAMES, get_installed_triggers, get_missing_triggers
from approval_kernel.models.user import UserModel
from approval_kernel.services.sequence_service import SequenceService


def count_users(session) -> int:
    return session.execute(select(func.count()).select_from(UserModel)).scalar_one()


class TestEngineLifecycle:

    def test_uninitialized_engine_raises(self, isolated_database):
        with pytest.raises(RuntimeError, match="Engine not initialized"):
            get_engine()
        with pytest.raises(RuntimeError, match="Engine not initialized"):
            get_session()

    def test_create_tables_installs_triggers(self, isolated_database):
        init_engine_from_url(isolated_database)
        create_tables()
        assert get_installed_triggers(get_engine()) == sorted(ALL_TRIGGER_NAMES)
        assert get_missing_triggers(get_engine()) == []

    def test_create_tables_without_triggers(self, isolated_database):
        init_engine_from_url(isolated_database)
        create_tables(install_triggers=False)
        assert get_installed_triggers(get_engine()) == []

    def test_drop_tables_removes_triggers(self, isolated_database):
        init_engine_from_url(isolated_database)
        create_tables()
        drop_tables()
        assert get_missing_triggers(get_engine()) == sorted(ALL_TRIGGER_NAMES)


class TestSessionScope:

    @pytest.fixture(autouse=True)
    def _schema(self, isolated_database):
        init_engine_from_url(isolated_database)
        create_tables()
        assert engine_module._SessionFactory is not None

    def test_commits_on_success(self):
        with session_scope() as session:
            session.add(UserModel(user_id="u-1", display_name="U", role="finance"))

        s = get_session()
        try:
            assert count_users(s) == 1
        finally:
            s.close()

    def test_rolls_back_on_error(self):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(UserModel(user_id="u-2", display_name="U", role="finance"))
                session.flush()
                raise ValueError("abort")

        s = get_session()
        try:
            assert count_users(s) == 0
        finally:
            s.close()


class TestSequenceService:

    def test_new_sequence_starts_at_one(self, session):
        service = SequenceService(session)
        assert service.current_value("widgets") is None
        assert service.next_value("widgets") == 1
        assert service.current_value("widgets") == 1

    def test_values_are_strictly_increasing(self, session):
        service = SequenceService(session)
        values = [service.next_value("widgets") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_sequences_are_independent(self, session):
        service = SequenceService(session)
        service.next_value("a")
        service.next_value("a")
        assert service.next_value("b") == 1
        assert service.current_value("a") == 2
