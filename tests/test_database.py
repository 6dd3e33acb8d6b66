"""
Tests for database module.
"""

from unittest.mock import patch

import pytest
import sqlalchemy as sa

from database import (
    ConnectionPoolError,
    DatabaseManager,
    close_db_manager,
    get_db_manager,
    set_db_manager,
)


class TestDatabaseManager:
    """Tests for DatabaseManager class."""

    def test_initialization(self, db_manager):
        assert db_manager.engine is not None
        assert db_manager._initialized is True
        assert db_manager.engine.dialect.name == "sqlite"

    def test_defaults_to_configured_url(self, monkeypatch):
        from config import reload_config
        monkeypatch.setenv("DATABASE_URL", "sqlite:///configured.db")
        reload_config()
        assert DatabaseManager().url == "sqlite:///configured.db"

    def test_get_connection(self, db_manager):
        with db_manager.get_connection() as conn:
            assert conn.execute(sa.text("SELECT 1")).scalar() == 1

    def test_commit_on_success(self, db_manager):
        from auth_schema import password_resets
        with db_manager.get_connection() as conn:
            conn.execute(sa.insert(password_resets).values(email="a@example.com", token="t"))
        with db_manager.get_connection() as conn:
            assert conn.execute(sa.select(password_resets.c.email)).scalar() == "a@example.com"

    def test_rollback_on_error(self, db_manager):
        from auth_schema import password_resets
        with pytest.raises(RuntimeError):
            with db_manager.get_connection() as conn:
                conn.execute(sa.insert(password_resets).values(email="a@example.com", token="t"))
                raise RuntimeError("boom")
        with db_manager.get_connection() as conn:
            assert conn.execute(sa.select(password_resets)).first() is None

    def test_integrity_error_propagates(self, db_manager):
        from auth_schema import password_resets
        with db_manager.get_connection() as conn:
            conn.execute(sa.insert(password_resets).values(email="a@example.com", token="t"))
        with pytest.raises(sa.exc.IntegrityError):
            with db_manager.get_connection() as conn:
                conn.execute(sa.insert(password_resets).values(email="a@example.com", token="u"))

    def test_initialize_twice_is_noop(self, db_manager):
        engine = db_manager.engine
        db_manager.initialize()
        assert db_manager.engine is engine

    def test_close_disposes_engine(self, sqlite_url):
        manager = DatabaseManager(url=sqlite_url)
        manager.initialize()
        manager.close()
        assert manager._engine is None
        assert manager._initialized is False

    def test_engine_failure_wrapped(self):
        manager = DatabaseManager(url="postgresql://u:p@localhost/db")
        with patch("database.create_engine", side_effect=RuntimeError("no driver")):
            with pytest.raises(ConnectionPoolError):
                manager.initialize()

    def test_pool_settings_passed(self, monkeypatch):
        from config import reload_config
        monkeypatch.setenv("DB_POOL_SIZE", "3")
        reload_config()
        manager = DatabaseManager(url="postgresql://u:p@localhost/db")
        with patch("database.create_engine") as mock_create:
            manager.initialize()
        kwargs = mock_create.call_args.kwargs
        assert kwargs["pool_size"] == 3
        assert kwargs["pool_pre_ping"] is True


class TestGlobalManager:
    def test_set_and_get(self, sqlite_url):
        manager = DatabaseManager(url=sqlite_url)
        set_db_manager(manager)
        try:
            assert get_db_manager() is manager
        finally:
            set_db_manager(None)

    def test_set_closes_previous(self, sqlite_url):
        first = DatabaseManager(url=sqlite_url)
        first.initialize()
        set_db_manager(first)
        set_db_manager(DatabaseManager(url=sqlite_url))
        assert first._engine is None
        close_db_manager()

    def test_close_db_manager(self, sqlite_url):
        manager = DatabaseManager(url=sqlite_url)
        manager.initialize()
        set_db_manager(manager)
        close_db_manager()
        assert manager._engine is None
