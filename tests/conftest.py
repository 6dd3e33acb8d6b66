"""
Pytest configuration and fixtures for authschema tests.
"""

import os

import pytest

# Set test environment variables before importing config
os.environ['AUTH_BCRYPT_ROUNDS'] = '4'  # Minimum cost keeps hashing fast
os.environ.pop('DATABASE_URL', None)
os.environ.pop('AUTH_DEFAULT_TOKEN_TTL_SECONDS', None)


@pytest.fixture(autouse=True)
def fresh_config():
    """Reload configuration around each test so env changes do not leak."""
    from config import reload_config
    reload_config()
    yield
    reload_config()


@pytest.fixture
def sqlite_url(tmp_path):
    """URL of an empty SQLite database file."""
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def migrated_url(sqlite_url):
    """SQLite database with the Alembic migrations applied."""
    from migrate import run_migrations
    assert run_migrations(db_url=sqlite_url) is True
    return sqlite_url


@pytest.fixture
def db_manager(migrated_url):
    """Global DatabaseManager pointed at the migrated SQLite database."""
    from database import DatabaseManager, set_db_manager
    manager = DatabaseManager(url=migrated_url)
    set_db_manager(manager)
    yield manager
    set_db_manager(None)


@pytest.fixture
def local_user(db_manager):
    from users import create_user
    return create_user(email="alice@example.com", name="Alice", password="correct horse")
