"""Tests for database initialization and startup behavior.

These tests verify that the application refuses to serve when migrations
haven't been run, and that the engine is built with bounded timeouts.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, inspect

from onetime.database import build_engine
from onetime.main import check_database_tables, create_app
from tests.test_utils import make_settings


class TestDatabaseStartup:
    """Tests for database initialization at startup."""

    def test_check_database_tables_raises_on_missing_tables(self, tmp_path):
        empty_engine = create_engine(
            f"sqlite:///{tmp_path / 'empty.db'}",
            connect_args={"check_same_thread": False},
        )
        assert inspect(empty_engine).get_table_names() == []

        with pytest.raises(RuntimeError) as exc_info:
            check_database_tables(empty_engine)

        error_message = str(exc_info.value)
        assert "Database tables missing" in error_message
        assert "secrets" in error_message
        assert "alembic upgrade head" in error_message

    def test_check_database_tables_passes_with_all_tables(self, db_session):
        # Should not raise any exception
        check_database_tables(db_session.get_bind())

    def test_required_tables_exist_after_setup(self, db_session):
        tables = set(inspect(db_session.get_bind()).get_table_names())

        required_tables = {"secrets", "secret_metadata"}
        assert required_tables.issubset(
            tables
        ), f"Missing required tables. Expected: {required_tables}, Found: {tables}"

    def test_app_refuses_to_start_without_tables(self, tmp_path):
        app = create_app(make_settings(database_url=f"sqlite:///{tmp_path / 'empty.db'}"))

        with pytest.raises(RuntimeError, match="Database tables missing"):
            with TestClient(app):
                pass


class TestEngineTimeouts:
    def test_sqlite_busy_timeout(self, tmp_path):
        engine = build_engine(
            make_settings(database_url=f"sqlite:///{tmp_path / 'x.db'}", store_timeout_seconds=2.5)
        )

        assert engine.dialect.name == "sqlite"
        with engine.connect() as connection:
            busy_timeout = connection.exec_driver_sql("PRAGMA busy_timeout").scalar()
        assert busy_timeout == 2500
