"""Tests for the database engine and session management module."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect

import bulk_export.core.database as db_module
from bulk_export.core.database import create_schema, dispose_engine, get_engine, get_session_factory, init_engine


@pytest.fixture(autouse=True)
def _restore_engine_state():
    """Keep mocked engines from leaking into other tests."""
    engine, factory = db_module._engine, db_module._session_factory
    yield
    db_module._engine, db_module._session_factory = engine, factory


class TestGetEngine:
    """Tests for get_engine."""

    def test_raises_when_not_initialized(self) -> None:
        original_engine = db_module._engine
        db_module._engine = None
        try:
            with pytest.raises(RuntimeError, match="Database engine not initialized"):
                get_engine()
        finally:
            db_module._engine = original_engine

    @pytest.mark.asyncio
    async def test_returns_engine_when_initialized(self) -> None:
        engine = init_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert get_engine() is engine
        finally:
            await dispose_engine()


class TestGetSessionFactory:
    """Tests for get_session_factory."""

    def test_raises_when_not_initialized(self) -> None:
        original_factory = db_module._session_factory
        db_module._session_factory = None
        try:
            with pytest.raises(RuntimeError, match="Session factory not initialized"):
                get_session_factory()
        finally:
            db_module._session_factory = original_factory


class TestInitEngine:
    """Tests for init_engine."""

    def test_postgres_pool_defaults(self) -> None:
        with patch("bulk_export.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("postgresql+asyncpg://localhost/db", echo=False)
            mock_create.assert_called_once_with(
                "postgresql+asyncpg://localhost/db",
                echo=False,
                pool_size=10,
                max_overflow=5,
                pool_pre_ping=True,
            )

    def test_init_engine_with_schema(self) -> None:
        """init_engine with schema sets the search_path."""
        with patch("bulk_export.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("postgresql+asyncpg://localhost/db", schema="pr_42")
            kwargs = mock_create.call_args.kwargs
            assert kwargs["connect_args"] == {"server_settings": {"search_path": "pr_42,public"}}

    def test_sqlite_gets_lock_timeout(self) -> None:
        with patch("bulk_export.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("sqlite+aiosqlite:///exports.db", schema="ignored")
            mock_create.assert_called_once_with("sqlite+aiosqlite:///exports.db", connect_args={"timeout": 30})

    @pytest.mark.asyncio
    async def test_create_schema(self, tmp_path: Path) -> None:
        init_engine(f"sqlite+aiosqlite:///{tmp_path / 'schema.db'}")
        try:
            await create_schema()
            async with get_engine().connect() as conn:
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
            assert "export_jobs" in tables
        finally:
            await dispose_engine()


class TestDisposeEngine:
    """Tests for dispose_engine."""

    @pytest.mark.asyncio
    async def test_disposes_engine(self) -> None:
        init_engine("sqlite+aiosqlite:///:memory:")
        await dispose_engine()
        assert db_module._engine is None
        assert db_module._session_factory is None

    @pytest.mark.asyncio
    async def test_dispose_when_no_engine(self) -> None:
        original = db_module._engine
        db_module._engine = None
        try:
            await dispose_engine()
        finally:
            db_module._engine = original
