"""Tests for the async PostgreSQL adapter and the live schema introspector."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import pytest

from entity_migrations.adapters.postgres import (
    AsyncPostgresAdapter,
    ConnectionExecutor,
    create_async_engine_pooled,
    normalize_url,
)
from entity_migrations.schema.introspector import SchemaIntrospector


def _async_ctx(value) -> MagicMock:
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=value)
    ctx.__aexit__ = AsyncMock(return_value=None)
    return ctx


# ============================================================================
# AsyncPostgresAdapter
# ============================================================================


class TestEngine:
    """URL normalization and pool defaults."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgres://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("postgresql://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("postgresql+asyncpg://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
        ],
    )
    def test_normalize_url(self, url: str, expected: str) -> None:
        assert normalize_url(url) == expected

    def test_pool_defaults_and_overrides(self) -> None:
        with patch("entity_migrations.adapters.postgres.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql+asyncpg://u:p@db/app", pool_size=2)
        kwargs = mock_create.call_args.kwargs
        assert kwargs["pool_size"] == 2
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["pool_recycle"] == 300

    def test_adapter_uses_asyncpg_url(self) -> None:
        with patch("entity_migrations.adapters.postgres.create_async_engine_pooled") as mock_create:
            AsyncPostgresAdapter("postgresql://u:p@db/app", echo=True)
        mock_create.assert_called_once_with("postgresql+asyncpg://u:p@db/app", echo=True)


class TestConnectionExecutor:
    @pytest.mark.asyncio
    async def test_fetch_serializes_rows(self) -> None:
        row_id = UUID("12345678-1234-5678-1234-567812345678")
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = MagicMock()
        result.keys.return_value = ["id", "applied_at", "count"]
        result.fetchall.return_value = [(row_id, at, 3)]
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=result)

        rows = await ConnectionExecutor(conn).fetch("SELECT * FROM t WHERE id = :id", {"id": 1})

        assert rows == [{"id": str(row_id), "applied_at": at.isoformat(), "count": 3}]
        statement, params = conn.execute.await_args.args
        assert statement.text == "SELECT * FROM t WHERE id = :id"
        assert params == {"id": 1}

    @pytest.mark.asyncio
    async def test_execute_defaults_params(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock()
        await ConnectionExecutor(conn).execute("TRUNCATE todos")
        assert conn.execute.await_args.args[1] == {}


class TestTransaction:
    @pytest.mark.asyncio
    async def test_statements_share_one_connection(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock()
        engine = MagicMock()
        engine.begin.return_value = _async_ctx(conn)
        engine.dispose = AsyncMock()

        with patch("entity_migrations.adapters.postgres.create_async_engine_pooled", return_value=engine):
            adapter = AsyncPostgresAdapter("postgresql://u:p@db/app")
            async with adapter.transaction() as tx:
                await tx.execute("CREATE TABLE a (id INT)")
                await tx.execute("INSERT INTO a VALUES (:v)", {"v": 1})
            await adapter.close()

        engine.begin.assert_called_once()
        assert conn.execute.await_count == 2
        engine.dispose.assert_awaited_once()


# ============================================================================
# SchemaIntrospector
# ============================================================================


def _connection(*results: list[tuple]) -> tuple[MagicMock, AsyncMock]:
    """Connection whose cursor returns ``results`` from successive fetchall calls."""
    cursor = AsyncMock()
    cursor.fetchall.side_effect = list(results)
    conn = MagicMock()
    conn.cursor.return_value = _async_ctx(cursor)
    conn.close = AsyncMock()
    return conn, cursor


class TestSchemaIntrospector:
    """Queries information_schema through psycopg."""

    @pytest.mark.asyncio
    async def test_connect_adds_timeout(self) -> None:
        conn, _ = _connection()
        with patch(
            "entity_migrations.schema.introspector.psycopg.AsyncConnection.connect",
            new_callable=AsyncMock,
            return_value=conn,
        ) as mock_connect:
            async with SchemaIntrospector("postgresql+asyncpg://u:p@db/app?sslmode=disable"):
                pass
        mock_connect.assert_awaited_once_with("postgresql://u:p@db/app?sslmode=disable&connect_timeout=10")
        conn.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_requires_connection(self) -> None:
        with pytest.raises(RuntimeError, match="async with"):
            await SchemaIntrospector("postgresql://u:p@db/app").get_column_names()

    @pytest.mark.asyncio
    async def test_column_names_skip_ledger_and_snapshots(self) -> None:
        conn, _ = _connection(
            [("_yama_migrations",), ("todos",), ("todos_snapshot_1700000000000",)],
            [("todos", "id"), ("todos", "title"), ("_yama_migrations", "name")],
        )
        introspector = SchemaIntrospector("postgresql://u:p@db/app")
        introspector._conn = conn

        assert await introspector.get_column_names() == {"todos": {"id", "title"}}

    @pytest.mark.asyncio
    async def test_introspect(self) -> None:
        conn, cursor = _connection(
            [("posts",)],
            [
                ("id", "uuid", "NO", "gen_random_uuid()"),
                ("title", "character varying", "YES", None),
                ("authorId", "uuid", "NO", None),
            ],
            [
                ("posts_pkey", "PRIMARY KEY", "id", None, None, None),
                ("posts_authorId_fkey", "FOREIGN KEY", "authorId", "users", "id", "CASCADE"),
            ],
            [("posts_title_idx", ["title"], False, "btree")],
        )
        introspector = SchemaIntrospector("postgresql://u:p@db/app")
        introspector._conn = conn

        schema = await introspector.introspect()

        posts = schema.tables["posts"]
        assert list(posts.columns) == ["id", "title", "authorId"]
        assert posts.columns["title"].data_type == "varchar"
        assert posts.columns["title"].is_nullable is True
        assert posts.columns["id"].default == "gen_random_uuid()"
        fk = posts.constraints["posts_authorId_fkey"]
        assert fk.references_table == "users"
        assert fk.columns == ["authorId"]
        assert fk.on_delete == "CASCADE"
        assert posts.constraints["posts_pkey"].references_table is None
        assert posts.indexes["posts_title_idx"].columns == ["title"]
        assert cursor.execute.await_args_list[1].args[1] == ("public", "posts")
