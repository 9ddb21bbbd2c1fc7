"""Tests for SQL rendering, checksums and statement splitting."""

import pytest

from entity_migrations.migrations.sql import (
    MANUAL_INTERVENTION,
    build_custom_migration,
    build_migration,
    compute_checksum,
    is_comment,
    migration_slug,
    render_column,
    render_default,
    render_steps,
    split_statements,
)
from entity_migrations.migrations.steps import (
    AddIndex,
    AlterColumn,
    ColumnSpec,
    DropForeignKey,
    ForeignKeyDef,
    IndexDef,
)
from entity_migrations.schema.comparator import diff_models
from entity_migrations.schema.hasher import EMPTY_MODEL_HASH, compute_model_hash
from entity_migrations.schema.models import NormalizedModel
from entity_migrations.schema.normalizer import normalize_model


# ============================================================================
# Columns
# ============================================================================


class TestRenderDefault:
    """DEFAULT clause literals."""

    @pytest.mark.parametrize(
        ("column", "expected"),
        [
            (ColumnSpec(name="id", sql_type="UUID", generated=True), "gen_random_uuid()"),
            (ColumnSpec(name="at", sql_type="TIMESTAMP", generated=True), "NOW()"),
            (ColumnSpec(name="at", sql_type="TIMESTAMP", default="now()"), "NOW()"),
            (ColumnSpec(name="done", sql_type="BOOLEAN", default=True), "true"),
            (ColumnSpec(name="n", sql_type="INTEGER", default=0), "0"),
            (ColumnSpec(name="s", sql_type="TEXT", default="it's"), "'it''s'"),
            (ColumnSpec(name="j", sql_type="JSONB", default={"b": 1, "a": 2}), '\'{"a": 2, "b": 1}\'::jsonb'),
            (ColumnSpec(name="x", sql_type="TEXT"), None),
        ],
    )
    def test_defaults(self, column: ColumnSpec, expected: str | None) -> None:
        assert render_default(column) == expected


class TestRenderColumn:
    def test_required(self) -> None:
        column = ColumnSpec(name="title", sql_type="VARCHAR(255)", nullable=False)
        assert render_column(column) == "title VARCHAR(255) NOT NULL"

    def test_primary_generated(self) -> None:
        column = ColumnSpec(name="id", sql_type="UUID", nullable=False, primary=True, unique=True, generated=True)
        assert render_column(column) == "id UUID PRIMARY KEY DEFAULT gen_random_uuid() NOT NULL"

    def test_unique_nullable(self) -> None:
        column = ColumnSpec(name="email", sql_type="VARCHAR(255)", unique=True)
        assert render_column(column) == "email VARCHAR(255) UNIQUE"


# ============================================================================
# render_steps / build_migration
# ============================================================================


class TestCreateTable:
    """A new table's columns fold into one CREATE TABLE."""

    def test_todo_migration(self, todo_model) -> None:
        to_hash = compute_model_hash(todo_model)
        steps = diff_models(NormalizedModel(), todo_model)
        migration = build_migration(1, "create todos", EMPTY_MODEL_HASH, to_hash, steps)

        assert migration.name == "0001_create_todos"
        assert migration.type == "schema"
        assert migration.from_model_hash == EMPTY_MODEL_HASH
        assert migration.to_model_hash == to_hash
        assert migration.up == [
            "CREATE TABLE todos (\n"
            "  id UUID PRIMARY KEY DEFAULT gen_random_uuid() NOT NULL,\n"
            "  title VARCHAR(255) NOT NULL,\n"
            "  completed BOOLEAN DEFAULT false NOT NULL\n"
            ")"
        ]
        assert migration.down == ["DROP TABLE IF EXISTS todos"]
        assert migration.reversible is True
        assert migration.checksum == compute_checksum(migration.up, migration.down)
        assert migration.destructive_steps == []

    def test_blog_migration_order(self, blog_entities) -> None:
        model = normalize_model(blog_entities)
        rendered = render_steps(diff_models(NormalizedModel(), model))
        assert rendered.up[0].startswith("CREATE TABLE users (")
        assert rendered.up[1].startswith("CREATE TABLE posts (")
        assert "status VARCHAR(255) DEFAULT 'draft' NOT NULL" in rendered.up[1]
        assert rendered.up[2] == (
            "CREATE INDEX IF NOT EXISTS posts_status_title_idx ON posts (status, title)"
        )
        assert rendered.up[-1] == (
            "ALTER TABLE posts ADD CONSTRAINT posts_authorId_fkey FOREIGN KEY (authorId) "
            "REFERENCES users(id) ON DELETE CASCADE"
        )
        # down reverses up
        assert rendered.down[0] == "ALTER TABLE posts DROP CONSTRAINT IF EXISTS posts_authorId_fkey"
        assert rendered.down[-1] == "DROP TABLE IF EXISTS users"


class TestAlterAndDrop:
    """Column changes on existing tables."""

    def _todo(self, **fields: str):
        return normalize_model({"Todo": {"table": "todos", "fields": {"id": "uuid! primary", **fields}}})

    def test_add_column(self) -> None:
        rendered = render_steps(diff_models(self._todo(), self._todo(priority="integer = 0")))
        assert rendered.up == ["ALTER TABLE todos ADD COLUMN priority INTEGER DEFAULT 0"]
        assert rendered.down == ["ALTER TABLE todos DROP COLUMN IF EXISTS priority"]

    def test_drop_column_down_recreates_it(self) -> None:
        rendered = render_steps(diff_models(self._todo(notes="text?"), self._todo()))
        assert rendered.up == ["ALTER TABLE todos DROP COLUMN notes"]
        assert rendered.down == ["ALTER TABLE todos ADD COLUMN notes TEXT"]

    def test_drop_table_down_recreates_it(self, todo_model) -> None:
        rendered = render_steps(diff_models(todo_model, NormalizedModel()))
        assert rendered.up == ["DROP TABLE IF EXISTS todos"]
        assert rendered.down[0].startswith("CREATE TABLE todos (")

    def test_widening_alter_is_reversible(self) -> None:
        rendered = render_steps(
            diff_models(self._todo(code="string length:10"), self._todo(code="string length:50"))
        )
        assert rendered.up == ["ALTER TABLE todos ALTER COLUMN code TYPE VARCHAR(50) USING code::VARCHAR(50)"]
        assert rendered.down == ["ALTER TABLE todos ALTER COLUMN code TYPE VARCHAR(10) USING code::VARCHAR(10)"]
        assert rendered.reversible is True

    def test_narrowing_alter_needs_manual_down(self) -> None:
        before, after = self._todo(title="string?"), self._todo(title="string!")
        migration = build_migration(
            2, "require title", compute_model_hash(before), compute_model_hash(after),
            diff_models(before, after),
        )
        assert migration.up == ["ALTER TABLE todos ALTER COLUMN title SET NOT NULL"]
        assert len(migration.down) == 1
        assert migration.down[0].startswith(MANUAL_INTERVENTION)
        assert is_comment(migration.down[0])
        assert migration.reversible is False
        assert len(migration.destructive_steps) == 1

    def test_unique_and_default_changes(self) -> None:
        step = AlterColumn(
            table="users",
            entity="User",
            before=ColumnSpec(name="email", sql_type="TEXT", default="x"),
            after=ColumnSpec(name="email", sql_type="TEXT", unique=True),
        )
        rendered = render_steps([step])
        assert rendered.up == [
            "ALTER TABLE users ALTER COLUMN email DROP DEFAULT, "
            "ADD CONSTRAINT users_email_key UNIQUE (email)"
        ]
        assert rendered.down == [
            "ALTER TABLE users ALTER COLUMN email SET DEFAULT 'x', "
            "DROP CONSTRAINT IF EXISTS users_email_key"
        ]

    def test_unique_index_and_drop_foreign_key(self) -> None:
        fk = ForeignKeyDef(name="posts_authorId_fkey", column="authorId", ref_table="users")
        rendered = render_steps([
            AddIndex(table="posts", entity="Post", index=IndexDef(name="posts_slug_key", columns=["slug"], unique=True)),
            DropForeignKey(table="posts", entity="Post", foreign_key=fk),
        ])
        assert rendered.up == [
            "CREATE UNIQUE INDEX IF NOT EXISTS posts_slug_key ON posts (slug)",
            "ALTER TABLE posts DROP CONSTRAINT IF EXISTS posts_authorId_fkey",
        ]
        assert rendered.down == [
            "ALTER TABLE posts ADD CONSTRAINT posts_authorId_fkey FOREIGN KEY (authorId) REFERENCES users(id)",
            "DROP INDEX IF EXISTS posts_slug_key",
        ]

    def test_unknown_step(self) -> None:
        with pytest.raises(TypeError):
            render_steps([object()])


# ============================================================================
# Checksums, splitting, names
# ============================================================================


class TestChecksum:
    def test_deterministic(self) -> None:
        assert compute_checksum(["SELECT 1"], []) == compute_checksum(["SELECT 1"], [])

    def test_covers_up_and_down(self) -> None:
        base = compute_checksum(["SELECT 1"], ["SELECT 2"])
        assert compute_checksum(["SELECT 1 "], ["SELECT 2"]) != base
        assert compute_checksum(["SELECT 1"], ["SELECT 3"]) != base


class TestSplitStatements:
    """Top-level semicolons only."""

    def test_quotes_and_comments(self) -> None:
        sql = "INSERT INTO t VALUES ('a;b'); -- note\nSELECT 1;"
        assert split_statements(sql) == ["INSERT INTO t VALUES ('a;b')", "-- note", "SELECT 1"]

    def test_doubled_quote(self) -> None:
        assert split_statements("SELECT 'it''s;'; SELECT 2") == ["SELECT 'it''s;'", "SELECT 2"]

    def test_dollar_quoted_body(self) -> None:
        sql = "CREATE FUNCTION f() RETURNS int AS $$ SELECT 1; $$ LANGUAGE sql; SELECT 2"
        assert split_statements(sql) == [
            "CREATE FUNCTION f() RETURNS int AS $$ SELECT 1; $$ LANGUAGE sql",
            "SELECT 2",
        ]

    def test_inline_comment_stays_with_statement(self) -> None:
        assert split_statements("SELECT 1 -- one\n;") == ["SELECT 1 -- one"]

    def test_empty(self) -> None:
        assert split_statements("  ;\n ; ") == []


class TestMigrationNames:
    def test_slug(self) -> None:
        assert migration_slug("Add Todo table!") == "add_todo_table"
        assert migration_slug("!!!") == "migration"


class TestCustomMigration:
    """Hand-authored data and custom migrations."""

    def test_without_down(self) -> None:
        migration = build_custom_migration(3, "backfill titles", "abc", "UPDATE todos SET title = 'x';")
        assert migration.name == "0003_backfill_titles"
        assert migration.type == "custom"
        assert migration.from_model_hash == migration.to_model_hash == "abc"
        assert migration.up == ["UPDATE todos SET title = 'x'"]
        assert migration.down[0].startswith(MANUAL_INTERVENTION)
        assert migration.reversible is False
        assert migration.checksum == compute_checksum(migration.up, migration.down)

    def test_data_with_down(self) -> None:
        migration = build_custom_migration(
            4, "seed", "abc", "INSERT INTO tags VALUES (1); INSERT INTO tags VALUES (2)",
            down_sql="DELETE FROM tags", migration_type="data",
        )
        assert migration.type == "data"
        assert len(migration.up) == 2
        assert migration.down == ["DELETE FROM tags"]
        assert migration.reversible is True
