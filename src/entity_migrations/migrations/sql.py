"""SQL generation for diff steps.

Renders ``DiffStep`` lists into PostgreSQL ``up`` / ``down`` statement lists
and builds ``Migration`` objects with their checksum. Also hosts the small
statement splitter used for hand-authored migration bodies and migration
files (quotes, dollar-quoting and ``--`` comments are respected).

Usage:
    from entity_migrations.migrations.sql import build_migration

    migration = build_migration(1, "create_todos", EMPTY_MODEL_HASH, to_hash, steps)
    print(";\\n".join(migration.up))
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime

from entity_migrations.migrations.models import Migration, MigrationType, utc_now
from entity_migrations.migrations.steps import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    AddTable,
    AlterColumn,
    ColumnSpec,
    DiffStep,
    DropColumn,
    DropForeignKey,
    DropIndex,
    DropTable,
    ForeignKeyDef,
    IndexDef,
)

MANUAL_INTERVENTION = "-- MANUAL INTERVENTION REQUIRED"

_DOLLAR_TAG_RE = re.compile(r"\$[A-Za-z_]*\$")


@dataclass
class RenderedSQL:
    """Rendered statements for a list of steps."""

    up: list[str] = field(default_factory=list)
    down: list[str] = field(default_factory=list)
    reversible: bool = True


# ------------------------------------------------------------------
# Columns
# ------------------------------------------------------------------


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_default(column: ColumnSpec) -> str | None:
    """SQL for the column's DEFAULT clause, or None when it has none.

    Examples:
        >>> render_default(ColumnSpec(name="done", sql_type="BOOLEAN", default=False))
        'false'
        >>> render_default(ColumnSpec(name="title", sql_type="TEXT", default="it's"))
        "'it''s'"
    """
    value = column.default
    if value is None:
        if column.generated and column.sql_type == "UUID":
            return "gen_random_uuid()"
        if column.generated and column.sql_type == "TIMESTAMP":
            return "NOW()"
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        return f"{_quote_literal(json.dumps(value, sort_keys=True))}::jsonb"
    if str(value).lower() == "now()":
        return "NOW()"
    return _quote_literal(str(value))


def render_column(column: ColumnSpec) -> str:
    """Column definition: name, type, PRIMARY KEY, DEFAULT, NOT NULL, UNIQUE.

    Example:
        >>> render_column(ColumnSpec(name="title", sql_type="VARCHAR(255)", nullable=False))
        'title VARCHAR(255) NOT NULL'
    """
    parts = [column.name, column.sql_type]
    if column.primary:
        parts.append("PRIMARY KEY")
    default = render_default(column)
    if default is not None:
        parts.append(f"DEFAULT {default}")
    if not column.nullable:
        parts.append("NOT NULL")
    if column.unique and not column.primary:
        parts.append("UNIQUE")
    return " ".join(parts)


def render_create_table(table: str, columns: list[ColumnSpec]) -> str:
    body = ",\n".join(f"  {render_column(c)}" for c in columns)
    return f"CREATE TABLE {table} (\n{body}\n)"


def _create_index(table: str, index: IndexDef) -> str:
    unique = "UNIQUE " if index.unique else ""
    return f"CREATE {unique}INDEX IF NOT EXISTS {index.name} ON {table} ({', '.join(index.columns)})"


def _drop_index(index: IndexDef) -> str:
    return f"DROP INDEX IF EXISTS {index.name}"


def _add_foreign_key(table: str, fk: ForeignKeyDef) -> str:
    sql = (
        f"ALTER TABLE {table} ADD CONSTRAINT {fk.name} FOREIGN KEY ({fk.column}) "
        f"REFERENCES {fk.ref_table}({fk.ref_column})"
    )
    if fk.on_delete:
        sql += f" ON DELETE {fk.on_delete}"
    return sql


def _drop_foreign_key(table: str, fk: ForeignKeyDef) -> str:
    return f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {fk.name}"


def _alter_actions(table: str, before: ColumnSpec, after: ColumnSpec) -> list[str]:
    col = after.name
    actions: list[str] = []
    if before.sql_type != after.sql_type:
        actions.append(f"ALTER COLUMN {col} TYPE {after.sql_type} USING {col}::{after.sql_type}")
    if before.nullable != after.nullable:
        actions.append(f"ALTER COLUMN {col} {'DROP' if after.nullable else 'SET'} NOT NULL")
    old_default, new_default = render_default(before), render_default(after)
    if old_default != new_default:
        if new_default is None:
            actions.append(f"ALTER COLUMN {col} DROP DEFAULT")
        else:
            actions.append(f"ALTER COLUMN {col} SET DEFAULT {new_default}")
    if before.unique != after.unique:
        if after.unique:
            actions.append(f"ADD CONSTRAINT {table}_{col}_key UNIQUE ({col})")
        else:
            actions.append(f"DROP CONSTRAINT IF EXISTS {table}_{col}_key")
    if before.primary != after.primary:
        if after.primary:
            actions.append(f"ADD PRIMARY KEY ({col})")
        else:
            actions.append(f"DROP CONSTRAINT IF EXISTS {table}_pkey")
    return actions


# ------------------------------------------------------------------
# Steps
# ------------------------------------------------------------------


def render_steps(steps: list[DiffStep]) -> RenderedSQL:
    """Render steps into ``up`` statements and reverse-ordered ``down`` statements.

    ``add_column`` steps for a table created in the same list are folded into
    its ``CREATE TABLE``. A narrowing ``alter_column`` gets a
    manual-intervention placeholder instead of a down statement and marks the
    result irreversible.

    Raises:
        TypeError: On an unknown step kind.
    """
    created: dict[str, list[ColumnSpec]] = {
        step.table: [] for step in steps if isinstance(step, AddTable)
    }
    for step in steps:
        if isinstance(step, AddColumn) and step.table in created:
            created[step.table].append(step.column)

    rendered = RenderedSQL()
    downs: list[list[str]] = []

    for step in steps:
        up: list[str] = []
        down: list[str] = []
        match step:
            case AddTable():
                up.append(render_create_table(step.table, created[step.table]))
                down.append(f"DROP TABLE IF EXISTS {step.table}")
            case DropTable():
                up.append(f"DROP TABLE IF EXISTS {step.table}")
                down.append(render_create_table(step.table, step.columns))
            case AddColumn():
                if step.table not in created:
                    up.append(f"ALTER TABLE {step.table} ADD COLUMN {render_column(step.column)}")
                    down.append(f"ALTER TABLE {step.table} DROP COLUMN IF EXISTS {step.column.name}")
            case DropColumn():
                up.append(f"ALTER TABLE {step.table} DROP COLUMN {step.column.name}")
                down.append(f"ALTER TABLE {step.table} ADD COLUMN {render_column(step.column)}")
            case AlterColumn():
                actions = _alter_actions(step.table, step.before, step.after)
                if actions:
                    up.append(f"ALTER TABLE {step.table} " + ", ".join(actions))
                    if step.narrowing:
                        down.append(
                            f"{MANUAL_INTERVENTION}: {step.table}.{step.after.name} was narrowed "
                            f"({step.before.sql_type} -> {step.after.sql_type}); "
                            f"restore it from a snapshot"
                        )
                        rendered.reversible = False
                    else:
                        inverse = _alter_actions(step.table, step.after, step.before)
                        down.append(f"ALTER TABLE {step.table} " + ", ".join(inverse))
            case AddIndex():
                up.append(_create_index(step.table, step.index))
                down.append(_drop_index(step.index))
            case DropIndex():
                up.append(_drop_index(step.index))
                down.append(_create_index(step.table, step.index))
            case AddForeignKey():
                up.append(_add_foreign_key(step.table, step.foreign_key))
                down.append(_drop_foreign_key(step.table, step.foreign_key))
            case DropForeignKey():
                up.append(_drop_foreign_key(step.table, step.foreign_key))
                down.append(_add_foreign_key(step.table, step.foreign_key))
            case _:
                raise TypeError(f"Unknown diff step: {step!r}")
        rendered.up.extend(up)
        downs.append(down)

    for down in reversed(downs):
        rendered.down.extend(down)
    return rendered


# ------------------------------------------------------------------
# Checksums and statement splitting
# ------------------------------------------------------------------


def compute_checksum(up: list[str], down: list[str]) -> str:
    """SHA-256 hex digest over the rendered up and down SQL."""
    payload = "-- up\n" + ";\n".join(up) + "\n-- down\n" + ";\n".join(down)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def is_comment(statement: str) -> bool:
    """True for a comment-only statement such as the manual-intervention placeholder."""
    return all(line.strip().startswith("--") or not line.strip() for line in statement.splitlines())


def split_statements(sql: str) -> list[str]:
    """Split SQL text on top-level semicolons.

    Quoted strings, quoted identifiers and dollar-quoted bodies are kept
    intact. A ``--`` comment line outside any statement is returned as a
    statement of its own.

    Example:
        >>> split_statements("INSERT INTO t VALUES ('a;b'); -- note\\nSELECT 1;")
        ["INSERT INTO t VALUES ('a;b')", '-- note', 'SELECT 1']
    """
    statements: list[str] = []
    buf: list[str] = []
    pending = False  # buf holds non-whitespace text
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        if sql.startswith("--", i):
            end = sql.find("\n", i)
            end = n if end == -1 else end
            if pending:
                buf.append(sql[i:end])
            else:
                statements.append(sql[i:end].strip())
                buf = []
            i = end
            continue
        if ch in ("'", '"'):
            end = i + 1
            while end < n:
                if sql[end] == ch:
                    if end + 1 < n and sql[end + 1] == ch:
                        end += 2
                        continue
                    break
                end += 1
            buf.append(sql[i:end + 1])
            pending = True
            i = end + 1
            continue
        if ch == "$":
            match = _DOLLAR_TAG_RE.match(sql, i)
            if match:
                tag = match.group(0)
                end = sql.find(tag, match.end())
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                pending = True
                i = end
                continue
        if ch == ";":
            statement = "".join(buf).strip()
            if statement:
                statements.append(statement)
            buf = []
            pending = False
            i += 1
            continue
        buf.append(ch)
        if not ch.isspace():
            pending = True
        i += 1

    tail = "".join(buf).strip()
    if tail:
        statements.append(tail)
    return statements


# ------------------------------------------------------------------
# Migration builders
# ------------------------------------------------------------------


def migration_slug(name: str) -> str:
    """Filesystem-safe migration name.

    Example:
        >>> migration_slug("Add Todo table!")
        'add_todo_table'
    """
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return slug or "migration"


def build_migration(
    sequence: int,
    name: str,
    from_model_hash: str,
    to_model_hash: str,
    steps: list[DiffStep],
    description: str | None = None,
    created_at: datetime | None = None,
) -> Migration:
    """Render ``steps`` into a schema migration with its checksum."""
    rendered = render_steps(steps)
    return Migration(
        sequence=sequence,
        name=f"{sequence:04d}_{migration_slug(name)}",
        type="schema",
        from_model_hash=from_model_hash,
        to_model_hash=to_model_hash,
        steps=steps,
        up=rendered.up,
        down=rendered.down,
        reversible=rendered.reversible,
        checksum=compute_checksum(rendered.up, rendered.down),
        description=description,
        created_at=created_at or utc_now(),
    )


def build_custom_migration(
    sequence: int,
    name: str,
    model_hash: str,
    up_sql: str,
    down_sql: str | None = None,
    migration_type: MigrationType = "custom",
    description: str | None = None,
) -> Migration:
    """Wrap a hand-authored SQL body as a migration.

    Data and custom migrations leave the model unchanged, so
    ``from_model_hash == to_model_hash == model_hash``.
    """
    up = split_statements(up_sql)
    down = (
        split_statements(down_sql)
        if down_sql
        else [f"{MANUAL_INTERVENTION}: no down script was provided"]
    )
    return Migration(
        sequence=sequence,
        name=f"{sequence:04d}_{migration_slug(name)}",
        type=migration_type,
        from_model_hash=model_hash,
        to_model_hash=model_hash,
        up=up,
        down=down,
        reversible=bool(down_sql),
        checksum=compute_checksum(up, down),
        description=description,
    )
