"""Typed diff steps.

``DiffStep`` is a closed discriminated union over nine step kinds. Each step
carries its table, its entity, and a resolved payload (``ColumnSpec``,
``IndexDef`` or ``ForeignKeyDef``) so the SQL generator never has to look at
the entity model again.

Usage:
    from entity_migrations.migrations.steps import AddColumn, ColumnSpec

    step = AddColumn(
        table="todos",
        entity="Todo",
        column=ColumnSpec(name="title", sql_type="VARCHAR(255)", nullable=False),
    )
    step.destructive  # False
"""

import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ColumnSpec(BaseModel):
    """A column as it appears in DDL."""

    model_config = ConfigDict(frozen=True)

    name: str
    sql_type: str
    nullable: bool = True
    primary: bool = False
    unique: bool = False
    default: Any = None
    generated: bool = False


class IndexDef(BaseModel):
    """An effective index: explicit or derived from a field-level ``indexed``."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[str]
    unique: bool = False


class ForeignKeyDef(BaseModel):
    """A foreign-key constraint backing a ``belongsTo`` relation."""

    model_config = ConfigDict(frozen=True)

    name: str
    column: str
    ref_table: str
    ref_column: str = "id"
    on_delete: str | None = None


# ------------------------------------------------------------------
# Step variants
# ------------------------------------------------------------------


class _Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    entity: str

    @property
    def destructive(self) -> bool:
        """Step can lose data."""
        return False

    @property
    def removing(self) -> bool:
        """Step removes structure."""
        return False


class AddTable(_Step):
    kind: Literal["add_table"] = "add_table"


class DropTable(_Step):
    kind: Literal["drop_table"] = "drop_table"
    columns: list[ColumnSpec] = Field(default_factory=list)

    @property
    def destructive(self) -> bool:
        return True

    @property
    def removing(self) -> bool:
        return True


class AddColumn(_Step):
    kind: Literal["add_column"] = "add_column"
    column: ColumnSpec


class DropColumn(_Step):
    kind: Literal["drop_column"] = "drop_column"
    column: ColumnSpec

    @property
    def destructive(self) -> bool:
        return True

    @property
    def removing(self) -> bool:
        return True


class AlterColumn(_Step):
    kind: Literal["alter_column"] = "alter_column"
    before: ColumnSpec
    after: ColumnSpec

    @property
    def narrowing(self) -> bool:
        """Type change outside the widening set, or nullable -> NOT NULL."""
        if self.before.nullable and not self.after.nullable:
            return True
        return not is_widening(self.before.sql_type, self.after.sql_type)

    @property
    def destructive(self) -> bool:
        return self.narrowing


class AddIndex(_Step):
    kind: Literal["add_index"] = "add_index"
    index: IndexDef


class DropIndex(_Step):
    kind: Literal["drop_index"] = "drop_index"
    index: IndexDef

    @property
    def removing(self) -> bool:
        return True


class AddForeignKey(_Step):
    kind: Literal["add_foreign_key"] = "add_foreign_key"
    foreign_key: ForeignKeyDef


class DropForeignKey(_Step):
    kind: Literal["drop_foreign_key"] = "drop_foreign_key"
    foreign_key: ForeignKeyDef

    @property
    def removing(self) -> bool:
        return True


DiffStep = Annotated[
    Union[
        AddTable,
        DropTable,
        AddColumn,
        DropColumn,
        AlterColumn,
        AddIndex,
        DropIndex,
        AddForeignKey,
        DropForeignKey,
    ],
    Field(discriminator="kind"),
]

STEP_LIST_ADAPTER: TypeAdapter[list[DiffStep]] = TypeAdapter(list[DiffStep])

ADDITIVE_KINDS: frozenset[str] = frozenset(
    {"add_table", "add_column", "add_index", "add_foreign_key"}
)

_VARCHAR_RE = re.compile(r"^VARCHAR\((\d+)\)$")


def is_widening(before: str, after: str) -> bool:
    """True when ``before -> after`` cannot lose data.

    Example:
        >>> is_widening("VARCHAR(50)", "VARCHAR(255)"), is_widening("TEXT", "VARCHAR(10)")
        (True, False)
    """
    if before == after:
        return True
    before_match = _VARCHAR_RE.match(before)
    if before_match is None:
        return False
    if after == "TEXT":
        return True
    after_match = _VARCHAR_RE.match(after)
    return after_match is not None and int(after_match.group(1)) >= int(before_match.group(1))


def summarize_steps(steps: list[DiffStep]) -> dict[str, int]:
    """Count steps per kind, in first-seen order."""
    counts: dict[str, int] = {}
    for step in steps:
        counts[step.kind] = counts.get(step.kind, 0) + 1
    return counts


def describe_steps(steps: list[DiffStep]) -> str:
    """Human-readable one-line summary.

    Example:
        >>> describe_steps([])
        'no changes'
    """
    counts = summarize_steps(steps)
    if not counts:
        return "no changes"
    parts = [f"{count} {kind.replace('_', ' ')}" for kind, count in counts.items()]
    destructive = sum(1 for step in steps if step.destructive)
    if destructive:
        parts.append(f"{destructive} destructive")
    return ", ".join(parts)
