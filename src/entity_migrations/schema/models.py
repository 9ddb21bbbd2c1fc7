"""Pydantic models for the entity model, schema introspection, and validation.

This module contains schema-domain models:
- Entity model: EntityField, ForeignKeyRef, Relation, IndexSpec,
  EntityDefinition, NormalizedModel, ModelHash
- Introspection models: ColumnSchema, ConstraintSchema, IndexSchema,
  TableSchema, DatabaseSchema
- Validation models: ColumnDiff, SchemaValidationResult
- Connection result: ConnectionResult

Configuration models (DatabaseProfile, DatabaseConfig) live in
entity_migrations.config.models.
"""

import re
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field


FieldType = Literal[
    "string", "text", "uuid", "number", "integer", "boolean", "timestamp", "jsonb"
]
RelationType = Literal["belongsTo", "hasOne", "hasMany", "manyToMany"]

FIELD_TYPES: frozenset[str] = frozenset(get_args(FieldType))

DEFAULT_VARCHAR_LENGTH = 255

# Entity field type -> PostgreSQL column type ("string" is sized at render time)
SQL_TYPES: dict[str, str] = {
    "uuid": "UUID",
    "text": "TEXT",
    "number": "INTEGER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "timestamp": "TIMESTAMP",
    "jsonb": "JSONB",
}


def snake_case(name: str) -> str:
    """Convert ``BlogPost`` / ``blogPost`` to ``blog_post``."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


# ============================================================================
# Entity Model
# ============================================================================


class ForeignKeyRef(BaseModel):
    """Foreign-key role of a field backing a ``belongsTo`` relation."""

    model_config = ConfigDict(frozen=True)

    entity: str
    table: str
    column: str = "id"
    on_delete: str | None = None  # "CASCADE" when the relation cascades


class EntityField(BaseModel):
    """A fully structured entity field.

    ``required`` and ``nullable`` always disagree; the normalizer derives
    one from the other.

    Example:
        >>> field = EntityField(type="string", required=True, nullable=False)
        >>> field.sql_type
        'VARCHAR(255)'
    """

    model_config = ConfigDict(frozen=True)

    type: FieldType = "string"
    required: bool = False
    nullable: bool = True
    unique: bool = False
    indexed: bool = False
    default: Any = None
    enum_values: list[str] | None = None
    db_column: str | None = None
    primary: bool = False
    generated: bool = False
    max_length: int | None = None
    foreign_key: ForeignKeyRef | None = None

    @property
    def sql_type(self) -> str:
        """PostgreSQL column type for this field."""
        if self.type == "string":
            return f"VARCHAR({self.max_length or DEFAULT_VARCHAR_LENGTH})"
        return SQL_TYPES[self.type]


class Relation(BaseModel):
    """A relation between two entities.

    Only ``belongsTo`` produces DDL (through its foreign-key field); join
    tables for ``manyToMany`` are declared as entities of their own.
    """

    model_config = ConfigDict(frozen=True)

    type: RelationType
    entity: str
    through: str | None = None
    cascade: bool = False
    required: bool = False
    foreign_key: str | None = None  # belongsTo only: "<relationName>Id"


class IndexSpec(BaseModel):
    """Explicit index declaration over entity field names."""

    model_config = ConfigDict(frozen=True)

    fields: list[str]
    unique: bool = False
    name: str | None = None

    def effective_name(self, table: str) -> str:
        """``name`` or ``<table>_<col1>_<col2>_idx``."""
        return self.name or f"{table}_{'_'.join(self.fields)}_idx"


class EntityDefinition(BaseModel):
    """One normalized entity: table, ordered fields, relations, indexes."""

    model_config = ConfigDict(frozen=True)

    table: str
    fields: dict[str, EntityField] = Field(default_factory=dict)
    relations: dict[str, Relation] = Field(default_factory=dict)
    indexes: list[IndexSpec] = Field(default_factory=list)

    def column_name(self, field_name: str) -> str:
        """Database column for a field (``db_column`` or the field name)."""
        field = self.fields.get(field_name)
        if field is not None and field.db_column:
            return field.db_column
        return field_name

    @property
    def primary_column(self) -> str:
        """Column of the first primary field, ``id`` when none is marked."""
        for name, field in self.fields.items():
            if field.primary:
                return self.column_name(name)
        return "id"


class NormalizedModel(BaseModel):
    """Entity name -> EntityDefinition, fully resolved and immutable.

    Example:
        >>> NormalizedModel().is_empty
        True
    """

    model_config = ConfigDict(frozen=True)

    entities: dict[str, EntityDefinition] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.entities

    def by_table(self) -> dict[str, EntityDefinition]:
        """Entities keyed by table name."""
        return {entity.table: entity for entity in self.entities.values()}


class ModelHash(BaseModel):
    """Digest of a model plus the canonical text it was computed from."""

    model_config = ConfigDict(frozen=True)

    digest: str
    canonical: str

    def __str__(self) -> str:
        return self.digest


# ============================================================================
# Validation Result Models
# ============================================================================


class ColumnDiff(BaseModel):
    """A missing column detected during validation."""

    table: str
    column: str
    message: str = ""


class SchemaValidationResult(BaseModel):
    """Result of live schema validation.

    Example:
        >>> result = SchemaValidationResult(valid=True)
        >>> result.error_count
        0
        >>> result.format_report()
        'Schema valid'
    """

    valid: bool
    missing_tables: list[str] = Field(default_factory=list)
    missing_columns: list[ColumnDiff] = Field(default_factory=list)
    extra_tables: list[str] = Field(default_factory=list)  # Warning only

    @property
    def error_count(self) -> int:
        """Count of critical errors (missing tables + missing columns)."""
        return len(self.missing_tables) + len(self.missing_columns)

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        if self.valid:
            return "Schema valid"

        lines = ["Schema validation failed:"]

        if self.missing_tables:
            lines.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            for table in self.missing_tables:
                lines.append(f"    - {table}")

        if self.missing_columns:
            lines.append(f"\n  Missing columns ({len(self.missing_columns)}):")
            for diff in self.missing_columns:
                lines.append(f"    - {diff.table}.{diff.column}")

        if self.extra_tables:
            lines.append(f"\n  Extra tables (warning): {', '.join(self.extra_tables)}")

        return "\n".join(lines)


# ============================================================================
# Connection Result
# ============================================================================


class ConnectionResult(BaseModel):
    """Result of connect_and_validate().

    Example:
        >>> result = ConnectionResult(success=True, profile_name="dev", schema_valid=True)
        >>> result.success
        True
    """

    success: bool
    profile_name: str | None = None
    schema_valid: bool | None = None
    schema_report: SchemaValidationResult | None = None
    error: str | None = None


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnSchema(name="id", data_type="uuid")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None


class ConstraintSchema(BaseModel):
    """Schema for a database constraint."""

    name: str
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK
    columns: list[str] = Field(default_factory=list)
    references_table: str | None = None
    references_columns: list[str] | None = None
    on_delete: str | None = None


class IndexSchema(BaseModel):
    """Schema for a database index."""

    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    index_type: str = "btree"


class TableSchema(BaseModel):
    """Schema for a database table."""

    name: str
    columns: dict[str, ColumnSchema] = Field(default_factory=dict)
    constraints: dict[str, ConstraintSchema] = Field(default_factory=dict)
    indexes: dict[str, IndexSchema] = Field(default_factory=dict)


class DatabaseSchema(BaseModel):
    """Complete database schema."""

    tables: dict[str, TableSchema] = Field(default_factory=dict)
