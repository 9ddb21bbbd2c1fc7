"""Model diffing and live schema comparison.

``diff_models`` compares two normalized models and returns an ordered list
of typed ``DiffStep``s. ``validate_schema`` compares expected columns against
actual columns from the database using set operations, and
``compare_live_schema`` reports type, nullability, index and foreign-key
drift against an introspected ``DatabaseSchema``.
Pure logic -- no I/O, no database connections.

Step order within one diff:

1. additive: new tables parents-first (each as ``add_table``, its
   ``add_column``s, its ``add_index``es), then ``add_column`` and
   ``add_index`` on existing tables, then ``add_foreign_key``
2. drop/add pairs for redefined indexes and foreign keys, then
   ``alter_column``. A redefinition keeps its name, so its ``drop_*`` must
   run before the matching ``add_*``; these pairs are the one place a
   removing step precedes an additive one. ``drop_index`` and
   ``drop_foreign_key`` are not destructive, so every destructive step
   still follows every additive step.
3. removing: ``drop_foreign_key``, ``drop_index``, ``drop_column``,
   ``drop_table`` children-first

Usage:
    from entity_migrations.schema.comparator import diff_models

    steps = diff_models(NormalizedModel(), model)
    for step in steps:
        print(step.kind, step.table)
"""

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
from entity_migrations.schema.models import (
    ColumnDiff,
    DatabaseSchema,
    EntityDefinition,
    EntityField,
    NormalizedModel,
    SchemaValidationResult,
)


# ------------------------------------------------------------------
# Entity -> DDL payloads
# ------------------------------------------------------------------


def column_spec(name: str, field: EntityField) -> ColumnSpec:
    """Resolve an entity field into the column it produces."""
    return ColumnSpec(
        name=field.db_column or name,
        sql_type=field.sql_type,
        nullable=field.nullable and not field.primary,
        primary=field.primary,
        unique=field.unique,
        default=field.default,
        generated=field.generated,
    )


def entity_columns(entity: EntityDefinition) -> list[ColumnSpec]:
    """Columns of an entity in declared field order."""
    return [column_spec(name, field) for name, field in entity.fields.items()]


def effective_indexes(entity: EntityDefinition) -> list[IndexDef]:
    """Explicit indexes followed by field-level ``indexed`` ones.

    Field-level indexes are named ``<table>_<column>_idx``; an explicit index
    of the same name wins.
    """
    indexes: dict[str, IndexDef] = {}
    for spec in entity.indexes:
        name = spec.effective_name(entity.table)
        indexes[name] = IndexDef(
            name=name,
            columns=[entity.column_name(f) for f in spec.fields],
            unique=spec.unique,
        )
    for field_name, field in entity.fields.items():
        if not field.indexed or field.primary:
            continue
        column = entity.column_name(field_name)
        name = f"{entity.table}_{column}_idx"
        indexes.setdefault(name, IndexDef(name=name, columns=[column]))
    return list(indexes.values())


def foreign_keys(entity: EntityDefinition) -> list[ForeignKeyDef]:
    """FK constraints for every field carrying a ``foreign_key`` role."""
    result: list[ForeignKeyDef] = []
    for field_name, field in entity.fields.items():
        if field.foreign_key is None:
            continue
        column = entity.column_name(field_name)
        result.append(
            ForeignKeyDef(
                name=f"{entity.table}_{column}_fkey",
                column=column,
                ref_table=field.foreign_key.table,
                ref_column=field.foreign_key.column,
                on_delete=field.foreign_key.on_delete,
            )
        )
    return result


def expected_columns(model: NormalizedModel) -> dict[str, set[str]]:
    """Table -> column names, in the shape ``validate_schema`` expects.

    Names are lower-cased: generated DDL leaves identifiers unquoted, so
    PostgreSQL folds ``authorId`` to ``authorid``.
    """
    return {
        entity.table.lower(): {column.name.lower() for column in entity_columns(entity)}
        for entity in model.entities.values()
    }


# ------------------------------------------------------------------
# Ordering
# ------------------------------------------------------------------


def _table_dependencies(tables: dict[str, EntityDefinition]) -> dict[str, set[str]]:
    """Table -> set of tables it references through foreign keys."""
    return {
        table: {fk.ref_table for fk in foreign_keys(entity) if fk.ref_table != table}
        for table, entity in tables.items()
    }


def _topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Cycles are broken at the first table revisited.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: List of table names to sort.

    Returns:
        Tables sorted so that parent tables come before child tables.
    """
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


# ------------------------------------------------------------------
# Diff
# ------------------------------------------------------------------


def diff_models(from_model: NormalizedModel, to_model: NormalizedModel) -> list[DiffStep]:
    """Compute the ordered steps that turn ``from_model`` into ``to_model``.

    Entities are matched by table name. Renames are not detected: a renamed
    field is an unrelated ``add_column`` + ``drop_column`` pair.

    Args:
        from_model: Current model.
        to_model: Target model.

    Returns:
        Ordered list of steps; empty when both models are equivalent.

    Example:
        >>> diff_models(NormalizedModel(), NormalizedModel())
        []
    """
    old_tables = from_model.by_table()
    new_tables = to_model.by_table()
    entity_of = {e.table: name for name, e in to_model.entities.items()}
    old_entity_of = {e.table: name for name, e in from_model.entities.items()}

    created: list[DiffStep] = []
    added_columns: list[DiffStep] = []
    added_indexes: list[DiffStep] = []
    added_fks: list[DiffStep] = []
    redefined: list[DiffStep] = []
    altered: list[DiffStep] = []
    dropped_fks: list[DiffStep] = []
    dropped_indexes: list[DiffStep] = []
    dropped_columns: list[DiffStep] = []
    dropped_tables: list[DiffStep] = []

    # New tables, parents first
    new_names = [t for t in new_tables if t not in old_tables]
    for table in _topological_sort(_table_dependencies(new_tables), new_names):
        entity = new_tables[table]
        name = entity_of[table]
        created.append(AddTable(table=table, entity=name))
        created.extend(
            AddColumn(table=table, entity=name, column=column)
            for column in entity_columns(entity)
        )
        created.extend(
            AddIndex(table=table, entity=name, index=index)
            for index in effective_indexes(entity)
        )
        added_fks.extend(
            AddForeignKey(table=table, entity=name, foreign_key=fk)
            for fk in foreign_keys(entity)
        )

    # Shared tables
    for table, new_entity in new_tables.items():
        old_entity = old_tables.get(table)
        if old_entity is None:
            continue
        name = entity_of[table]

        old_columns = {c.name: c for c in entity_columns(old_entity)}
        new_columns = {c.name: c for c in entity_columns(new_entity)}
        for column_name, column in new_columns.items():
            before = old_columns.get(column_name)
            if before is None:
                added_columns.append(AddColumn(table=table, entity=name, column=column))
            elif before != column:
                altered.append(AlterColumn(table=table, entity=name, before=before, after=column))
        for column_name, column in old_columns.items():
            if column_name not in new_columns:
                dropped_columns.append(DropColumn(table=table, entity=name, column=column))

        old_indexes = {i.name: i for i in effective_indexes(old_entity)}
        new_indexes = {i.name: i for i in effective_indexes(new_entity)}
        for index_name, index in new_indexes.items():
            before_index = old_indexes.get(index_name)
            if before_index is None:
                added_indexes.append(AddIndex(table=table, entity=name, index=index))
            elif before_index != index:
                redefined.append(DropIndex(table=table, entity=name, index=before_index))
                redefined.append(AddIndex(table=table, entity=name, index=index))
        for index_name, index in old_indexes.items():
            if index_name not in new_indexes:
                dropped_indexes.append(DropIndex(table=table, entity=name, index=index))

        old_fks = {fk.name: fk for fk in foreign_keys(old_entity)}
        new_fks = {fk.name: fk for fk in foreign_keys(new_entity)}
        for fk_name, fk in new_fks.items():
            before_fk = old_fks.get(fk_name)
            if before_fk is None:
                added_fks.append(AddForeignKey(table=table, entity=name, foreign_key=fk))
            elif before_fk != fk:
                redefined.append(DropForeignKey(table=table, entity=name, foreign_key=before_fk))
                redefined.append(AddForeignKey(table=table, entity=name, foreign_key=fk))
        for fk_name, fk in old_fks.items():
            if fk_name not in new_fks:
                dropped_fks.append(DropForeignKey(table=table, entity=name, foreign_key=fk))

    # Removed tables, children first
    gone = [t for t in old_tables if t not in new_tables]
    for table in reversed(_topological_sort(_table_dependencies(old_tables), gone)):
        dropped_tables.append(
            DropTable(
                table=table,
                entity=old_entity_of[table],
                columns=entity_columns(old_tables[table]),
            )
        )

    return (
        created
        + added_columns
        + added_indexes
        + added_fks
        + redefined
        + altered
        + dropped_fks
        + dropped_indexes
        + dropped_columns
        + dropped_tables
    )


# ------------------------------------------------------------------
# Live validation
# ------------------------------------------------------------------


def validate_schema(
    actual_columns: dict[str, set[str]],
    expected_columns: dict[str, set[str]],
) -> SchemaValidationResult:
    """Validate actual database schema against expected columns.

    Performs pure set operations to find:
    - Missing tables: Tables in *expected_columns* but not in *actual_columns*
    - Missing columns: Columns in *expected_columns* but not in the actual table
    - Extra tables: Tables in *actual_columns* but not in *expected_columns*
      (warning only -- does not affect ``valid`` status)

    Args:
        actual_columns: Dict mapping table name to set of column names,
            as returned by ``introspector.get_column_names()``.
        expected_columns: Dict mapping table name to set of expected column
            names, usually ``expected_columns(model)``.

    Returns:
        ``SchemaValidationResult`` with missing tables, missing columns and
        extra tables.

    Examples:
        >>> result = validate_schema(
        ...     {"todos": {"id"}},
        ...     {"todos": {"id", "title"}},
        ... )
        >>> result.valid
        False
        >>> result.missing_columns[0].column
        'title'
    """
    actual_tables: set[str] = set(actual_columns.keys())
    expected_tables: set[str] = set(expected_columns.keys())

    missing_tables: list[str] = sorted(expected_tables - actual_tables)
    extra_tables: list[str] = sorted(actual_tables - expected_tables)

    missing_columns: list[ColumnDiff] = []
    for table_name in sorted(expected_tables & actual_tables):
        missing_cols: set[str] = expected_columns[table_name] - actual_columns[table_name]
        for col_name in sorted(missing_cols):
            missing_columns.append(
                ColumnDiff(
                    table=table_name,
                    column=col_name,
                    message=f"Column '{col_name}' missing from table '{table_name}'",
                )
            )

    return SchemaValidationResult(
        valid=not missing_tables and not missing_columns,
        missing_tables=missing_tables,
        missing_columns=missing_columns,
        extra_tables=extra_tables,
    )


# ------------------------------------------------------------------
# Live drift
# ------------------------------------------------------------------


_LIVE_TYPES = {"integer": "int", "boolean": "bool"}


def _live_type(sql_type: str) -> str:
    """``VARCHAR(255)`` -> ``varchar``, matching the introspector's names."""
    base = sql_type.split("(", 1)[0].strip().lower()
    return _LIVE_TYPES.get(base, base)


def compare_live_schema(model: NormalizedModel, live: DatabaseSchema) -> list[ColumnDiff]:
    """Column types, nullability, indexes and foreign keys that drifted.

    Only tables present on both sides are compared; missing tables and
    columns are ``validate_schema``'s job.

    Usage:
        live = await introspector.introspect()
        for diff in compare_live_schema(model, live):
            print(diff.message)
    """
    drift: list[ColumnDiff] = []
    for entity in sorted(model.entities.values(), key=lambda e: e.table):
        table = live.tables.get(entity.table.lower())
        if table is None:
            continue

        for spec in entity_columns(entity):
            name = spec.name.lower()
            column = table.columns.get(name)
            if column is None:
                continue
            expected_type = _live_type(spec.sql_type)
            if column.data_type != expected_type:
                drift.append(ColumnDiff(
                    table=table.name,
                    column=name,
                    message=f"Column '{table.name}.{name}' is {column.data_type}, expected {expected_type}",
                ))
            if column.is_nullable != spec.nullable:
                wanted = "nullable" if spec.nullable else "NOT NULL"
                drift.append(ColumnDiff(
                    table=table.name,
                    column=name,
                    message=f"Column '{table.name}.{name}' should be {wanted}",
                ))

        live_indexes = {name.lower() for name in table.indexes}
        for index in effective_indexes(entity):
            if index.name.lower() not in live_indexes:
                drift.append(ColumnDiff(
                    table=table.name,
                    column=", ".join(c.lower() for c in index.columns),
                    message=f"Index '{index.name.lower()}' missing from table '{table.name}'",
                ))

        live_fks = {
            (tuple(c.columns), (c.references_table or "").lower())
            for c in table.constraints.values()
            if c.constraint_type == "FOREIGN KEY"
        }
        for fk in foreign_keys(entity):
            if ((fk.column.lower(),), fk.ref_table.lower()) not in live_fks:
                drift.append(ColumnDiff(
                    table=table.name,
                    column=fk.column.lower(),
                    message=f"Foreign key {table.name}.{fk.column.lower()} -> {fk.ref_table} missing",
                ))
    return drift
