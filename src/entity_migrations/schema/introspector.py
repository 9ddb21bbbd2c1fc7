"""PostgreSQL schema introspection via information_schema.

This module queries the live database to extract schema information:
- Tables, columns, data types, nullability, defaults
- Constraints (primary key, foreign key, unique, check)
- Indexes (name, columns, uniqueness, type)

Used by ``check --live`` to compare the database with the entity model.
Uses psycopg (v3) ``AsyncConnection`` for PostgreSQL connections.
"""

import psycopg
from psycopg import AsyncConnection

from entity_migrations.backup.snapshots import SNAPSHOT_INFIX
from entity_migrations.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    DatabaseSchema,
    IndexSchema,
    TableSchema,
)


class SchemaIntrospector:
    """Introspects PostgreSQL database schema.

    Uses information_schema and pg_catalog for schema extraction.
    Ledger and snapshot tables are skipped.

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            # Get full schema (tables, columns, constraints, indexes)
            schema = await introspector.introspect()

            # Or just get column names for validation
            columns = await introspector.get_column_names()
    """

    # Tables to exclude from introspection (system and ledger tables)
    EXCLUDED_TABLES = {
        "_yama_migrations",
        "_yama_plugin_migrations",
        "_yama_plugin_versions",
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(self, database_url: str):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL (libpq form, no
                ``+asyncpg`` driver suffix)
        """
        self._database_url = database_url
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Context manager entry - opens connection."""
        # Append connect_timeout if not already in URL
        url = self._database_url.replace("postgresql+asyncpg://", "postgresql://")
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = await psycopg.AsyncConnection.connect(url)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        return self._conn

    def _skip(self, table_name: str) -> bool:
        return table_name in self.EXCLUDED_TABLES or SNAPSHOT_INFIX in table_name

    async def _rows(self, query: str, params: tuple) -> list[tuple]:
        async with self._require_conn().cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    async def introspect(self, schema_name: str = "public") -> DatabaseSchema:
        """Introspect full database schema.

        Args:
            schema_name: PostgreSQL schema to introspect (default: public)

        Returns:
            DatabaseSchema with all tables, columns, constraints and indexes.
        """
        self._require_conn()
        db_schema = DatabaseSchema()

        for table_name in await self._get_tables(schema_name):
            if self._skip(table_name):
                continue
            db_schema.tables[table_name] = TableSchema(
                name=table_name,
                columns=await self._get_columns(schema_name, table_name),
                constraints=await self._get_constraints(schema_name, table_name),
                indexes=await self._get_indexes(schema_name, table_name),
            )

        return db_schema

    async def get_column_names(self, schema_name: str = "public") -> dict[str, set[str]]:
        """Get column names for all tables (simplified for comparator).

        Args:
            schema_name: PostgreSQL schema to query (default: public)

        Returns:
            Dict mapping table name to set of column names
        """
        self._require_conn()
        query = """
            SELECT table_name, column_name
            FROM information_schema.columns
            WHERE table_schema = %s
        """
        tables = {t for t in await self._get_tables(schema_name) if not self._skip(t)}
        result: dict[str, set[str]] = {table: set() for table in tables}
        for table_name, column_name in await self._rows(query, (schema_name,)):
            if table_name in result:
                result[table_name].add(column_name)
        return result

    async def _get_tables(self, schema_name: str) -> list[str]:
        """Get all table names in schema."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        return [row[0] for row in await self._rows(query, (schema_name,))]

    async def _get_columns(self, schema_name: str, table_name: str) -> dict[str, ColumnSchema]:
        """Get columns for a table."""
        query = """
            SELECT
                column_name,
                data_type,
                is_nullable,
                column_default
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
        """
        columns = {}
        for col_name, data_type, is_nullable, default in await self._rows(query, (schema_name, table_name)):
            columns[col_name] = ColumnSchema(
                name=col_name,
                data_type=self._normalize_data_type(data_type),
                is_nullable=(is_nullable == "YES"),
                default=default,
            )
        return columns

    def _normalize_data_type(self, data_type: str) -> str:
        """Normalize PostgreSQL data type names.

        Maps verbose information_schema types to standard names.
        """
        type_map = {
            "character varying": "varchar",
            "character": "char",
            "timestamp with time zone": "timestamptz",
            "timestamp without time zone": "timestamp",
            "integer": "int",
            "boolean": "bool",
        }
        return type_map.get(data_type.lower(), data_type.lower())

    async def _get_constraints(
        self, schema_name: str, table_name: str
    ) -> dict[str, ConstraintSchema]:
        """Get constraints for a table."""
        query = """
            SELECT
                tc.constraint_name,
                tc.constraint_type,
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column,
                rc.delete_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            LEFT JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.constraint_type = 'FOREIGN KEY'
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        constraints: dict[str, ConstraintSchema] = {}
        for name, ctype, col_name, ref_table, ref_col, delete_rule in await self._rows(
            query, (schema_name, table_name)
        ):
            if name not in constraints:
                constraints[name] = ConstraintSchema(
                    name=name,
                    constraint_type=ctype,
                    columns=[],
                    references_table=ref_table if ctype == "FOREIGN KEY" else None,
                    references_columns=[ref_col] if ref_col else None,
                    on_delete=delete_rule,
                )
            if col_name not in constraints[name].columns:
                constraints[name].columns.append(col_name)
        return constraints

    async def _get_indexes(self, schema_name: str, table_name: str) -> dict[str, IndexSchema]:
        """Get indexes for a table (excluding primary key)."""
        query = """
            SELECT
                i.relname AS index_name,
                array_agg(a.attname ORDER BY x.ordinality) AS columns,
                ix.indisunique AS is_unique,
                am.amname AS index_type
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_am am ON am.oid = i.relam
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
            WHERE n.nspname = %s
              AND t.relname = %s
              AND NOT ix.indisprimary
            GROUP BY i.relname, ix.indisunique, am.amname
            ORDER BY i.relname
        """
        indexes = {}
        for name, columns, is_unique, idx_type in await self._rows(query, (schema_name, table_name)):
            indexes[name] = IndexSchema(
                name=name,
                columns=list(columns),
                is_unique=is_unique,
                index_type=idx_type,
            )
        return indexes
