"""Database client protocol definitions.

Defines the ``SQLExecutor`` and ``DatabaseClient`` Protocols that adapters
implement. All methods are ``async def`` -- the library is async-first.

Usage:
    from entity_migrations.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.fetch("SELECT COUNT(*) AS count FROM todos")
        async with client.transaction() as tx:
            await tx.execute("ALTER TABLE todos ADD COLUMN notes TEXT")
            await tx.execute("INSERT INTO audit (event) VALUES (:event)", {"event": "notes"})
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class SQLExecutor(Protocol):
    """Anything that can run SQL: a client or an open transaction."""

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a query and return its rows.

        Args:
            sql: SQL text with ``:name`` placeholders.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.  Empty list if no rows.

        Example:
            rows = await client.fetch(
                "SELECT name FROM _yama_migrations WHERE name = :name",
                {"name": "0001_create_todos"},
            )
        """
        ...

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute a statement that returns no rows (DDL, INSERT, UPDATE...).

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.

        Example:
            await client.execute("ALTER TABLE todos ADD COLUMN notes TEXT")
        """
        ...


class DatabaseClient(SQLExecutor, Protocol):
    """Database client interface that all adapters must implement.

    ``fetch``/``execute`` on the client run in their own short transaction.
    ``transaction()`` yields an ``SQLExecutor`` whose statements commit
    together when the block exits normally and roll back together when it
    raises.
    """

    def transaction(self) -> AbstractAsyncContextManager[SQLExecutor]:
        """Open a transaction.

        Example:
            async with client.transaction() as tx:
                await tx.execute("TRUNCATE todos")
                await tx.execute("INSERT INTO todos SELECT * FROM todos_snapshot_1")
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
