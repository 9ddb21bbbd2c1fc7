"""Migration ledger: the record of applied migrations per environment.

``LedgerStore`` is the injected seam the applier talks to.
``PostgresLedgerStore`` keeps the ledger in a ``_yama_migrations`` table and
serializes applies with a transaction-scoped advisory lock.

Usage:
    from entity_migrations.migrations.ledger import PostgresLedgerStore

    ledger = PostgresLedgerStore(adapter, environment="dev")
    await ledger.ensure_tables()
    async with ledger.transaction() as tx:
        print(await tx.latest_hash())
"""

import logging
import re
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from entity_migrations.adapters.base import DatabaseClient, SQLExecutor
from entity_migrations.errors import MigrationInProgressError
from entity_migrations.migrations.models import MigrationRecord

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TABLE = "_yama_migrations"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")


class LedgerTransaction(Protocol):
    """Ledger view inside an open, locked transaction."""

    async def latest_hash(self) -> str | None: ...

    async def get(self, name: str) -> MigrationRecord | None: ...

    async def record(self, record: MigrationRecord) -> None: ...

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]: ...

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None: ...


class LedgerStore(Protocol):
    """Where applied migrations are recorded."""

    environment: str

    async def ensure_tables(self) -> None: ...

    async def latest_hash(self) -> str | None: ...

    async def history(self) -> list[MigrationRecord]: ...

    async def get(self, name: str) -> MigrationRecord | None: ...

    def transaction(self) -> AbstractAsyncContextManager[LedgerTransaction]:
        """Open a transaction holding the environment's migration lock.

        Raises:
            MigrationInProgressError: If another process holds the lock.
        """
        ...


class _LedgerQueries:
    """SQL shared by the store (autocommit reads) and its transactions."""

    def __init__(self, executor: SQLExecutor, table: str) -> None:
        self._executor = executor
        self._table = table

    async def latest_hash(self) -> str | None:
        rows = await self._executor.fetch(
            f"SELECT to_model_hash FROM {self._table} ORDER BY id DESC LIMIT 1"
        )
        return rows[0]["to_model_hash"] if rows else None

    async def get(self, name: str) -> MigrationRecord | None:
        rows = await self._executor.fetch(
            f"SELECT name, type, from_model_hash, to_model_hash, checksum, description, applied_at "
            f"FROM {self._table} WHERE name = :name",
            {"name": name},
        )
        return MigrationRecord.model_validate(rows[0]) if rows else None

    async def history(self) -> list[MigrationRecord]:
        rows = await self._executor.fetch(
            f"SELECT name, type, from_model_hash, to_model_hash, checksum, description, applied_at "
            f"FROM {self._table} ORDER BY id"
        )
        return [MigrationRecord.model_validate(row) for row in rows]


class PostgresLedgerTransaction(_LedgerQueries):
    """``LedgerTransaction`` over an open database transaction."""

    async def record(self, record: MigrationRecord) -> None:
        # applied_at comes from the column default (database clock)
        await self._executor.execute(
            f"INSERT INTO {self._table} "
            "(name, type, from_model_hash, to_model_hash, checksum, description) "
            "VALUES (:name, :type, :from_model_hash, :to_model_hash, :checksum, :description)",
            record.model_dump(mode="json", exclude={"applied_at"}),
        )

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        return await self._executor.fetch(sql, params)

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        await self._executor.execute(sql, params)


class PostgresLedgerStore:
    """Ledger kept in a Postgres table, one store per environment.

    Args:
        client: Database client for the environment's database.
        environment: Environment name; scopes the advisory lock.
        table: Ledger table name.
    """

    def __init__(
        self,
        client: DatabaseClient,
        environment: str = "default",
        table: str = DEFAULT_LEDGER_TABLE,
    ) -> None:
        if not _IDENTIFIER_RE.match(table):
            raise ValueError(f"Invalid ledger table name: {table!r}")
        self._client = client
        self.environment = environment
        self.table = table
        self._queries = _LedgerQueries(client, table)

    @property
    def lock_key(self) -> str:
        return f"{self.table}:{self.environment}"

    async def ensure_tables(self) -> None:
        await self._client.execute(
            f"""CREATE TABLE IF NOT EXISTS {self.table} (
  id SERIAL PRIMARY KEY,
  name VARCHAR(255) UNIQUE NOT NULL,
  type VARCHAR(20) NOT NULL DEFAULT 'schema',
  from_model_hash VARCHAR(64),
  to_model_hash VARCHAR(64) NOT NULL,
  checksum VARCHAR(64) NOT NULL,
  description TEXT,
  applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)"""
        )

    async def latest_hash(self) -> str | None:
        return await self._queries.latest_hash()

    async def history(self) -> list[MigrationRecord]:
        return await self._queries.history()

    async def get(self, name: str) -> MigrationRecord | None:
        return await self._queries.get(name)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresLedgerTransaction]:
        async with self._client.transaction() as tx:
            rows = await tx.fetch(
                "SELECT pg_try_advisory_xact_lock(hashtext(:key)) AS locked",
                {"key": self.lock_key},
            )
            if not rows or not rows[0]["locked"]:
                raise MigrationInProgressError(
                    f"Another migration is running for environment '{self.environment}'"
                )
            logger.debug(f"Acquired migration lock {self.lock_key}")
            yield PostgresLedgerTransaction(tx, self.table)
