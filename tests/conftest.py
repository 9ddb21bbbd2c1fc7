"""Shared fixtures and in-memory fakes.

``FakeClient`` stands in for ``AsyncPostgresAdapter``: queries are answered
from substring-matched canned rows, statements are recorded, and
``transaction()`` commits or rolls back the statements run inside it.

``FakeLedgerStore`` is an in-memory ``LedgerStore`` over a ``FakeDatabase``
whose tables only track row counts.
"""

import re
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from entity_migrations.backup.models import Snapshot
from entity_migrations.errors import MigrationInProgressError
from entity_migrations.migrations.models import MigrationRecord
from entity_migrations.schema.normalizer import normalize_model


# ============================================================================
# SQL-level fake client
# ============================================================================


class FakeClient:
    """Records SQL; answers ``fetch`` from ``responses`` (first substring match wins)."""

    def __init__(self, responses: list[tuple[str, list[dict]]] | None = None) -> None:
        self.responses: list[tuple[str, list[dict]]] = list(responses or [])
        self.executed: list[str] = []
        self.fetched: list[str] = []
        self.params: list[dict | None] = []
        self.committed: list[str] = []
        self.rolled_back: list[str] = []
        self.fail_on: str | None = None
        self.closed = False

    def respond(self, needle: str, rows: list[dict]) -> None:
        self.responses.insert(0, (needle, rows))

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        self.fetched.append(sql)
        for needle, rows in self.responses:
            if needle in sql:
                return rows
        return []

    async def _run(self, sql: str, params: dict[str, Any] | None) -> None:
        self.executed.append(sql)
        self.params.append(params)
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError(f'relation "{self.fail_on}" does not exist')

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        await self._run(sql, params)
        self.committed.append(sql)

    @asynccontextmanager
    async def transaction(self):
        tx = _FakeTransaction(self)
        try:
            yield tx
        except BaseException:
            self.rolled_back.extend(tx.statements)
            raise
        self.committed.extend(tx.statements)

    async def close(self) -> None:
        self.closed = True


class _FakeTransaction:
    def __init__(self, client: FakeClient) -> None:
        self._client = client
        self.statements: list[str] = []

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        return await self._client.fetch(sql, params)

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        await self._client._run(sql, params)
        self.statements.append(sql)


# ============================================================================
# In-memory ledger
# ============================================================================


_COUNT_RE = re.compile(r"SELECT COUNT\(\*\) AS count FROM (\w+)")
_CREATE_RE = re.compile(r"CREATE TABLE (?:IF NOT EXISTS )?(\w+)")
_DROP_RE = re.compile(r"DROP TABLE (?:IF EXISTS )?(\w+)")


class FakeDatabase:
    """Tables as name -> row count, plus the ledger rows."""

    def __init__(self, tables: dict[str, int] | None = None) -> None:
        self.tables: dict[str, int] = dict(tables or {})
        self.records: list[MigrationRecord] = []
        self.executed: list[str] = []
        self.fail_on: str | None = None
        self.lock_busy = False

    def apply_statement(self, sql: str) -> None:
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError(f"syntax error at or near \"{self.fail_on}\"")
        if match := _CREATE_RE.match(sql):
            self.tables.setdefault(match.group(1), 0)
        elif match := _DROP_RE.match(sql):
            self.tables.pop(match.group(1), None)


class FakeLedgerTransaction:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self.statements: list[str] = []
        self.records: list[MigrationRecord] = []

    async def latest_hash(self) -> str | None:
        return self._db.records[-1].to_model_hash if self._db.records else None

    async def get(self, name: str) -> MigrationRecord | None:
        return next((r for r in self._db.records if r.name == name), None)

    async def record(self, record: MigrationRecord) -> None:
        self.records.append(record)

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        if match := _COUNT_RE.match(sql):
            table = match.group(1)
            if table not in self._db.tables:
                raise RuntimeError(f'relation "{table}" does not exist')
            return [{"count": self._db.tables[table]}]
        return []

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        self._db.apply_statement(sql)
        self.statements.append(sql)


class FakeLedgerStore:
    """``LedgerStore`` whose transaction commits statements and records together."""

    def __init__(self, db: FakeDatabase, environment: str = "test") -> None:
        self.db = db
        self.environment = environment
        self.transactions = 0
        self.rollbacks = 0

    async def ensure_tables(self) -> None:
        return None

    async def latest_hash(self) -> str | None:
        return self.db.records[-1].to_model_hash if self.db.records else None

    async def history(self) -> list[MigrationRecord]:
        return list(self.db.records)

    async def get(self, name: str) -> MigrationRecord | None:
        return next((r for r in self.db.records if r.name == name), None)

    @asynccontextmanager
    async def transaction(self):
        if self.db.lock_busy:
            raise MigrationInProgressError(f"Another migration is running for environment '{self.environment}'")
        self.transactions += 1
        snapshot = dict(self.db.tables)
        tx = FakeLedgerTransaction(self.db)
        try:
            yield tx
        except BaseException:
            self.db.tables = snapshot
            self.rollbacks += 1
            raise
        self.db.executed.extend(tx.statements)
        self.db.records.extend(tx.records)


class FakeSnapshots:
    """``SnapshotLookup`` over a table -> snapshot map."""

    def __init__(self) -> None:
        self.by_table: dict[str, Snapshot] = {}

    def add(self, table: str, rows: int = 0) -> Snapshot:
        snapshot = Snapshot(
            name=f"{table}_snapshot_1700000000000",
            table=table,
            created_at=datetime(2023, 11, 14, tzinfo=timezone.utc),
            row_count=rows,
        )
        self.by_table[table] = snapshot
        return snapshot

    async def latest_for(self, table: str, executor=None) -> Snapshot | None:
        return self.by_table.get(table)


class FakeClock:
    """Settable clock for trash and snapshot tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


# ============================================================================
# Fixtures
# ============================================================================


TODO_ENTITIES: dict[str, Any] = {
    "Todo": {
        "table": "todos",
        "fields": {
            "id": "uuid! primary generated",
            "title": "string!",
            "completed": "boolean! = false",
        },
    },
}


@pytest.fixture
def todo_model():
    """The single-entity Todo model."""
    return normalize_model(TODO_ENTITIES)


@pytest.fixture
def blog_entities() -> dict[str, Any]:
    """User and Post with an inline belongsTo."""
    return {
        "User": {
            "table": "users",
            "fields": {
                "id": "uuid! primary generated",
                "email": "string! unique",
                "name": "string?",
            },
        },
        "Post": {
            "table": "posts",
            "fields": {
                "id": "uuid! primary generated",
                "title": "string! length:120",
                "status": "enum[draft, published]! = draft",
                "author": "User! cascade",
            },
            "indexes": [{"fields": ["status", "title"]}],
        },
    }


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))
