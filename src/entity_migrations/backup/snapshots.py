"""Table snapshots taken before destructive migrations.

A snapshot is a plain table created with ``CREATE TABLE ... AS SELECT *``,
named ``<table>_snapshot_<epoch ms>`` unless a name is given. Its table
comment, ``snapshot of <table> created <iso time>``, records the source table
and creation time, so custom-named snapshots are listed too. Snapshots are
never deleted automatically.

Usage:
    from entity_migrations.backup.snapshots import SnapshotManager

    snapshots = SnapshotManager(adapter)
    snap = await snapshots.create("todos")
    ...
    await snapshots.restore(snap.name, "todos")
"""

import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

from entity_migrations.adapters.base import DatabaseClient, SQLExecutor
from entity_migrations.backup.models import Snapshot
from entity_migrations.errors import SnapshotNotFoundError

logger = logging.getLogger(__name__)

SNAPSHOT_INFIX = "_snapshot_"
COMMENT_PREFIX = "snapshot of "

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")
_SNAPSHOT_RE = re.compile(r"^(?P<table>\w+?)_snapshot_(?P<ms>\d+)$")
_COMMENT_RE = re.compile(r"^snapshot of (?P<table>\w+) created (?P<created>\S+)$")


def _identifier(name: str) -> str:
    """Validate a table name before it is interpolated into SQL."""
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot_origin(name: str, comment: str | None) -> tuple[str, datetime | None] | None:
    """(source table, creation time) of a snapshot table, or None if it isn't one."""
    if comment:
        match = _COMMENT_RE.match(comment.strip())
        if match is not None:
            try:
                created_at = datetime.fromisoformat(match.group("created"))
            except ValueError:
                created_at = None
            return match.group("table"), created_at
    match = _SNAPSHOT_RE.match(name)
    if match is None:
        return None
    return match.group("table"), datetime.fromtimestamp(int(match.group("ms")) / 1000, tz=timezone.utc)


class SnapshotManager:
    """Creates, lists, restores and deletes table snapshots.

    Args:
        client: Database client.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(self, client: DatabaseClient, clock: Callable[[], datetime] | None = None) -> None:
        self._client = client
        self._clock = clock or _utc_now

    async def create(self, table: str, name: str | None = None) -> Snapshot:
        """Copy ``table`` into a new snapshot table.

        Args:
            table: Source table.
            name: Snapshot table name.  Defaults to ``<table>_snapshot_<ms>``.

        Returns:
            The new ``Snapshot`` with its row count.
        """
        now = self._clock()
        snapshot_name = _identifier(name or f"{table}{SNAPSHOT_INFIX}{int(now.timestamp() * 1000)}")
        source = _identifier(table)

        async with self._client.transaction() as tx:
            await tx.execute(f"CREATE TABLE {snapshot_name} AS SELECT * FROM {source}")
            await tx.execute(
                f"COMMENT ON TABLE {snapshot_name} IS '{COMMENT_PREFIX}{source} created {now.isoformat()}'"
            )
            rows = await tx.fetch(f"SELECT COUNT(*) AS count FROM {snapshot_name}")

        row_count = int(rows[0]["count"]) if rows else 0
        logger.info(f"Created snapshot {snapshot_name} of {source} ({row_count} rows)")
        return Snapshot(name=snapshot_name, table=source, created_at=now, row_count=row_count)

    async def exists(self, snapshot: str, executor: SQLExecutor | None = None) -> bool:
        rows = await (executor or self._client).fetch(
            "SELECT 1 AS found FROM pg_class WHERE relname = :name AND relkind = 'r'",
            {"name": snapshot},
        )
        return bool(rows)

    async def restore(self, snapshot: str, target_table: str) -> int:
        """Replace ``target_table``'s rows with the snapshot's rows.

        Runs ``TRUNCATE`` and ``INSERT ... SELECT`` in one transaction.

        Returns:
            Number of rows restored.

        Raises:
            SnapshotNotFoundError: If the snapshot table does not exist.
        """
        snapshot = _identifier(snapshot)
        target = _identifier(target_table)
        if not await self.exists(snapshot):
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot}")

        async with self._client.transaction() as tx:
            await tx.execute(f"TRUNCATE {target}")
            await tx.execute(f"INSERT INTO {target} SELECT * FROM {snapshot}")
            rows = await tx.fetch(f"SELECT COUNT(*) AS count FROM {target}")

        restored = int(rows[0]["count"]) if rows else 0
        logger.info(f"Restored {restored} rows into {target} from {snapshot}")
        return restored

    async def delete(self, snapshot: str) -> None:
        """Drop a snapshot table.

        Raises:
            SnapshotNotFoundError: If the snapshot table does not exist.
        """
        snapshot = _identifier(snapshot)
        if not await self.exists(snapshot):
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot}")
        await self._client.execute(f"DROP TABLE {snapshot}")
        logger.info(f"Deleted snapshot {snapshot}")

    async def list(self, table: str | None = None, executor: SQLExecutor | None = None) -> list[Snapshot]:
        """Snapshots sorted by name, optionally only those of ``table``.

        A table is a snapshot when its comment reads ``snapshot of <table>
        created <iso time>`` (every ``create`` writes one, custom names
        included) or, lacking that, when its name is ``<table>_snapshot_<ms>``.
        """
        executor = executor or self._client
        rows = await executor.fetch(
            "SELECT c.relname AS name, obj_description(c.oid, 'pg_class') AS comment "
            "FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace "
            "WHERE c.relkind = 'r' AND n.nspname = 'public' "
            "AND (c.relname LIKE :pattern OR obj_description(c.oid, 'pg_class') LIKE :comment) "
            "ORDER BY c.relname",
            {"pattern": "%\\_snapshot\\_%", "comment": f"{COMMENT_PREFIX}%"},
        )
        snapshots: list[Snapshot] = []
        for row in rows:
            origin = _snapshot_origin(row["name"], row.get("comment"))
            if origin is None:
                continue
            source, created_at = origin
            if table is not None and source != table:
                continue
            count_rows = await executor.fetch(f"SELECT COUNT(*) AS count FROM {_identifier(row['name'])}")
            snapshots.append(
                Snapshot(
                    name=row["name"],
                    table=source,
                    created_at=created_at,
                    row_count=int(count_rows[0]["count"]) if count_rows else 0,
                )
            )
        return snapshots

    async def latest_for(self, table: str, executor: SQLExecutor | None = None) -> Snapshot | None:
        """Most recent snapshot of ``table``, or None."""
        snapshots = await self.list(table, executor=executor)
        if not snapshots:
            return None
        return max(snapshots, key=lambda s: s.created_at or datetime.min.replace(tzinfo=timezone.utc))
