"""Apply migrations to a database with drift, checksum and destructive guards.

Each migration runs inside one ledger transaction that holds the
environment's advisory lock: either every ``up`` statement and the ledger row
commit together, or nothing does.

Usage:
    from entity_migrations.migrations.applier import MigrationApplier

    applier = MigrationApplier(ledger, snapshots, environment="dev")
    result = await applier.apply(migration)
    print(result.format())
"""

import logging
from typing import Protocol

from entity_migrations.adapters.base import SQLExecutor
from entity_migrations.backup.models import Snapshot
from entity_migrations.errors import (
    ChecksumMismatchError,
    DestructiveChangeBlockedError,
    DriftMismatchError,
    MigrationError,
    MigrationInProgressError,
    TransactionFailureError,
    classify_error,
)
from entity_migrations.migrations.ledger import LedgerStore, LedgerTransaction
from entity_migrations.migrations.models import (
    ApplyResult,
    Migration,
    MigrationRecord,
    MigrationState,
    utc_now,
)
from entity_migrations.migrations.sql import compute_checksum, is_comment
from entity_migrations.schema.hasher import EMPTY_MODEL_HASH

logger = logging.getLogger(__name__)


class SnapshotLookup(Protocol):
    """The part of ``SnapshotManager`` the destructive guard needs."""

    async def latest_for(self, table: str, executor: SQLExecutor | None = None) -> Snapshot | None: ...


class _StatementFailed(Exception):
    """Raised inside the ledger transaction so it rolls back."""

    def __init__(self, statement: str, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.statement = statement
        self.cause = cause


def verify_checksum(migration: Migration) -> None:
    """Raise ``ChecksumMismatchError`` if the SQL no longer matches its checksum."""
    actual = compute_checksum(migration.up, migration.down)
    if actual != migration.checksum:
        raise ChecksumMismatchError(
            f"Migration {migration.name} checksum mismatch: "
            f"recorded {migration.checksum[:12]}, computed {actual[:12]}"
        )


class MigrationApplier:
    """Applies migrations against one environment's ledger.

    Args:
        ledger: Ledger store for the target environment.
        snapshots: Snapshot lookup used by the destructive guard.  When None,
            every destructive step on a populated table is blocked unless
            ``allow_destructive`` is set.
        environment: Environment name, used in log messages.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        snapshots: SnapshotLookup | None = None,
        environment: str = "default",
    ) -> None:
        self._ledger = ledger
        self._snapshots = snapshots
        self.environment = environment

    @staticmethod
    def _failed(migration: Migration, error: MigrationError) -> ApplyResult:
        logger.warning(f"{migration.name}: {error.message}")
        return ApplyResult(
            success=False,
            state=MigrationState.FAILED,
            name=migration.name,
            error_category=error.category,
            error=error.message,
            hint=error.hint,
        )

    async def _blocked_tables(self, migration: Migration, tx: LedgerTransaction) -> list[str]:
        """Populated tables touched destructively that have no snapshot."""
        blocked: list[str] = []
        tables = list(dict.fromkeys(step.table for step in migration.destructive_steps))
        for table in tables:
            rows = await tx.fetch(f"SELECT COUNT(*) AS count FROM {table}")
            count = int(rows[0]["count"]) if rows else 0
            if count == 0:
                continue
            snapshot = None
            if self._snapshots is not None:
                snapshot = await self._snapshots.latest_for(table, executor=tx)
            if snapshot is None:
                logger.debug(f"{table} has {count} rows and no snapshot")
                blocked.append(table)
        return blocked

    async def apply(
        self,
        migration: Migration,
        allow_destructive: bool = False,
        dry_run: bool = False,
        assume_latest: str | None = None,
    ) -> ApplyResult:
        """Apply one migration.

        Args:
            migration: Migration to apply.
            allow_destructive: Skip the snapshot requirement for destructive
                steps on populated tables.
            dry_run: Run every check but execute nothing.
            assume_latest: Treat the ledger as being at this hash.  Only
                honored with ``dry_run``, to chain dry runs.

        Returns:
            ``ApplyResult`` describing the outcome.  Drift, blocked
            destructive changes, a busy lock and failed statements are
            reported here rather than raised.

        Raises:
            ChecksumMismatchError: If the migration's SQL does not match its
                checksum, or an applied migration with the same name has a
                different checksum.
        """
        verify_checksum(migration)
        state = MigrationState.VALIDATING
        logger.debug(f"{migration.name}: {state.value} ({self.environment})")

        try:
            async with self._ledger.transaction() as tx:
                existing = await tx.get(migration.name)
                if existing is not None:
                    if existing.checksum != migration.checksum:
                        raise ChecksumMismatchError(
                            f"Migration {migration.name} was applied with checksum "
                            f"{existing.checksum[:12]}, file has {migration.checksum[:12]}"
                        )
                    return ApplyResult(
                        success=True, state=MigrationState.APPLIED, name=migration.name, noop=True
                    )

                latest = await tx.latest_hash() or EMPTY_MODEL_HASH
                if dry_run and assume_latest is not None:
                    latest = assume_latest
                if migration.from_model_hash != migration.to_model_hash and latest == migration.to_model_hash:
                    return ApplyResult(
                        success=True, state=MigrationState.APPLIED, name=migration.name, noop=True
                    )
                if latest != migration.from_model_hash:
                    return self._failed(
                        migration, DriftMismatchError(migration.from_model_hash, latest)
                    )

                if not allow_destructive and migration.destructive_steps:
                    try:
                        blocked = await self._blocked_tables(migration, tx)
                    except Exception as e:
                        raise _StatementFailed("destructive change check", e) from e
                    if blocked:
                        return self._failed(migration, DestructiveChangeBlockedError(blocked))

                statements = [s for s in migration.up if not is_comment(s)]
                if dry_run:
                    return ApplyResult(
                        success=True,
                        state=MigrationState.PENDING,
                        name=migration.name,
                        dry_run=True,
                        statements=statements,
                    )

                state = MigrationState.APPLYING
                logger.debug(f"{migration.name}: {state.value} {len(statements)} statements")
                for statement in statements:
                    try:
                        await tx.execute(statement)
                    except Exception as e:
                        raise _StatementFailed(statement, e) from e
                try:
                    await tx.record(
                        MigrationRecord(
                            name=migration.name,
                            type=migration.type,
                            from_model_hash=migration.from_model_hash,
                            to_model_hash=migration.to_model_hash,
                            checksum=migration.checksum,
                            description=migration.description,
                            applied_at=utc_now(),
                        )
                    )
                except Exception as e:
                    raise _StatementFailed("ledger insert", e) from e
        except MigrationInProgressError as e:
            return self._failed(migration, e)
        except _StatementFailed as failed:
            error = TransactionFailureError(
                f"{failed.statement.splitlines()[0][:80]}: {failed.cause}",
                hint=classify_error(failed.cause),
            )
            return self._failed(migration, error)

        logger.info(f"Applied {migration.name} ({self.environment})")
        return ApplyResult(
            success=True, state=MigrationState.APPLIED, name=migration.name, statements=statements
        )

    async def apply_pending(
        self,
        migrations: list[Migration],
        allow_destructive: bool = False,
        dry_run: bool = False,
    ) -> list[ApplyResult]:
        """Apply migrations in order, stopping at the first failure.

        Already-applied migrations come back as no-op results. A dry run
        chains each migration's target hash into the next check.
        """
        results: list[ApplyResult] = []
        assumed: str | None = None
        for migration in sorted(migrations, key=lambda m: m.sequence):
            result = await self.apply(
                migration,
                allow_destructive=allow_destructive,
                dry_run=dry_run,
                assume_latest=assumed,
            )
            results.append(result)
            if not result.success:
                break
            if dry_run and not result.noop:
                assumed = migration.to_model_hash
        return results
