"""Plugin migration tracking.

Plugins ship their own migrations keyed by semver version. The tracker
records applied versions in ``_yama_plugin_migrations`` and the installed
version per plugin in ``_yama_plugin_versions``.

Usage:
    from entity_migrations.plugins.tracker import PluginMigrationTracker

    tracker = PluginMigrationTracker(adapter)
    await tracker.ensure_tables()
    print((await tracker.plan(manifest)).format())
    applied = await tracker.apply(manifest, plugin_dir=Path("plugins/billing"))
"""

import hashlib
import logging
from pathlib import Path

import semver

from entity_migrations.adapters.base import DatabaseClient
from entity_migrations.errors import InvalidSemverError, PluginMigrationError
from entity_migrations.migrations.sql import is_comment, split_statements
from entity_migrations.plugins.models import (
    PluginManifest,
    PluginMigration,
    PluginMigrationPlan,
    PluginMigrationRecord,
)

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "_yama_plugin_migrations"
VERSIONS_TABLE = "_yama_plugin_versions"


def plugin_checksum(sql: str) -> str:
    """First 16 hex characters of the script's SHA-256."""
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()[:16]


def _parse_version(value: str | None, what: str) -> semver.Version | None:
    """Parse a semver string; invalid values are logged as ``InvalidSemverError`` and yield None."""
    if value is None:
        return None
    if not semver.Version.is_valid(value):
        logger.warning(InvalidSemverError(f"Ignoring invalid semver {what}: {value!r}").format())
        return None
    return semver.Version.parse(value)


def load_script(script: str, plugin_dir: Path | None = None) -> str:
    """Inline SQL as-is, or the contents of a ``.sql`` file.

    A script that is a single token ending in ``.sql`` is a path, resolved
    against ``plugin_dir`` when relative.

    Raises:
        PluginMigrationError: If the referenced file does not exist.
    """
    candidate = script.strip()
    if not candidate.endswith(".sql") or any(ch.isspace() for ch in candidate):
        return script
    path = Path(candidate)
    if not path.is_absolute() and plugin_dir is not None:
        path = plugin_dir / path
    if not path.exists():
        raise PluginMigrationError(f"Plugin migration script not found: {path}")
    return path.read_text()


class PluginMigrationTracker:
    """Applies and rolls back plugin migrations.

    Args:
        client: Database client.
    """

    def __init__(self, client: DatabaseClient) -> None:
        self._client = client

    async def ensure_tables(self) -> None:
        await self._client.execute(
            f"""CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
  id SERIAL PRIMARY KEY,
  plugin_name VARCHAR(255) NOT NULL,
  plugin_version VARCHAR(64) NOT NULL,
  migration_name VARCHAR(255) NOT NULL,
  migration_type VARCHAR(20) NOT NULL DEFAULT 'schema',
  checksum VARCHAR(16) NOT NULL,
  applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  UNIQUE (plugin_name, plugin_version)
)"""
        )
        await self._client.execute(
            f"""CREATE TABLE IF NOT EXISTS {VERSIONS_TABLE} (
  plugin_name VARCHAR(255) PRIMARY KEY,
  installed_version VARCHAR(64) NOT NULL,
  previous_version VARCHAR(64),
  installed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)"""
        )

    async def installed_version(self, plugin: str) -> str | None:
        rows = await self._client.fetch(
            f"SELECT installed_version FROM {VERSIONS_TABLE} WHERE plugin_name = :plugin",
            {"plugin": plugin},
        )
        return rows[0]["installed_version"] if rows else None

    async def history(self, plugin: str) -> list[PluginMigrationRecord]:
        """Applied migrations for ``plugin``, oldest first."""
        rows = await self._client.fetch(
            f"SELECT plugin_name, plugin_version, migration_name, migration_type, checksum, applied_at "
            f"FROM {MIGRATIONS_TABLE} WHERE plugin_name = :plugin ORDER BY id",
            {"plugin": plugin},
        )
        return [PluginMigrationRecord.model_validate(row) for row in rows]

    @staticmethod
    def pending(
        manifest: PluginManifest,
        installed_version: str | None,
        current_version: str | None = None,
    ) -> list[PluginMigration]:
        """Migrations with ``installed < version <= current``, ascending.

        Args:
            manifest: Plugin manifest.
            installed_version: Installed version; None (or invalid semver)
                means a first install, which takes every version up to
                ``current``.
            current_version: Target version; defaults to ``manifest.version``.

        Example:
            >>> manifest = PluginManifest(name="p", version="1.2.0", migrations={
            ...     "1.0.0": {"up": "SELECT 1"}, "1.1.0": {"up": "SELECT 2"}, "1.2.0": {"up": "SELECT 3"}})
            >>> [m.version for m in PluginMigrationTracker.pending(manifest, "1.0.0")]
            ['1.1.0', '1.2.0']
        """
        current = _parse_version(current_version or manifest.version, f"version of {manifest.name}")
        if current is None:
            return []
        installed = _parse_version(installed_version, f"installed version of {manifest.name}")

        selected: list[tuple[semver.Version, PluginMigration]] = []
        for key, definition in manifest.migrations.items():
            version = _parse_version(key, f"migration key of {manifest.name}")
            if version is None:
                continue
            if version > current:
                continue
            if installed is not None and version <= installed:
                continue
            selected.append(
                (version, PluginMigration(plugin_name=manifest.name, version=key, definition=definition))
            )
        return [migration for _, migration in sorted(selected, key=lambda pair: pair[0])]

    async def plan(self, manifest: PluginManifest, installed_version: str | None = None) -> PluginMigrationPlan:
        """Plan for ``manifest``; reads the installed version when not given."""
        if installed_version is None:
            installed_version = await self.installed_version(manifest.name)
        return PluginMigrationPlan(
            plugin_name=manifest.name,
            installed_version=installed_version,
            target_version=manifest.version,
            migrations=self.pending(manifest, installed_version),
        )

    async def apply(self, manifest: PluginManifest, plugin_dir: Path | None = None) -> list[str]:
        """Apply pending migrations, each in its own transaction.

        Returns:
            Versions applied, in order.

        Raises:
            PluginMigrationError: If a script is missing or a statement fails.
                Versions applied before the failure stay applied.
        """
        installed = await self.installed_version(manifest.name)
        applied: list[str] = []
        for migration in self.pending(manifest, installed):
            sql = load_script(migration.definition.up, plugin_dir)
            statements = [s for s in split_statements(sql) if not is_comment(s)]
            try:
                async with self._client.transaction() as tx:
                    for statement in statements:
                        await tx.execute(statement)
                    await tx.execute(
                        f"INSERT INTO {MIGRATIONS_TABLE} "
                        "(plugin_name, plugin_version, migration_name, migration_type, checksum) "
                        "VALUES (:plugin_name, :plugin_version, :migration_name, :migration_type, :checksum)",
                        {
                            "plugin_name": manifest.name,
                            "plugin_version": migration.version,
                            "migration_name": migration.migration_name,
                            "migration_type": migration.definition.type,
                            "checksum": plugin_checksum(sql),
                        },
                    )
                    await tx.execute(
                        f"INSERT INTO {VERSIONS_TABLE} "
                        "(plugin_name, installed_version, previous_version) "
                        "VALUES (:plugin_name, :version, :previous) "
                        "ON CONFLICT (plugin_name) DO UPDATE SET "
                        "installed_version = EXCLUDED.installed_version, "
                        "previous_version = EXCLUDED.previous_version, updated_at = NOW()",
                        {"plugin_name": manifest.name, "version": migration.version, "previous": installed},
                    )
            except Exception as e:
                raise PluginMigrationError(
                    f"{manifest.name} {migration.version} failed: {e}"
                ) from e
            logger.info(f"Applied {manifest.name} migration {migration.version}")
            installed = migration.version
            applied.append(migration.version)
        return applied

    async def rollback(
        self,
        manifest: PluginManifest,
        to_version: str,
        plugin_dir: Path | None = None,
    ) -> list[str]:
        """Roll back applied versions newer than ``to_version``, newest first.

        Every version to roll back must have a ``down`` script; this is
        checked before anything runs.

        Returns:
            Versions rolled back, in order.

        Raises:
            PluginMigrationError: If a down script is missing or a statement
                fails.
        """
        target = _parse_version(to_version, f"rollback target of {manifest.name}")
        if target is None:
            return []

        newer: list[tuple[semver.Version, str]] = []
        for record in await self.history(manifest.name):
            version = _parse_version(record.plugin_version, f"recorded version of {manifest.name}")
            if version is not None and version > target:
                newer.append((version, record.plugin_version))
        newer.sort(key=lambda pair: pair[0], reverse=True)
        versions = [key for _, key in newer]

        missing = [
            v for v in versions
            if v not in manifest.migrations or not manifest.migrations[v].down
        ]
        if missing:
            raise PluginMigrationError(
                f"Cannot roll back {manifest.name}: no down script for {', '.join(missing)}",
                hint="Add down scripts to the manifest or restore from a snapshot.",
            )

        rolled_back: list[str] = []
        for index, version in enumerate(versions):
            sql = load_script(manifest.migrations[version].down or "", plugin_dir)
            statements = [s for s in split_statements(sql) if not is_comment(s)]
            now_installed = versions[index + 1] if index + 1 < len(versions) else to_version
            try:
                async with self._client.transaction() as tx:
                    for statement in statements:
                        await tx.execute(statement)
                    await tx.execute(
                        f"DELETE FROM {MIGRATIONS_TABLE} "
                        "WHERE plugin_name = :plugin_name AND plugin_version = :version",
                        {"plugin_name": manifest.name, "version": version},
                    )
                    await tx.execute(
                        f"UPDATE {VERSIONS_TABLE} SET installed_version = :installed, "
                        "previous_version = :previous, updated_at = NOW() "
                        "WHERE plugin_name = :plugin_name",
                        {"plugin_name": manifest.name, "installed": now_installed, "previous": version},
                    )
            except Exception as e:
                raise PluginMigrationError(
                    f"{manifest.name} rollback of {version} failed: {e}"
                ) from e
            logger.info(f"Rolled back {manifest.name} migration {version}")
            rolled_back.append(version)
        return rolled_back
