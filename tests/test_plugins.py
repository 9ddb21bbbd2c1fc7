"""Tests for plugin migration tracking."""

import logging
from pathlib import Path

import pytest

from entity_migrations.errors import PluginMigrationError
from entity_migrations.plugins.models import PluginManifest, PluginMigrationPlan
from entity_migrations.plugins.tracker import (
    MIGRATIONS_TABLE,
    VERSIONS_TABLE,
    PluginMigrationTracker,
    load_script,
    plugin_checksum,
)

from conftest import FakeClient


def _manifest(version: str = "1.2.0", **migrations: dict) -> PluginManifest:
    if not migrations:
        migrations = {
            "1.0.0": {"up": "CREATE TABLE invoices (id UUID PRIMARY KEY)", "down": "DROP TABLE invoices"},
            "1.1.0": {"up": "ALTER TABLE invoices ADD COLUMN total INTEGER",
                      "down": "ALTER TABLE invoices DROP COLUMN total", "description": "totals"},
            "1.2.0": {"type": "data", "up": "UPDATE invoices SET total = 0", "down": "SELECT 1"},
        }
    return PluginManifest(name="billing", version=version, migrations=migrations)


def _history(*versions: str) -> list[dict]:
    return [
        {
            "plugin_name": "billing",
            "plugin_version": version,
            "migration_name": f"migration_{version}",
            "migration_type": "schema",
            "checksum": "0" * 16,
            "applied_at": None,
        }
        for version in versions
    ]


# ============================================================================
# pending
# ============================================================================


class TestPending:
    """Versions strictly above installed, up to the manifest version."""

    def test_first_install(self) -> None:
        pending = PluginMigrationTracker.pending(_manifest(), None)
        assert [m.version for m in pending] == ["1.0.0", "1.1.0", "1.2.0"]

    def test_upgrade(self) -> None:
        pending = PluginMigrationTracker.pending(_manifest(), "1.0.0")
        assert [m.version for m in pending] == ["1.1.0", "1.2.0"]
        assert pending[0].migration_name == "migration_1.1.0"
        assert pending[0].plugin_name == "billing"

    def test_up_to_date(self) -> None:
        assert PluginMigrationTracker.pending(_manifest(), "1.2.0") == []

    def test_capped_at_current_version(self) -> None:
        pending = PluginMigrationTracker.pending(_manifest(version="1.1.0"), "1.0.0")
        assert [m.version for m in pending] == ["1.1.0"]

    def test_semver_ordering(self) -> None:
        manifest = PluginManifest(
            name="p",
            version="1.10.0",
            migrations={"1.10.0": {"up": "SELECT 10"}, "1.9.0": {"up": "SELECT 9"}, "1.2.0": {"up": "SELECT 2"}},
        )
        assert [m.version for m in PluginMigrationTracker.pending(manifest, None)] == ["1.2.0", "1.9.0", "1.10.0"]

    def test_invalid_keys_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        manifest = PluginManifest(
            name="p",
            version="1.0.0",
            migrations={"latest": {"up": "SELECT 0"}, "1.0.0": {"up": "SELECT 1"}},
        )
        with caplog.at_level(logging.WARNING):
            pending = PluginMigrationTracker.pending(manifest, None)
        assert [m.version for m in pending] == ["1.0.0"]
        assert "invalid semver" in caplog.text
        assert "'latest'" in caplog.text

    def test_invalid_installed_version_is_first_install(self) -> None:
        pending = PluginMigrationTracker.pending(_manifest(), "v1")
        assert len(pending) == 3

    def test_invalid_manifest_version(self) -> None:
        assert PluginMigrationTracker.pending(_manifest(version="next"), None) == []


class TestPlan:
    @pytest.mark.asyncio
    async def test_plan_reads_installed_version(self, fake_client: FakeClient) -> None:
        fake_client.respond("SELECT installed_version", [{"installed_version": "1.0.0"}])
        plan = await PluginMigrationTracker(fake_client).plan(_manifest())

        assert plan.installed_version == "1.0.0"
        assert [m.version for m in plan.migrations] == ["1.1.0", "1.2.0"]
        assert plan.can_rollback is True
        assert plan.format() == (
            "billing: 1.0.0 -> 1.2.0\n"
            "  1.1.0 [schema] - totals\n"
            "  1.2.0 [data]\n"
            "  Rollback available: yes"
        )

    def test_up_to_date_format(self) -> None:
        plan = PluginMigrationPlan(plugin_name="billing", installed_version=None, target_version="1.0.0")
        assert plan.format() == "billing: up to date at nothing"

    def test_cannot_rollback_without_down(self) -> None:
        manifest = _manifest(version="1.0.0", **{"1.0.0": {"up": "SELECT 1"}})
        plan = PluginMigrationPlan(
            plugin_name="billing",
            installed_version=None,
            target_version="1.0.0",
            migrations=PluginMigrationTracker.pending(manifest, None),
        )
        assert plan.can_rollback is False
        assert "Rollback available: no" in plan.format()


# ============================================================================
# apply / rollback
# ============================================================================


class TestApply:
    """Each version commits with its ledger rows."""

    @pytest.mark.asyncio
    async def test_ensure_tables(self, fake_client: FakeClient) -> None:
        await PluginMigrationTracker(fake_client).ensure_tables()
        assert fake_client.executed[0].startswith(f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (")
        assert "UNIQUE (plugin_name, plugin_version)" in fake_client.executed[0]
        assert fake_client.executed[1].startswith(f"CREATE TABLE IF NOT EXISTS {VERSIONS_TABLE} (")

    @pytest.mark.asyncio
    async def test_apply_pending(self, fake_client: FakeClient) -> None:
        fake_client.respond("SELECT installed_version", [{"installed_version": "1.0.0"}])

        applied = await PluginMigrationTracker(fake_client).apply(_manifest())

        assert applied == ["1.1.0", "1.2.0"]
        statements = fake_client.committed
        assert statements[0] == "ALTER TABLE invoices ADD COLUMN total INTEGER"
        assert statements[1].startswith(f"INSERT INTO {MIGRATIONS_TABLE} ")
        assert statements[2].startswith(f"INSERT INTO {VERSIONS_TABLE} ")
        assert statements[3] == "UPDATE invoices SET total = 0"

        inserts = [p for sql, p in zip(fake_client.executed, fake_client.params) if sql.startswith(f"INSERT INTO {MIGRATIONS_TABLE}")]
        assert [p["plugin_version"] for p in inserts] == ["1.1.0", "1.2.0"]
        assert inserts[0]["checksum"] == plugin_checksum("ALTER TABLE invoices ADD COLUMN total INTEGER")
        assert inserts[1]["migration_type"] == "data"

        upserts = [p for sql, p in zip(fake_client.executed, fake_client.params) if sql.startswith(f"INSERT INTO {VERSIONS_TABLE}")]
        assert [(p["version"], p["previous"]) for p in upserts] == [("1.1.0", "1.0.0"), ("1.2.0", "1.1.0")]

    @pytest.mark.asyncio
    async def test_up_to_date(self, fake_client: FakeClient) -> None:
        fake_client.respond("SELECT installed_version", [{"installed_version": "1.2.0"}])
        assert await PluginMigrationTracker(fake_client).apply(_manifest()) == []
        assert fake_client.executed == []

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_versions(self, fake_client: FakeClient) -> None:
        fake_client.fail_on = "UPDATE invoices"

        with pytest.raises(PluginMigrationError, match="1.2.0"):
            await PluginMigrationTracker(fake_client).apply(_manifest())

        assert "UPDATE invoices SET total = 0" in fake_client.executed
        assert "UPDATE invoices SET total = 0" not in fake_client.committed
        assert "DROP TABLE invoices" not in fake_client.executed
        assert fake_client.committed[0] == "CREATE TABLE invoices (id UUID PRIMARY KEY)"

    @pytest.mark.asyncio
    async def test_script_from_file(self, fake_client: FakeClient, tmp_path: Path) -> None:
        (tmp_path / "sql").mkdir()
        (tmp_path / "sql" / "1.0.0.sql").write_text("CREATE TABLE a (id INT);\n-- seed\nINSERT INTO a VALUES (1);\n")
        manifest = _manifest(version="1.0.0", **{"1.0.0": {"up": "sql/1.0.0.sql"}})

        await PluginMigrationTracker(fake_client).apply(manifest, plugin_dir=tmp_path)

        assert fake_client.committed[:2] == ["CREATE TABLE a (id INT)", "INSERT INTO a VALUES (1)"]


class TestRollback:
    """Newest first, down to but not including the target."""

    @pytest.mark.asyncio
    async def test_rollback(self, fake_client: FakeClient) -> None:
        fake_client.respond("ORDER BY id", _history("1.0.0", "1.1.0", "1.2.0"))

        rolled_back = await PluginMigrationTracker(fake_client).rollback(_manifest(), "1.0.0")

        assert rolled_back == ["1.2.0", "1.1.0"]
        assert fake_client.committed[0] == "SELECT 1"
        assert "ALTER TABLE invoices DROP COLUMN total" in fake_client.committed
        assert "DROP TABLE invoices" not in fake_client.executed
        updates = [p for sql, p in zip(fake_client.executed, fake_client.params) if sql.startswith(f"UPDATE {VERSIONS_TABLE}")]
        assert [(p["installed"], p["previous"]) for p in updates] == [("1.1.0", "1.2.0"), ("1.0.0", "1.1.0")]

    @pytest.mark.asyncio
    async def test_missing_down_aborts_before_running(self, fake_client: FakeClient) -> None:
        manifest = _manifest(**{"1.0.0": {"up": "SELECT 1", "down": "SELECT 2"}, "1.1.0": {"up": "SELECT 3"}},
                             version="1.1.0")
        fake_client.respond("ORDER BY id", _history("1.0.0", "1.1.0"))

        with pytest.raises(PluginMigrationError, match="no down script for 1.1.0"):
            await PluginMigrationTracker(fake_client).rollback(manifest, "0.0.0")
        assert fake_client.executed == []

    @pytest.mark.asyncio
    async def test_invalid_target(self, fake_client: FakeClient) -> None:
        assert await PluginMigrationTracker(fake_client).rollback(_manifest(), "previous") == []
        assert fake_client.fetched == []

    @pytest.mark.asyncio
    async def test_nothing_newer(self, fake_client: FakeClient) -> None:
        fake_client.respond("ORDER BY id", _history("1.0.0"))
        assert await PluginMigrationTracker(fake_client).rollback(_manifest(), "1.0.0") == []


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    def test_checksum_length(self) -> None:
        assert len(plugin_checksum("SELECT 1")) == 16
        assert plugin_checksum("SELECT 1") != plugin_checksum("SELECT 2")

    def test_inline_script(self) -> None:
        assert load_script("SELECT 1; SELECT 2") == "SELECT 1; SELECT 2"

    def test_missing_script_file(self, tmp_path: Path) -> None:
        with pytest.raises(PluginMigrationError, match="not found"):
            load_script("missing.sql", tmp_path)
