"""Models for plugin-owned migrations.

A plugin manifest maps semver versions to migration definitions. The tracker
applies every version between the installed and the manifest version.

Usage:
    from entity_migrations.plugins.models import PluginManifest

    manifest = PluginManifest.model_validate({
        "name": "billing",
        "version": "1.1.0",
        "migrations": {
            "1.0.0": {"up": "CREATE TABLE invoices (id UUID PRIMARY KEY)", "down": "DROP TABLE invoices"},
            "1.1.0": {"up": "migrations/1.1.0.sql"},
        },
    })
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


PluginMigrationType = Literal["schema", "data", "custom"]


class PluginMigrationDefinition(BaseModel):
    """One version's migration: inline SQL or a ``.sql`` path."""

    type: PluginMigrationType = "schema"
    up: str
    down: str | None = None
    description: str | None = None


class PluginManifest(BaseModel):
    """Plugin name, current version, and its migrations keyed by version."""

    name: str
    version: str
    migrations: dict[str, PluginMigrationDefinition] = Field(default_factory=dict)


class PluginMigration(BaseModel):
    """A definition resolved against its version."""

    plugin_name: str
    version: str
    definition: PluginMigrationDefinition

    @property
    def migration_name(self) -> str:
        return f"migration_{self.version}"


class PluginMigrationRecord(BaseModel):
    """Row of ``_yama_plugin_migrations``."""

    plugin_name: str
    plugin_version: str
    migration_name: str
    migration_type: str = "schema"
    checksum: str
    applied_at: datetime | None = None


class PluginMigrationPlan(BaseModel):
    """What ``apply`` would do for a plugin."""

    plugin_name: str
    installed_version: str | None
    target_version: str
    migrations: list[PluginMigration] = Field(default_factory=list)

    @property
    def can_rollback(self) -> bool:
        """Every planned migration has a down script."""
        return all(m.definition.down for m in self.migrations)

    def format(self) -> str:
        """Multi-line plan for the CLI.

        Example:
            >>> PluginMigrationPlan(plugin_name="billing", installed_version="1.0.0",
            ...                     target_version="1.0.0").format()
            'billing: up to date at 1.0.0'
        """
        if not self.migrations:
            return f"{self.plugin_name}: up to date at {self.installed_version or 'nothing'}"
        lines = [
            f"{self.plugin_name}: {self.installed_version or 'not installed'} -> {self.target_version}"
        ]
        for migration in self.migrations:
            description = f" - {migration.definition.description}" if migration.definition.description else ""
            lines.append(f"  {migration.version} [{migration.definition.type}]{description}")
        lines.append(f"  Rollback available: {'yes' if self.can_rollback else 'no'}")
        return "\n".join(lines)
