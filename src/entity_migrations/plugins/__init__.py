"""Plugin migration tracking.

Usage:
    from entity_migrations.plugins import PluginManifest, PluginMigrationTracker
"""

from entity_migrations.plugins.models import (
    PluginManifest,
    PluginMigration,
    PluginMigrationDefinition,
    PluginMigrationPlan,
    PluginMigrationRecord,
)
from entity_migrations.plugins.tracker import PluginMigrationTracker

__all__ = [
    "PluginManifest",
    "PluginMigration",
    "PluginMigrationDefinition",
    "PluginMigrationPlan",
    "PluginMigrationRecord",
    "PluginMigrationTracker",
]
