"""entity-migrations: entity-model schema migrations for PostgreSQL.

Normalizes an entity model, hashes it, diffs two models into ordered steps,
renders the steps to SQL migrations and applies them with drift, checksum and
destructive-change guards. Also tracks plugin migrations, table snapshots and
a file trash.

Usage:
    from entity_migrations import normalize_model, diff_models, build_migration
    from entity_migrations import MigrationApplier, PostgresLedgerStore
    from entity_migrations import SnapshotManager, TrashManager
    from entity_migrations import PluginMigrationTracker
"""

__version__ = "0.1.0"

# Adapters
from entity_migrations.adapters.base import DatabaseClient
from entity_migrations.adapters.postgres import AsyncPostgresAdapter

# Config
from entity_migrations.config.loader import load_db_config, load_entities
from entity_migrations.config.models import DatabaseConfig, DatabaseProfile

# Errors
from entity_migrations.errors import ErrorCategory, MigrationError

# Factory
from entity_migrations.factory import (
    ProfileNotFoundError,
    connect_and_validate,
    get_adapter,
    resolve_url,
)

# Schema
from entity_migrations.schema.comparator import diff_models, validate_schema
from entity_migrations.schema.hasher import EMPTY_MODEL_HASH, compute_model_hash
from entity_migrations.schema.models import NormalizedModel
from entity_migrations.schema.normalizer import normalize_model

# Migrations
from entity_migrations.migrations.applier import MigrationApplier
from entity_migrations.migrations.ledger import PostgresLedgerStore
from entity_migrations.migrations.models import ApplyResult, Migration
from entity_migrations.migrations.sql import build_migration

# Backup
from entity_migrations.backup.snapshots import SnapshotManager
from entity_migrations.backup.trash import TrashManager

# Plugins
from entity_migrations.plugins.tracker import PluginMigrationTracker

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "load_entities",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "ErrorCategory",
    "MigrationError",
    # Factory
    "get_adapter",
    "connect_and_validate",
    "ProfileNotFoundError",
    "resolve_url",
    # Schema
    "normalize_model",
    "NormalizedModel",
    "compute_model_hash",
    "EMPTY_MODEL_HASH",
    "diff_models",
    "validate_schema",
    # Migrations
    "Migration",
    "ApplyResult",
    "build_migration",
    "MigrationApplier",
    "PostgresLedgerStore",
    # Backup
    "SnapshotManager",
    "TrashManager",
    # Plugins
    "PluginMigrationTracker",
]
