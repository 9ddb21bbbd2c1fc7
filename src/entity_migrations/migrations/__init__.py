"""Migration steps, SQL rendering, files, ledger and applier.

Usage:
    from entity_migrations.migrations import build_migration, MigrationApplier
"""

from entity_migrations.migrations.applier import MigrationApplier
from entity_migrations.migrations.files import MigrationRepository
from entity_migrations.migrations.ledger import LedgerStore, PostgresLedgerStore
from entity_migrations.migrations.models import ApplyResult, Migration, MigrationRecord, MigrationState
from entity_migrations.migrations.sql import build_custom_migration, build_migration, render_steps
from entity_migrations.migrations.steps import DiffStep, describe_steps, summarize_steps

__all__ = [
    "DiffStep",
    "summarize_steps",
    "describe_steps",
    "render_steps",
    "build_migration",
    "build_custom_migration",
    "Migration",
    "MigrationRecord",
    "MigrationState",
    "ApplyResult",
    "MigrationRepository",
    "LedgerStore",
    "PostgresLedgerStore",
    "MigrationApplier",
]
