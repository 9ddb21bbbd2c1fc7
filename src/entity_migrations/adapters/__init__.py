"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL adapter.

Usage:
    from entity_migrations.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from entity_migrations.adapters.base import DatabaseClient, SQLExecutor
from entity_migrations.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "SQLExecutor",
    "AsyncPostgresAdapter",
]
