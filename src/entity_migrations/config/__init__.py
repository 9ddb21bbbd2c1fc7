"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from entity_migrations.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from entity_migrations.config.loader import load_db_config, load_entities, load_plugin_manifest
from entity_migrations.config.models import DatabaseConfig, DatabaseProfile, MigrationSettings

__all__ = [
    "load_db_config",
    "load_entities",
    "load_plugin_manifest",
    "DatabaseConfig",
    "DatabaseProfile",
    "MigrationSettings",
]
