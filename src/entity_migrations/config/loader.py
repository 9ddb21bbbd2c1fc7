"""Configuration loading: db.toml, the entities document, plugin manifests."""

import json
import tomllib
from pathlib import Path
from typing import Any

from entity_migrations.config.models import DatabaseConfig, DatabaseProfile, MigrationSettings
from entity_migrations.plugins.models import PluginManifest
from entity_migrations.schema.models import NormalizedModel
from entity_migrations.schema.normalizer import extract_entities, normalize_model


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ``db.toml`` in the current
            working directory)

    Returns:
        DatabaseConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with a [profiles.<name>] table for each database."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    return DatabaseConfig(
        profiles=profiles,
        migrations=MigrationSettings(**data.get("migrations", {})),
    )


def _read_document(path: Path) -> dict[str, Any]:
    """Parse a TOML or JSON file by extension."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if path.suffix == ".json":
        return json.loads(path.read_text())
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_entities(path: Path, strict: bool = False) -> NormalizedModel:
    """Load and normalize the entities document.

    The document holds an ``entities`` (or legacy ``schemas``) table.

    Args:
        path: ``.toml`` or ``.json`` file.
        strict: Reject unknown field types instead of defaulting to string.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    return normalize_model(extract_entities(_read_document(path)), strict=strict)


def load_plugin_manifest(path: Path) -> PluginManifest:
    """Load a plugin manifest (``name``, ``version``, ``migrations``) from TOML or JSON."""
    return PluginManifest.model_validate(_read_document(path))
