"""Pydantic models for db.toml configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres


class MigrationSettings(BaseModel):
    """The ``[migrations]`` table of db.toml."""

    dir: str = "migrations"
    trash_dir: str = ".trash"
    entities_file: str = "entities.toml"
    retention_days: int = Field(default=30, ge=1)
    strict_types: bool = False


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)
