"""Database client factory.

Resolves the active profile from db.toml and builds the async adapter.

Profile selection order:
1. ``{env_prefix}DB_PROFILE`` env var (for initial connect or CI/CD)
2. ``.db-profile`` lock file (validated profile from previous connect)
3. ``ProfileNotFoundError``

Usage:
    from entity_migrations.factory import connect_and_validate, get_adapter

    result = await connect_and_validate("dev", expected_columns=expected_columns(model))
    adapter = await get_adapter(env_prefix="APP_")
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from entity_migrations.adapters.postgres import AsyncPostgresAdapter
from entity_migrations.config.loader import load_db_config
from entity_migrations.config.models import DatabaseProfile
from entity_migrations.schema.comparator import validate_schema
from entity_migrations.schema.introspector import SchemaIntrospector
from entity_migrations.schema.models import ConnectionResult, DatabaseSchema

logger = logging.getLogger(__name__)

# Profile lock file path (relative to the working directory)
_PROFILE_LOCK_FILE = Path(".db-profile")


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful connection check.

    Args:
        profile_name: Name of validated profile
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Args:
        env_prefix: Prefix for the env var, e.g. ``"APP_"`` reads
            ``APP_DB_PROFILE``.

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_var}=<name> entity-migrations check --live"
    )


def get_active_profile(
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If no profile configured
        KeyError: If profile not found in db.toml
    """
    profile_name = get_active_profile_name(env_prefix)
    config = load_db_config(config_path)

    if profile_name not in config.profiles:
        raise KeyError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Adapter Factory
# ============================================================================


def _profile_url(
    profile_name: str | None,
    env_prefix: str,
    config_path: Path | None,
) -> tuple[str, str]:
    """(profile name, resolved URL) for a named or the active profile."""
    if profile_name is None:
        profile_name, profile = get_active_profile(env_prefix, config_path)
    else:
        config = load_db_config(config_path)
        if profile_name not in config.profiles:
            raise KeyError(
                f"Profile '{profile_name}' not found in db.toml.\n"
                f"Available profiles: {', '.join(config.profiles.keys())}"
            )
        profile = config.profiles[profile_name]
    return profile_name, resolve_url(profile)


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> AsyncPostgresAdapter:
    """Build an adapter for a profile (the active one when not given).

    Raises:
        ProfileNotFoundError: If no profile is configured
        KeyError: If the profile is not in db.toml
    """
    profile_name, url = _profile_url(profile_name, env_prefix, config_path)
    logger.debug(f"Using database profile {profile_name}")
    return AsyncPostgresAdapter(database_url=url)


async def introspect_live(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> DatabaseSchema:
    """Full live schema (columns, constraints, indexes) of a profile's database."""
    profile_name, url = _profile_url(profile_name, env_prefix, config_path)
    logger.info(f"Introspecting {profile_name}")
    async with SchemaIntrospector(url) as introspector:
        return await introspector.introspect()


async def connect_and_validate(
    profile_name: str | None = None,
    expected_columns: dict[str, set[str]] | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
    validate_only: bool = False,
) -> ConnectionResult:
    """Connect to a profile's database and optionally validate its schema.

    On success (and unless ``validate_only``) the profile is written to the
    lock file so later commands use it.

    Args:
        profile_name: Profile name from db.toml.  If None, uses the env var
            or the existing lock file.
        expected_columns: Table -> columns the model expects.  None skips
            schema validation.
        env_prefix: Prefix for the ``DB_PROFILE`` env var.
        config_path: Path to db.toml.
        validate_only: Don't write the lock file.

    Returns:
        ConnectionResult with success status and validation report

    Example:
        >>> result = await connect_and_validate("dev")
        >>> if result.success:
        ...     print(f"Connected to {result.profile_name}")
    """
    if profile_name is None:
        try:
            profile_name = get_active_profile_name(env_prefix)
        except ProfileNotFoundError as e:
            return ConnectionResult(success=False, error=str(e))

    try:
        config = load_db_config(config_path)
    except FileNotFoundError as e:
        return ConnectionResult(success=False, error=str(e))
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys())
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Profile '{profile_name}' not found. Available: {available}",
        )
    url = resolve_url(config.profiles[profile_name])

    try:
        async with SchemaIntrospector(url) as introspector:
            actual_columns = await introspector.get_column_names()
    except Exception as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )

    if expected_columns is None:
        if not validate_only:
            write_profile_lock(profile_name)
        return ConnectionResult(success=True, profile_name=profile_name)

    validation = validate_schema(actual_columns, expected_columns)
    if not validation.valid:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            schema_valid=False,
            schema_report=validation,
            error=f"Schema validation failed: {validation.error_count} errors",
        )

    if not validate_only:
        write_profile_lock(profile_name)
    return ConnectionResult(
        success=True,
        profile_name=profile_name,
        schema_valid=True,
        schema_report=validation,
    )
