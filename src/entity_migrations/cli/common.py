"""Helpers shared by the CLI command modules."""

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from entity_migrations.adapters.postgres import AsyncPostgresAdapter
from entity_migrations.config.loader import load_db_config
from entity_migrations.config.models import MigrationSettings
from entity_migrations.errors import MigrationError
from entity_migrations.factory import get_active_profile_name, get_adapter

console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich; DEBUG with ``--verbose``."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def config_path(args: argparse.Namespace) -> Path | None:
    value = getattr(args, "config", None)
    return Path(value) if value else None


def load_settings(args: argparse.Namespace) -> MigrationSettings:
    """``[migrations]`` settings from db.toml, or defaults when there is no db.toml."""
    try:
        return load_db_config(config_path(args)).migrations
    except FileNotFoundError:
        return MigrationSettings()


async def open_client(args: argparse.Namespace) -> tuple[str, AsyncPostgresAdapter]:
    """Active profile name and an adapter for it."""
    env_prefix = getattr(args, "env_prefix", "")
    profile_name = get_active_profile_name(env_prefix)
    adapter = await get_adapter(profile_name, env_prefix=env_prefix, config_path=config_path(args))
    return profile_name, adapter


def print_error(error: MigrationError) -> None:
    console.print(f"[bold red]x[/bold red] {escape(f'[{error.category.value}]')} {escape(error.message)}")
    if error.hint:
        console.print(f"  [dim]Hint:[/dim] {escape(error.hint)}")
