"""CLI for entity-model migrations.

Compares the entity model with the migration history, generates migration
files, applies them to the active profile's database, and manages plugin
migrations, the trash and table snapshots.

Usage:
    entity-migrations check --diff
    entity-migrations generate --name add_todo_notes
    DB_PROFILE=dev entity-migrations apply --dry-run
    entity-migrations apply
    entity-migrations status
    entity-migrations plugin migrate plugins/billing/plugin.toml

Commands:
    check     - Compare the entity model with the latest migration (and the live DB)
    generate  - Write a migration for the model changes
    apply     - Apply pending migrations
    status    - Show applied and pending migrations
    history   - Show the migration ledger
    discard   - Move a pending migration's files to the trash
    plugin    - Plugin migration status, migrate and rollback
    trash     - Manage trashed files
    restore   - Manage table snapshots
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.markup import escape
from rich.table import Table

from entity_migrations.backup.snapshots import SnapshotManager
from entity_migrations.backup.trash import TrashManager
from entity_migrations.cli import backup as backup_commands
from entity_migrations.cli.common import (
    config_path,
    configure_logging,
    console,
    load_settings,
    open_client,
    print_error,
)
from entity_migrations.config.loader import load_entities, load_plugin_manifest
from entity_migrations.config.models import MigrationSettings
from entity_migrations.errors import MigrationError
from entity_migrations.factory import ProfileNotFoundError, connect_and_validate, introspect_live
from entity_migrations.migrations.applier import MigrationApplier
from entity_migrations.migrations.files import MigrationRepository, render_sql_file
from entity_migrations.migrations.ledger import PostgresLedgerStore
from entity_migrations.migrations.sql import build_migration
from entity_migrations.migrations.steps import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    AlterColumn,
    DiffStep,
    DropColumn,
    DropForeignKey,
    DropIndex,
    describe_steps,
)
from entity_migrations.plugins.tracker import PluginMigrationTracker
from entity_migrations.schema.comparator import compare_live_schema, diff_models, expected_columns
from entity_migrations.schema.hasher import EMPTY_MODEL_HASH, compute_model_hash
from entity_migrations.schema.models import NormalizedModel

logger = logging.getLogger(__name__)


# ============================================================================
# Model helpers (CLI-internal)
# ============================================================================


def _repository(settings: MigrationSettings) -> MigrationRepository:
    return MigrationRepository(Path(settings.dir))


def _current_model(args: argparse.Namespace, settings: MigrationSettings) -> NormalizedModel:
    strict = getattr(args, "strict", False) or settings.strict_types
    return load_entities(Path(settings.entities_file), strict=strict)


def _previous_model(repo: MigrationRepository) -> tuple[str, NormalizedModel]:
    """Hash and model the latest migration leads to.

    Migrations are not replayed: the model comes from the snapshot stored at
    generate time. Without one the empty model is used.
    """
    migrations = repo.load_all()
    if not migrations:
        return EMPTY_MODEL_HASH, NormalizedModel()
    latest_hash = migrations[-1].to_model_hash
    model = repo.load_model(latest_hash)
    if model is None:
        logger.warning(
            f"No stored model for {latest_hash[:12]}; diffing against the empty model. "
            "Migrations are not replayed, so restore .models/ from version control."
        )
        return latest_hash, NormalizedModel()
    return latest_hash, model


def _change_summary(steps: list[DiffStep]) -> str:
    """Step counts, or a note that only DDL-free parts (enum values, relations) changed."""
    return describe_steps(steps) if steps else "model metadata only, no DDL"


def _steps_table(steps: list[DiffStep]) -> Table:
    table = Table(title="Model changes", show_header=True, header_style="bold")
    table.add_column("Step")
    table.add_column("Table")
    table.add_column("Detail")
    for step in steps:
        match step:
            case AddColumn(column=column) | DropColumn(column=column):
                detail = column.name
            case AlterColumn(before=before, after=after):
                detail = f"{before.name}: {before.sql_type} -> {after.sql_type}"
            case AddIndex(index=index) | DropIndex(index=index):
                detail = index.name
            case AddForeignKey(foreign_key=fk) | DropForeignKey(foreign_key=fk):
                detail = fk.name
            case _:
                detail = ""
        kind = f"[red]{step.kind}[/red]" if step.destructive else step.kind
        table.add_row(kind, step.table, detail)
    return table


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_check(args: argparse.Namespace) -> int:
    """Async implementation for check command.

    Returns:
        0 when the model matches the migrations (and the live DB with
        ``--live``), 1 on drift.
    """
    settings = load_settings(args)
    repo = _repository(settings)
    model = _current_model(args, settings)
    latest_hash, previous = _previous_model(repo)
    current_hash = compute_model_hash(model)
    steps = diff_models(previous, model)

    console.print(f"Model hash: [bold cyan]{current_hash[:12]}[/bold cyan]")
    exit_code = 0
    if current_hash != latest_hash:
        console.print(
            f"[yellow]Model has changes not in any migration:[/yellow] {_change_summary(steps)} "
            f"[dim](migrations end at {latest_hash[:12]})[/dim]"
        )
        console.print("[dim]Run[/dim] [cyan]entity-migrations generate[/cyan]")
        if args.diff and steps:
            console.print(_steps_table(steps))
        exit_code = 1
    else:
        console.print("[bold green]v[/bold green] Migrations match the entity model")

    if args.live:
        result = await connect_and_validate(
            expected_columns=expected_columns(model),
            env_prefix=args.env_prefix,
            config_path=config_path(args),
        )
        if result.success:
            console.print(f"[bold green]v[/bold green] Live schema of [bold cyan]{result.profile_name}[/bold cyan] matches")
            if args.diff:
                live = await introspect_live(
                    result.profile_name, env_prefix=args.env_prefix, config_path=config_path(args)
                )
                drift = compare_live_schema(model, live)
                for diff in drift:
                    console.print(f"  [yellow]drift[/yellow] {escape(diff.message)}")
                if drift:
                    exit_code = 1
        else:
            console.print(f"[bold red]x[/bold red] {result.error}")
            if result.schema_report:
                console.print(result.schema_report.format_report())
            exit_code = 1
    return exit_code


async def _async_apply(args: argparse.Namespace) -> int:
    """Async implementation for apply command."""
    settings = load_settings(args)
    migrations = _repository(settings).load_all()
    if not migrations:
        console.print("[dim]No migrations to apply.[/dim]")
        return 0

    profile_name, adapter = await open_client(args)
    try:
        ledger = PostgresLedgerStore(adapter, environment=profile_name)
        await ledger.ensure_tables()
        applier = MigrationApplier(ledger, SnapshotManager(adapter), environment=profile_name)
        results = await applier.apply_pending(
            migrations,
            allow_destructive=args.allow_destructive,
            dry_run=args.dry_run,
        )
    finally:
        await adapter.close()

    for result in results:
        if result.success and result.noop:
            continue
        style = "green" if result.success else "red"
        console.print(result.format(), style=style, markup=False)
        if result.dry_run:
            for statement in result.statements:
                console.print(f"  {statement};", style="dim", markup=False, highlight=False)
    if all(result.noop for result in results):
        console.print("[bold green]v[/bold green] Database is up to date")
    return 0 if all(result.success for result in results) else 1


async def _async_status(args: argparse.Namespace) -> int:
    """Async implementation for status command."""
    settings = load_settings(args)
    migrations = _repository(settings).load_all()
    profile_name, adapter = await open_client(args)
    try:
        ledger = PostgresLedgerStore(adapter, environment=profile_name)
        await ledger.ensure_tables()
        applied = {record.name: record for record in await ledger.history()}
        latest = await ledger.latest_hash()
    finally:
        await adapter.close()

    table = Table(title=f"Migrations ({profile_name})", show_header=True, header_style="bold")
    table.add_column("Migration")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Applied")
    for migration in migrations:
        record = applied.get(migration.name)
        if record is None:
            status = "[yellow]pending[/yellow]"
        elif record.checksum != migration.checksum:
            status = "[red]checksum mismatch[/red]"
        else:
            status = "[green]applied[/green]"
        when = record.applied_at.strftime("%Y-%m-%d %H:%M") if record else ""
        table.add_row(migration.name, migration.type, status, when)
    console.print(table)
    console.print(f"Ledger hash: {(latest or EMPTY_MODEL_HASH)[:12]}")
    return 0


async def _async_history(args: argparse.Namespace) -> int:
    """Async implementation for history command."""
    profile_name, adapter = await open_client(args)
    try:
        ledger = PostgresLedgerStore(adapter, environment=profile_name)
        await ledger.ensure_tables()
        records = await ledger.history()
    finally:
        await adapter.close()

    if not records:
        console.print("[dim]No migrations applied.[/dim]")
        return 0
    table = Table(title=f"Migration history ({profile_name})", show_header=True, header_style="bold")
    table.add_column("Migration")
    table.add_column("Type")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Applied")
    for record in records:
        table.add_row(
            record.name,
            record.type,
            (record.from_model_hash or "")[:12],
            record.to_model_hash[:12],
            record.applied_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    return 0


async def _async_discard(args: argparse.Namespace) -> int:
    """Async implementation for discard command."""
    settings = load_settings(args)
    repo = _repository(settings)
    paths = repo.paths_for(args.name)
    if not paths:
        console.print(f"[red]Error: no migration named {args.name}[/red]")
        return 1

    profile_name, adapter = await open_client(args)
    try:
        ledger = PostgresLedgerStore(adapter, environment=profile_name)
        await ledger.ensure_tables()
        record = await ledger.get(args.name)
    finally:
        await adapter.close()
    if record is not None:
        console.print(f"[red]Error: {args.name} is applied on {profile_name}; only pending migrations can be discarded[/red]")
        return 1

    trash = TrashManager(Path(settings.trash_dir), retention_days=settings.retention_days)
    for path in paths:
        entry = trash.move_to_trash(path, "migration", metadata={"migration": args.name})
        console.print(f"[bold green]v[/bold green] {path.name} -> trash ({entry.id})")
    return 0


async def _async_plugin(args: argparse.Namespace) -> int:
    """Async implementation for plugin commands."""
    manifest_path = Path(args.manifest)
    manifest = load_plugin_manifest(manifest_path)
    plugin_dir = Path(args.plugin_dir) if args.plugin_dir else manifest_path.parent

    _, adapter = await open_client(args)
    try:
        tracker = PluginMigrationTracker(adapter)
        await tracker.ensure_tables()
        if args.plugin_command == "status":
            console.print((await tracker.plan(manifest)).format())
            for record in await tracker.history(manifest.name):
                applied = record.applied_at.strftime("%Y-%m-%d %H:%M") if record.applied_at else ""
                console.print(f"  [dim]{record.plugin_version} {record.migration_name} {applied}[/dim]")
        elif args.plugin_command == "migrate":
            applied_versions = await tracker.apply(manifest, plugin_dir=plugin_dir)
            if applied_versions:
                console.print(f"[bold green]v[/bold green] Applied {manifest.name} {', '.join(applied_versions)}")
            else:
                console.print(f"{manifest.name} is up to date")
        elif args.plugin_command == "rollback":
            rolled_back = await tracker.rollback(manifest, args.to, plugin_dir=plugin_dir)
            if rolled_back:
                console.print(f"[bold green]v[/bold green] Rolled back {manifest.name} {', '.join(rolled_back)}")
            else:
                console.print(f"Nothing to roll back for {manifest.name}")
        return 0
    finally:
        await adapter.close()


# ============================================================================
# Sync command wrappers (generate reads and writes local files only)
# ============================================================================


def cmd_check(args: argparse.Namespace) -> int:
    """Compare the entity model with the migrations.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_check(args))


def cmd_generate(args: argparse.Namespace) -> int:
    """Write a migration for the model changes.

    Reads only local files -- no database calls.

    Returns:
        0 on success (or nothing to generate), 1 on failure.
    """
    settings = load_settings(args)
    repo = _repository(settings)
    model = _current_model(args, settings)
    from_hash, previous = _previous_model(repo)
    to_hash = compute_model_hash(model)
    if to_hash == from_hash:
        console.print("[dim]No model changes; nothing to generate.[/dim]")
        return 0

    steps = diff_models(previous, model)
    migration = build_migration(
        repo.next_sequence(),
        args.name or "auto",
        from_hash,
        to_hash,
        steps,
        description=args.description or _change_summary(steps),
    )

    if migration.destructive_steps:
        tables = sorted({step.table for step in migration.destructive_steps})
        console.print(
            f"[yellow]Warning:[/yellow] destructive changes to {', '.join(tables)}. "
            "Snapshot populated tables before applying."
        )
    if not migration.reversible:
        console.print("[yellow]Warning:[/yellow] down script needs manual intervention")

    if args.preview:
        console.print(render_sql_file(migration), markup=False, highlight=False)
        return 0

    path = repo.write(migration)
    repo.save_model(to_hash, model)
    console.print(f"[bold green]v[/bold green] Wrote {path} ({_change_summary(steps)})")
    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    """Apply pending migrations.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_apply(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show applied and pending migrations.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_status(args))


def cmd_history(args: argparse.Namespace) -> int:
    return asyncio.run(_async_history(args))


def cmd_discard(args: argparse.Namespace) -> int:
    return asyncio.run(_async_discard(args))


def cmd_plugin(args: argparse.Namespace) -> int:
    return asyncio.run(_async_plugin(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Argument parser with every command registered."""
    parser = argparse.ArgumentParser(
        prog="entity-migrations",
        description="Entity-model migrations for PostgreSQL",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # check command
    p_check = subparsers.add_parser(
        "check",
        help="Compare the entity model with the migrations",
    )
    p_check.add_argument("--diff", action="store_true", help="Show each model change (and live type/index drift with --live)")
    p_check.add_argument("--live", action="store_true", help="Also validate the live database")
    p_check.add_argument("--strict", action="store_true", help="Reject unknown field types")
    p_check.set_defaults(func=cmd_check)

    # generate command
    p_generate = subparsers.add_parser(
        "generate",
        help="Write a migration for the model changes",
    )
    p_generate.add_argument("--name", default=None, help="Migration name (default: auto)")
    p_generate.add_argument("--description", default=None, help="Migration description")
    p_generate.add_argument("--strict", action="store_true", help="Reject unknown field types")
    p_generate.add_argument(
        "--preview",
        action="store_true",
        help="Print the migration instead of writing it",
    )
    p_generate.set_defaults(func=cmd_generate)

    # apply command
    p_apply = subparsers.add_parser("apply", help="Apply pending migrations")
    p_apply.add_argument(
        "--dry-run",
        action="store_true",
        help="Run every check and show the SQL without executing it",
    )
    p_apply.add_argument(
        "--allow-destructive",
        action="store_true",
        help="Apply destructive steps to populated tables without a snapshot",
    )
    p_apply.set_defaults(func=cmd_apply)

    # status / history commands
    subparsers.add_parser("status", help="Show applied and pending migrations").set_defaults(func=cmd_status)
    subparsers.add_parser("history", help="Show the migration ledger").set_defaults(func=cmd_history)

    # discard command
    p_discard = subparsers.add_parser("discard", help="Move a pending migration to the trash")
    p_discard.add_argument("name", help="Migration name, e.g. 0003_drop_notes")
    p_discard.set_defaults(func=cmd_discard)

    # plugin command group
    p_plugin = subparsers.add_parser("plugin", help="Plugin migrations")
    plugin_sub = p_plugin.add_subparsers(dest="plugin_command", required=True)
    for name, help_text in (
        ("status", "Show the plugin's installed version and plan"),
        ("migrate", "Apply the plugin's pending migrations"),
        ("rollback", "Roll back the plugin's migrations"),
    ):
        p = plugin_sub.add_parser(name, help=help_text)
        p.add_argument("manifest", help="Plugin manifest (TOML or JSON)")
        p.add_argument(
            "--plugin-dir",
            default=None,
            help="Directory for .sql script paths (default: the manifest's directory)",
        )
        if name == "rollback":
            p.add_argument("--to", required=True, help="Version to roll back to")
        p.set_defaults(func=cmd_plugin)

    # trash and restore command groups
    backup_commands.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        return args.func(args)
    except MigrationError as e:
        print_error(e)
        return 1
    except ProfileNotFoundError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return 1
    except (FileNotFoundError, FileExistsError, KeyError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
