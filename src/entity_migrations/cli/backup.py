"""Trash and snapshot CLI commands.

Registered on the main parser by ``register(subparsers)``.

Usage:
    entity-migrations trash list
    entity-migrations trash restore 1700000000000_0003_drop_notes.sql
    entity-migrations trash cleanup --dry-run
    entity-migrations restore create todos
    entity-migrations restore list
    entity-migrations restore restore todos_snapshot_1700000000000 todos
"""

import argparse
import asyncio
from pathlib import Path

from rich.table import Table

from entity_migrations.backup.snapshots import SnapshotManager
from entity_migrations.backup.trash import TrashManager
from entity_migrations.cli.common import console, load_settings, open_client


def _trash(args: argparse.Namespace) -> TrashManager:
    settings = load_settings(args)
    return TrashManager(Path(settings.trash_dir), retention_days=settings.retention_days)


# ============================================================================
# trash
# ============================================================================


def cmd_trash_list(args: argparse.Namespace) -> int:
    """List trash entries with their expiry, plus totals."""
    trash = _trash(args)
    entries = trash.list_entries()
    if not entries:
        console.print("[dim]Trash is empty.[/dim]")
        return 0

    table = Table(title="Trash", show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Original path")
    table.add_column("Deleted")
    table.add_column("Expires")
    for entry in entries:
        table.add_row(
            entry.id,
            entry.type,
            entry.original_path,
            entry.deleted_at.strftime("%Y-%m-%d %H:%M"),
            entry.expires_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)

    stats = trash.stats()
    console.print(
        f"{stats.total} entries ({stats.active} active, {stats.expired} expired), "
        f"{stats.total_size_bytes} bytes"
    )
    return 0


def cmd_trash_restore(args: argparse.Namespace) -> int:
    path = _trash(args).restore(args.entry_id)
    console.print(f"[bold green]v[/bold green] Restored {path}")
    return 0


def cmd_trash_delete(args: argparse.Namespace) -> int:
    _trash(args).permanently_delete(args.entry_id)
    console.print(f"[bold green]v[/bold green] Permanently deleted {args.entry_id}")
    return 0


def cmd_trash_cleanup(args: argparse.Namespace) -> int:
    count = _trash(args).cleanup_expired(dry_run=args.dry_run)
    if args.dry_run:
        console.print(f"Would delete {count} expired entries")
    else:
        console.print(f"[bold green]v[/bold green] Deleted {count} expired entries")
    return 0


# ============================================================================
# restore (table snapshots)
# ============================================================================


async def _async_snapshot(args: argparse.Namespace) -> int:
    _, adapter = await open_client(args)
    try:
        snapshots = SnapshotManager(adapter)
        if args.snapshot_command == "list":
            items = await snapshots.list(args.table)
            if not items:
                console.print("[dim]No snapshots.[/dim]")
                return 0
            table = Table(title="Snapshots", show_header=True, header_style="bold")
            table.add_column("Snapshot")
            table.add_column("Table")
            table.add_column("Created")
            table.add_column("Rows", justify="right")
            for snap in items:
                created = snap.created_at.strftime("%Y-%m-%d %H:%M:%S") if snap.created_at else ""
                table.add_row(snap.name, snap.table, created, str(snap.row_count))
            console.print(table)
        elif args.snapshot_command == "create":
            snap = await snapshots.create(args.table, name=args.name)
            console.print(
                f"[bold green]v[/bold green] Created {snap.name} ({snap.row_count} rows)"
            )
        elif args.snapshot_command == "restore":
            restored = await snapshots.restore(args.snapshot, args.table)
            console.print(
                f"[bold green]v[/bold green] Restored {restored} rows into {args.table}"
            )
        elif args.snapshot_command == "delete":
            await snapshots.delete(args.snapshot)
            console.print(f"[bold green]v[/bold green] Deleted {args.snapshot}")
        return 0
    finally:
        await adapter.close()


def cmd_snapshot(args: argparse.Namespace) -> int:
    """Snapshot commands.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_snapshot(args))


# ============================================================================
# Registration
# ============================================================================


def register(subparsers: argparse._SubParsersAction) -> None:
    """Add the ``trash`` and ``restore`` command groups."""
    p_trash = subparsers.add_parser("trash", help="Manage trashed migration files")
    trash_sub = p_trash.add_subparsers(dest="trash_command", required=True)

    trash_sub.add_parser("list", help="List trash entries").set_defaults(func=cmd_trash_list)

    p_restore_entry = trash_sub.add_parser("restore", help="Restore a trash entry")
    p_restore_entry.add_argument("entry_id", help="Trash entry ID")
    p_restore_entry.set_defaults(func=cmd_trash_restore)

    p_delete_entry = trash_sub.add_parser("delete", help="Permanently delete a trash entry")
    p_delete_entry.add_argument("entry_id", help="Trash entry ID")
    p_delete_entry.set_defaults(func=cmd_trash_delete)

    p_cleanup = trash_sub.add_parser("cleanup", help="Delete expired trash entries")
    p_cleanup.add_argument(
        "--dry-run",
        action="store_true",
        help="Count expired entries without deleting",
    )
    p_cleanup.set_defaults(func=cmd_trash_cleanup)

    p_snapshot = subparsers.add_parser("restore", help="Manage table snapshots")
    snapshot_sub = p_snapshot.add_subparsers(dest="snapshot_command", required=True)

    p_list = snapshot_sub.add_parser("list", help="List snapshots")
    p_list.add_argument("table", nargs="?", default=None, help="Only snapshots of this table")
    p_list.set_defaults(func=cmd_snapshot)

    p_create = snapshot_sub.add_parser("create", help="Snapshot a table")
    p_create.add_argument("table", help="Table to snapshot")
    p_create.add_argument("--name", default=None, help="Snapshot table name")
    p_create.set_defaults(func=cmd_snapshot)

    p_restore = snapshot_sub.add_parser("restore", help="Restore a table from a snapshot")
    p_restore.add_argument("snapshot", help="Snapshot table name")
    p_restore.add_argument("table", help="Target table")
    p_restore.set_defaults(func=cmd_snapshot)

    p_delete = snapshot_sub.add_parser("delete", help="Drop a snapshot")
    p_delete.add_argument("snapshot", help="Snapshot table name")
    p_delete.set_defaults(func=cmd_snapshot)
