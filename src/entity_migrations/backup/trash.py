"""Soft-delete for files: move into a trash directory, restore within retention.

Each trashed file lives at ``<trash_dir>/<epoch ms>_<name>`` next to a
``<id>.meta.json`` sidecar describing where it came from and when it expires.

Usage:
    from entity_migrations.backup.trash import TrashManager

    trash = TrashManager(Path(".trash"), retention_days=30)
    entry = trash.move_to_trash(Path("migrations/0003_drop_notes.sql"), "migration")
    trash.restore(entry.id)
"""

import json
import logging
import shutil
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from entity_migrations.backup.models import TrashEntry, TrashEntryType, TrashStats
from entity_migrations.errors import TrashEntryExpiredError, TrashEntryNotFoundError

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"
DEFAULT_RETENTION_DAYS = 30


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _size_of(path: Path) -> int:
    if path.is_dir():
        return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
    return path.stat().st_size


def _remove(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


class TrashManager:
    """File trash with a fixed retention window.

    Args:
        trash_dir: Directory holding trashed files and their sidecars.
        retention_days: Days an entry stays restorable.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        trash_dir: Path | str,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.trash_dir = Path(trash_dir)
        self.retention_days = retention_days
        self._clock = clock or _utc_now

    def _meta_path(self, entry_id: str) -> Path:
        return self.trash_dir / f"{entry_id}{META_SUFFIX}"

    def _write_meta(self, entry: TrashEntry) -> None:
        self._meta_path(entry.id).write_text(entry.model_dump_json(indent=2) + "\n")

    def move_to_trash(
        self,
        path: Path | str,
        type: TrashEntryType = "data",
        metadata: dict[str, Any] | None = None,
    ) -> TrashEntry:
        """Move ``path`` into the trash.

        Args:
            path: File or directory to trash.
            type: What kind of artifact this is.
            metadata: Free-form data stored in the sidecar.

        Returns:
            The new ``TrashEntry``.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
        """
        source = Path(path)
        if not source.exists():
            raise FileNotFoundError(f"Cannot trash missing file: {source}")

        now = self._clock()
        entry_id = f"{int(now.timestamp() * 1000)}_{source.name}"
        target = self.trash_dir / entry_id
        self.trash_dir.mkdir(parents=True, exist_ok=True)

        entry = TrashEntry(
            id=entry_id,
            original_path=str(source.resolve()),
            trash_path=str(target),
            type=type,
            deleted_at=now,
            expires_at=now + timedelta(days=self.retention_days),
            size_bytes=_size_of(source),
            metadata=metadata or {},
        )
        shutil.move(str(source), str(target))
        self._write_meta(entry)
        logger.info(f"Moved {source} to trash as {entry_id}")
        return entry

    def get_entry(self, entry_id: str) -> TrashEntry | None:
        meta = self._meta_path(entry_id)
        if not meta.exists():
            return None
        return TrashEntry.model_validate_json(meta.read_text())

    def _require(self, entry_id: str) -> TrashEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise TrashEntryNotFoundError(f"Trash entry not found: {entry_id}")
        return entry

    def restore(self, entry_id: str) -> Path:
        """Move an entry back to its original path.

        Returns:
            The restored path.

        Raises:
            TrashEntryNotFoundError: If no entry has this id.
            TrashEntryExpiredError: If the entry is past retention.
            FileExistsError: If something already exists at the original path.
        """
        entry = self._require(entry_id)
        if entry.is_expired(self._clock()):
            raise TrashEntryExpiredError(
                f"Trash entry {entry_id} expired at {entry.expires_at.isoformat()}"
            )
        original = Path(entry.original_path)
        if original.exists():
            raise FileExistsError(f"Refusing to overwrite existing file: {original}")

        original.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(entry.trash_path, str(original))
        self._meta_path(entry_id).unlink()
        logger.info(f"Restored {entry_id} to {original}")
        return original

    def permanently_delete(self, entry_id: str) -> None:
        """Remove an entry and its sidecar.

        Raises:
            TrashEntryNotFoundError: If no entry has this id.
        """
        entry = self._require(entry_id)
        _remove(Path(entry.trash_path))
        self._meta_path(entry_id).unlink()
        logger.info(f"Permanently deleted {entry_id}")

    def list_entries(self) -> list[TrashEntry]:
        """All entries, most recently deleted first."""
        if not self.trash_dir.exists():
            return []
        entries = [
            TrashEntry.model_validate_json(meta.read_text())
            for meta in self.trash_dir.glob(f"*{META_SUFFIX}")
        ]
        return sorted(entries, key=lambda e: e.deleted_at, reverse=True)

    def cleanup_expired(self, dry_run: bool = False) -> int:
        """Delete expired entries.

        Returns:
            Number of expired entries (deleted unless ``dry_run``).
        """
        now = self._clock()
        expired = [entry for entry in self.list_entries() if entry.is_expired(now)]
        if not dry_run:
            for entry in expired:
                self.permanently_delete(entry.id)
        return len(expired)

    def stats(self) -> TrashStats:
        now = self._clock()
        entries = self.list_entries()
        expired = sum(1 for entry in entries if entry.is_expired(now))
        return TrashStats(
            total=len(entries),
            active=len(entries) - expired,
            expired=expired,
            total_size_bytes=sum(entry.size_bytes for entry in entries),
        )
