"""Models for table snapshots and the file trash.

Usage:
    from entity_migrations.backup.models import Snapshot, TrashEntry

    snapshot = Snapshot(name="todos_snapshot_1700000000000", table="todos", row_count=42)
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


TrashEntryType = Literal["migration", "snapshot", "data"]


class Snapshot(BaseModel):
    """A copy of a table kept as ``<table>_snapshot_<ms>``."""

    name: str                           # snapshot table name
    table: str                          # source table
    created_at: datetime | None = None  # from the epoch ms in the name
    row_count: int = 0


class TrashEntry(BaseModel):
    """A file moved into the trash, restorable until ``expires_at``."""

    id: str                     # "<ms>_<original name>"
    original_path: str
    trash_path: str
    type: TrashEntryType = "data"
    deleted_at: datetime
    expires_at: datetime
    size_bytes: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        """Expired strictly after ``expires_at``."""
        return now > self.expires_at


class TrashStats(BaseModel):
    """Counts over the trash directory."""

    total: int = 0
    active: int = 0
    expired: int = 0
    total_size_bytes: int = 0
