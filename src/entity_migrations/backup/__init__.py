"""Table snapshots and the file trash.

Usage:
    from entity_migrations.backup import SnapshotManager, TrashManager
"""

from entity_migrations.backup.models import Snapshot, TrashEntry, TrashStats
from entity_migrations.backup.snapshots import SnapshotManager
from entity_migrations.backup.trash import TrashManager

__all__ = [
    "Snapshot",
    "TrashEntry",
    "TrashStats",
    "SnapshotManager",
    "TrashManager",
]
