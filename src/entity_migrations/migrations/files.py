"""On-disk migration repository.

Layout under the migrations directory::

    0001_create_todos.sql      -- "-- migrate:up" / "-- migrate:down" sections
    0001_create_todos.json     -- sidecar metadata (hashes, steps, checksum)
    .models/<model hash>.json  -- normalized model each migration leads to

Usage:
    from entity_migrations.migrations.files import MigrationRepository

    repo = MigrationRepository(Path("migrations"))
    for migration in repo.load_all():
        print(migration.name, migration.to_model_hash[:12])
"""

import json
import logging
import re
from pathlib import Path

from entity_migrations.migrations.models import Migration
from entity_migrations.migrations.sql import is_comment, split_statements
from entity_migrations.schema.models import NormalizedModel

logger = logging.getLogger(__name__)

UP_MARKER = "-- migrate:up"
DOWN_MARKER = "-- migrate:down"
MODELS_DIR = ".models"

_SEQUENCE_RE = re.compile(r"^(\d+)_")


def render_sql_file(migration: Migration) -> str:
    """Text of a migration's ``.sql`` file."""

    def terminated(statement: str) -> str:
        if is_comment(statement):
            return statement
        # a trailing -- comment would swallow a ; on the same line
        if "--" in statement.splitlines()[-1]:
            return f"{statement}\n;"
        return f"{statement};"

    def block(statements: list[str]) -> str:
        return "\n\n".join(terminated(s) for s in statements)

    header = [
        f"-- Migration: {migration.name}",
        f"-- Type: {migration.type}",
        f"-- From: {migration.from_model_hash}",
        f"-- To: {migration.to_model_hash}",
    ]
    if migration.description:
        header.append(f"-- {migration.description}")
    return (
        "\n".join(header)
        + f"\n\n{UP_MARKER}\n"
        + block(migration.up)
        + f"\n\n{DOWN_MARKER}\n"
        + block(migration.down)
        + "\n"
    )


def parse_sql_file(text: str) -> tuple[list[str], list[str]]:
    """Split a migration file into its up and down statements.

    Raises:
        ValueError: If the ``-- migrate:up`` marker is missing.
    """
    up_at = text.find(UP_MARKER)
    if up_at == -1:
        raise ValueError(f"Migration file has no '{UP_MARKER}' section")
    down_at = text.find(DOWN_MARKER, up_at)
    if down_at == -1:
        return split_statements(text[up_at + len(UP_MARKER):]), []
    up = split_statements(text[up_at + len(UP_MARKER):down_at])
    down = split_statements(text[down_at + len(DOWN_MARKER):])
    return up, down


class MigrationRepository:
    """Reads and writes migration files in one directory."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    @property
    def models_dir(self) -> Path:
        return self.directory / MODELS_DIR

    def load_all(self) -> list[Migration]:
        """All migrations with a sidecar, ordered by sequence.

        ``up``/``down`` come from the ``.sql`` file and ``checksum`` from the
        sidecar, so an edited file no longer matches its checksum.
        """
        if not self.directory.exists():
            return []
        migrations: list[Migration] = []
        for sql_path in sorted(self.directory.glob("*.sql")):
            meta_path = sql_path.with_suffix(".json")
            if not meta_path.exists():
                logger.warning(f"Skipping {sql_path.name}: no sidecar metadata file")
                continue
            meta = json.loads(meta_path.read_text())
            up, down = parse_sql_file(sql_path.read_text())
            migrations.append(Migration.model_validate({**meta, "up": up, "down": down}))
        return sorted(migrations, key=lambda m: m.sequence)

    def get(self, name: str) -> Migration | None:
        for migration in self.load_all():
            if migration.name == name:
                return migration
        return None

    def next_sequence(self) -> int:
        if not self.directory.exists():
            return 1
        sequences = [
            int(match.group(1))
            for path in self.directory.glob("*.sql")
            if (match := _SEQUENCE_RE.match(path.name))
        ]
        return max(sequences, default=0) + 1

    def write(self, migration: Migration) -> Path:
        """Write the ``.sql`` file and its sidecar; returns the ``.sql`` path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        sql_path = self.directory / f"{migration.name}.sql"
        if sql_path.exists():
            raise FileExistsError(f"Migration file already exists: {sql_path}")
        sql_path.write_text(render_sql_file(migration))
        meta = migration.model_dump(mode="json", exclude={"up", "down"})
        sql_path.with_suffix(".json").write_text(json.dumps(meta, indent=2) + "\n")
        logger.info(f"Wrote migration {sql_path}")
        return sql_path

    def paths_for(self, name: str) -> list[Path]:
        """Existing files belonging to a migration."""
        candidates = [self.directory / f"{name}.sql", self.directory / f"{name}.json"]
        return [path for path in candidates if path.exists()]

    # ------------------------------------------------------------------
    # Model snapshots
    # ------------------------------------------------------------------

    def save_model(self, model_hash: str, model: NormalizedModel) -> Path:
        self.models_dir.mkdir(parents=True, exist_ok=True)
        path = self.models_dir / f"{model_hash}.json"
        path.write_text(model.model_dump_json(indent=2) + "\n")
        return path

    def load_model(self, model_hash: str) -> NormalizedModel | None:
        """The stored model for a hash, or None when none was saved."""
        path = self.models_dir / f"{model_hash}.json"
        if not path.exists():
            return None
        return NormalizedModel.model_validate_json(path.read_text())
