"""Pydantic models for migrations, ledger records, and apply results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from entity_migrations.errors import ErrorCategory
from entity_migrations.migrations.steps import DiffStep


MigrationType = Literal["schema", "data", "custom"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MigrationState(str, Enum):
    """Lifecycle of one apply attempt."""

    PENDING = "pending"
    VALIDATING = "validating"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


class Migration(BaseModel):
    """A generated (or hand-authored) migration.

    ``up`` and ``down`` hold individual statements without trailing
    semicolons. ``checksum`` covers both and is fixed at generation time.
    """

    sequence: int
    name: str
    type: MigrationType = "schema"
    from_model_hash: str
    to_model_hash: str
    steps: list[DiffStep] = Field(default_factory=list)
    up: list[str] = Field(default_factory=list)
    down: list[str] = Field(default_factory=list)
    reversible: bool = True
    checksum: str
    description: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    applied_at: datetime | None = None

    @property
    def destructive_steps(self) -> list[DiffStep]:
        return [step for step in self.steps if step.destructive]


class MigrationRecord(BaseModel):
    """One row of the migration ledger."""

    name: str
    type: MigrationType = "schema"
    from_model_hash: str | None = None
    to_model_hash: str
    checksum: str
    description: str | None = None
    applied_at: datetime = Field(default_factory=utc_now)


class ApplyResult(BaseModel):
    """Outcome of ``MigrationApplier.apply``.

    Example:
        >>> ApplyResult(success=True, state=MigrationState.APPLIED, name="0001_init").format()
        '0001_init: applied'
    """

    success: bool
    state: MigrationState
    name: str
    noop: bool = False
    dry_run: bool = False
    statements: list[str] = Field(default_factory=list)
    error_category: ErrorCategory | None = None
    error: str | None = None
    hint: str | None = None

    def format(self) -> str:
        """One-line status, with error and hint lines on failure."""
        if self.success:
            if self.noop:
                return f"{self.name}: already applied"
            if self.dry_run:
                return f"{self.name}: dry run ({len(self.statements)} statements)"
            return f"{self.name}: applied"
        lines = [f"{self.name}: failed [{self.error_category.value if self.error_category else 'error'}]"]
        if self.error:
            lines.append(f"  {self.error}")
        if self.hint:
            lines.append(f"  Hint: {self.hint}")
        return "\n".join(lines)
