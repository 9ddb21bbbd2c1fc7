"""Error taxonomy for the migration engine.

Every error carries a ``category`` (used by the CLI and by ``ApplyResult``)
and a ``hint`` with at least one concrete next step for the operator.

Usage:
    from entity_migrations.errors import DriftMismatchError, ErrorCategory

    try:
        trash.restore(entry_id)
    except TrashEntryExpiredError as e:
        print(e.category, e.hint)
"""

from enum import Enum


class ErrorCategory(str, Enum):
    """Parsed error category shown to the user."""

    DRIFT_MISMATCH = "drift_mismatch"
    DESTRUCTIVE_CHANGE_BLOCKED = "destructive_change_blocked"
    TRANSACTION_FAILURE = "transaction_failure"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    MIGRATION_IN_PROGRESS = "migration_in_progress"
    TRASH_ENTRY_NOT_FOUND = "trash_entry_not_found"
    TRASH_ENTRY_EXPIRED = "trash_entry_expired"
    INVALID_SEMVER = "invalid_semver"
    SNAPSHOT_NOT_FOUND = "snapshot_not_found"
    INVALID_MODEL = "invalid_model"
    PLUGIN_MIGRATION = "plugin_migration"


class MigrationError(Exception):
    """Base class for all engine errors."""

    category: ErrorCategory = ErrorCategory.TRANSACTION_FAILURE
    default_hint: str = ""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint if hint is not None else self.default_hint

    def format(self) -> str:
        """Message plus hint on a second line (when present)."""
        if self.hint:
            return f"{self.message}\n  Hint: {self.hint}"
        return self.message


class DriftMismatchError(MigrationError):
    """Recorded model hash differs from the migration's ``from_model_hash``."""

    category = ErrorCategory.DRIFT_MISMATCH
    default_hint = "Run `entity-migrations check --diff`, then `generate` a fresh migration."

    def __init__(self, expected: str, actual: str, hint: str | None = None) -> None:
        super().__init__(
            f"Schema drift: migration expects {expected[:12]} but ledger is at {actual[:12]}",
            hint,
        )
        self.expected = expected
        self.actual = actual


class DestructiveChangeBlockedError(MigrationError):
    """Destructive step against a populated table without snapshot or override."""

    category = ErrorCategory.DESTRUCTIVE_CHANGE_BLOCKED
    default_hint = (
        "Run `entity-migrations restore create <table>` to snapshot the data, "
        "or use --allow-destructive after snapshotting."
    )

    def __init__(self, tables: list[str], hint: str | None = None) -> None:
        super().__init__(
            f"Destructive change blocked for populated table(s): {', '.join(tables)}",
            hint,
        )
        self.tables = tables


class TransactionFailureError(MigrationError):
    """A statement failed while applying; the transaction was rolled back."""

    category = ErrorCategory.TRANSACTION_FAILURE
    default_hint = "The transaction was rolled back. Fix the statement and run apply again."


class ChecksumMismatchError(MigrationError):
    """Stored migration SQL no longer matches its recorded checksum."""

    category = ErrorCategory.CHECKSUM_MISMATCH
    default_hint = (
        "A migration was edited after it was generated or applied. "
        "Restore the original file from version control; never edit applied migrations."
    )


class MigrationInProgressError(MigrationError):
    """Another process holds the environment's migration lock."""

    category = ErrorCategory.MIGRATION_IN_PROGRESS
    default_hint = "Wait for the other apply to finish, then run `entity-migrations status`."


class TrashEntryNotFoundError(MigrationError):
    """No trash entry with the given id."""

    category = ErrorCategory.TRASH_ENTRY_NOT_FOUND
    default_hint = "Run `entity-migrations trash list` to see available entries."


class TrashEntryExpiredError(MigrationError):
    """Trash entry is past its retention window."""

    category = ErrorCategory.TRASH_ENTRY_EXPIRED
    default_hint = "Expired entries cannot be restored. Run `entity-migrations trash cleanup`."


class InvalidSemverError(MigrationError):
    """A plugin version string is not valid semver."""

    category = ErrorCategory.INVALID_SEMVER
    default_hint = "Use MAJOR.MINOR.PATCH versions for plugin migrations."


class SnapshotNotFoundError(MigrationError):
    """Snapshot table does not exist."""

    category = ErrorCategory.SNAPSHOT_NOT_FOUND
    default_hint = "Run `entity-migrations restore list` to see available snapshots."


class UnknownFieldTypeError(MigrationError):
    """Strict normalization found a type token it does not know."""

    category = ErrorCategory.INVALID_MODEL
    default_hint = "Check the field type for typos, or drop --strict to default it to string."


class InvalidFieldDefinitionError(MigrationError):
    """Field declaration violates a model invariant."""

    category = ErrorCategory.INVALID_MODEL
    default_hint = "A field is either required (`!`) or nullable (`?`), never both."


class PluginMigrationError(MigrationError):
    """Plugin migration could not be applied or rolled back."""

    category = ErrorCategory.PLUGIN_MIGRATION
    default_hint = "Run `entity-migrations plugin status` to inspect the plugin's history."


# Database error text -> hint. First match wins.
_ERROR_HINTS: list[tuple[str, str]] = [
    ("already exists", "The object already exists. Run `check --live` to compare the database with the model."),
    ("does not exist", "A referenced table or column is missing. Run `check --live` and `status`."),
    ("violates not-null", "Existing rows have NULLs. Backfill the column before making it required."),
    ("violates foreign key", "Existing rows reference missing parents. Clean up orphans first."),
    ("could not obtain lock", "Another session holds a lock on the table. Retry when it is idle."),
    ("lock timeout", "Another session holds a lock on the table. Retry when it is idle."),
    ("syntax error", "The generated or custom SQL is invalid. Inspect the migration file."),
    ("cannot be cast", "The column type change needs a manual USING clause in a custom migration."),
]


def classify_error(exc: BaseException) -> str:
    """Return an actionable hint for a database error raised during apply.

    Example:
        >>> classify_error(Exception('relation "todos" already exists'))
        'The object already exists. Run `check --live` to compare the database with the model.'
    """
    text = str(exc).lower()
    for needle, hint in _ERROR_HINTS:
        if needle in text:
            return hint
    return TransactionFailureError.default_hint
