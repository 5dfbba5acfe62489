"""
Exception hierarchy for the migration engine.

Errors are grouped the way callers need to react to them:

- Authoring errors are raised while generating a migration and never
  reach the database.
- Ordering errors reject a request before any database mutation; the
  caller fixes the ordering (downgrade first, restore a missing record).
- Execution errors come from the Database Executor and are surfaced to
  callers wrapped in MigrationFailedError.
- Concurrency errors mean another runner holds the target; retry later.

Every error carries a short machine-readable code, a human message and
a details dict. The offending migration id is attached where one exists.
"""

from typing import Any, Optional, Sequence


class StrataError(Exception):
    """
    Base exception for all migration engine errors.

    Attributes:
        code: Error code (e.g., "EMPTY_DIFF")
        message: Human-readable error message
        details: Additional structured context
        migration_id: Offending migration identifier, if any
    """

    code = "STRATA_ERROR"

    def __init__(
        self,
        message: str,
        migration_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.migration_id = migration_id
        self.details = details or {}
        if migration_id is not None:
            self.details.setdefault("migration_id", migration_id)
        super().__init__(f"[{self.code}] {message}")


class ConfigurationError(StrataError):
    """Invalid or missing configuration."""

    code = "CONFIGURATION"


# ============================================================================
# Authoring errors
# ============================================================================

class AuthoringError(StrataError):
    """
    Schema or migration authoring problem.

    Raised at generation time, before anything touches a database.
    """

    code = "AUTHORING"


class DuplicateTableNameError(AuthoringError):
    code = "DUPLICATE_TABLE_NAME"

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(
            f"Table '{table}' is declared more than once",
            details={"table": table},
        )


class DuplicateColumnNameError(AuthoringError):
    code = "DUPLICATE_COLUMN_NAME"

    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        super().__init__(
            f"Column '{column}' is declared more than once in table '{table}'",
            details={"table": table, "column": column},
        )


class UnknownColumnError(AuthoringError):
    """A key, index or foreign key references a column the table lacks."""

    code = "UNKNOWN_COLUMN"

    def __init__(self, table: str, column: str, context: str) -> None:
        self.table = table
        self.column = column
        super().__init__(
            f"{context} references unknown column '{column}' in table '{table}'",
            details={"table": table, "column": column, "context": context},
        )


class InvalidOperationError(AuthoringError):
    """An operation does not fit the snapshot it is applied to."""

    code = "INVALID_OPERATION"


class UnsupportedChangeError(AuthoringError):
    """A schema difference cannot be expressed with the operation set."""

    code = "UNSUPPORTED_CHANGE"


class AmbiguousRenameError(AuthoringError):
    """
    Rename detection found several equally good candidates.

    The caller resolves it by passing explicit rename hints to the diff.

    Attributes:
        scope: 'table' or the name of the table whose columns were matched
        name: The table or column with competing candidates
        candidates: Names that scored equally
    """

    code = "AMBIGUOUS_RENAME"

    def __init__(self, scope: str, name: str, candidates: Sequence[str]) -> None:
        self.scope = scope
        self.name = name
        self.candidates = list(candidates)
        what = "table" if scope == "table" else f"column in table '{scope}'"
        super().__init__(
            f"Cannot decide rename for {what} '{name}': candidates "
            f"{', '.join(sorted(self.candidates))} match equally well",
            details={"scope": scope, "name": name, "candidates": self.candidates},
        )


class EmptyDiffError(AuthoringError):
    code = "EMPTY_DIFF"

    def __init__(self, label: str) -> None:
        super().__init__(
            f"Nothing to record for '{label}': schema is unchanged",
            details={"label": label},
        )


class IrreversibleMigrationError(AuthoringError):
    """Down operations do not restore the prior snapshot."""

    code = "IRREVERSIBLE_MIGRATION"


# ============================================================================
# Store errors
# ============================================================================

class StoreError(StrataError):
    code = "STORE"


class CorruptMigrationError(StoreError):
    """A migration file cannot be parsed or fails checksum verification."""

    code = "CORRUPT_MIGRATION"


# ============================================================================
# Ordering errors
# ============================================================================

class OrderingError(StrataError):
    """
    Request violates migration ordering.

    Raised before any database mutation.
    """

    code = "ORDERING"


class NonContiguousHistoryError(OrderingError):
    code = "NON_CONTIGUOUS_HISTORY"


class NotLatestEntryError(OrderingError):
    code = "NOT_LATEST_ENTRY"

    def __init__(self, migration_id: str, latest: Optional[str]) -> None:
        self.latest = latest
        super().__init__(
            f"Cannot erase '{migration_id}': latest history entry is "
            f"{latest!r}",
            migration_id=migration_id,
            details={"latest": latest},
        )


class DuplicateHistoryEntryError(OrderingError):
    code = "DUPLICATE_HISTORY_ENTRY"

    def __init__(self, migration_id: str) -> None:
        super().__init__(
            f"Migration '{migration_id}' is already recorded as applied",
            migration_id=migration_id,
        )


class MigrationIsAppliedError(OrderingError):
    code = "MIGRATION_IS_APPLIED"

    def __init__(self, migration_id: str) -> None:
        super().__init__(
            f"Migration '{migration_id}' is applied to a target; "
            f"revert it before removing it",
            migration_id=migration_id,
        )


class NoMigrationsToRemoveError(OrderingError):
    code = "NO_MIGRATIONS_TO_REMOVE"

    def __init__(self) -> None:
        super().__init__("The migration store is empty")


class UnknownMigrationError(OrderingError):
    """An identifier is not present in the migration store."""

    code = "UNKNOWN_MIGRATION"

    def __init__(self, migration_id: str, reason: str = "") -> None:
        message = f"Migration '{migration_id}' is not in the migration store"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, migration_id=migration_id)


# ============================================================================
# Execution errors
# ============================================================================

class ExecutionError(StrataError):
    """
    Database Executor failure.

    Attributes:
        original_error: Underlying driver/SQLAlchemy exception, if any
    """

    code = "EXECUTION"

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.original_error = original_error
        super().__init__(message, details=details)


class SchemaConflictError(ExecutionError):
    """Object already exists, or does not exist when expected."""

    code = "SCHEMA_CONFLICT"


class TypeIncompatibleError(ExecutionError):
    code = "TYPE_INCOMPATIBLE"


class ConstraintViolationError(ExecutionError):
    code = "CONSTRAINT_VIOLATION"


class ConnectionLostError(ExecutionError):
    code = "CONNECTION_LOST"


class MigrationFailedError(StrataError):
    """
    A migration record failed to apply or revert.

    The record's transaction was rolled back and the history ledger is
    unchanged for it. Remaining records were not attempted.

    Attributes:
        cause: The ExecutionError that stopped the record
        operation_index: Index of the failing operation, if known
        direction: 'up' or 'down'
    """

    code = "MIGRATION_FAILED"

    def __init__(
        self,
        migration_id: str,
        cause: BaseException,
        operation_index: Optional[int] = None,
        direction: str = "up",
    ) -> None:
        self.cause = cause
        self.operation_index = operation_index
        self.direction = direction
        verb = "apply" if direction == "up" else "revert"
        where = "" if operation_index is None else f" at operation {operation_index}"
        super().__init__(
            f"Failed to {verb} migration '{migration_id}'{where}: {cause}",
            migration_id=migration_id,
            details={
                "operation_index": operation_index,
                "direction": direction,
                "cause": getattr(cause, "code", type(cause).__name__),
            },
        )


class PartialApplicationError(MigrationFailedError):
    """
    A record failed after some of its operations ran, on an executor
    without transactional DDL.

    Operations before ``operation_index`` may remain applied in the
    database even though the ledger was left untouched.
    """

    code = "PARTIAL_APPLICATION"

    def __init__(
        self,
        migration_id: str,
        cause: BaseException,
        operation_index: int,
        direction: str = "up",
    ) -> None:
        super().__init__(migration_id, cause, operation_index, direction)
        self.applied_operations = operation_index
        self.details["applied_operations"] = operation_index


# ============================================================================
# Concurrency errors
# ============================================================================

class MigrationLockHeldError(StrataError):
    code = "MIGRATION_LOCK_HELD"

    def __init__(self, holder: Optional[str] = None) -> None:
        self.holder = holder
        message = "Another migration run holds the lock on this target"
        if holder:
            message = f"{message} (holder: {holder})"
        super().__init__(message, details={"holder": holder})
