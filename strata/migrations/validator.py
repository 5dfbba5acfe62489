#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration validation for safety and compatibility checks.

Validates migration records for destructive operations, nullability
hazards, SQLite table rebuilds and reversibility. Provides warnings at
different severity levels (INFO, WARNING, ERROR).
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

from strata.errors import InvalidOperationError, IrreversibleMigrationError
from strata.migrations.migration import MigrationRecord
from strata.schema.model import Snapshot
from strata.schema.operations import (
    AddColumn,
    AddForeignKey,
    AlterColumnType,
    CreateTable,
    DropColumn,
    DropForeignKey,
    DropTable,
    Operation,
    RenameColumn,
    apply_operations,
)


class WarningLevel(Enum):
    """Severity levels for validation warnings."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ValidationWarning:
    """
    Warning from migration validation.

    Attributes:
        level: Severity level (INFO, WARNING, ERROR)
        message: Human-readable warning message
        migration_id: Migration that triggered the warning
        category: 'destructive', 'nullability', 'sqlite' or 'reversibility'

    Example:
        >>> warning = ValidationWarning(
        ...     level=WarningLevel.WARNING,
        ...     message="Drops column Employees.Name (data loss)",
        ...     migration_id="20251124100000_drop_name",
        ...     category="destructive"
        ... )
        >>> print(repr(warning))
        [WARNING] Migration 20251124100000_drop_name: Drops column Employees.Name (data loss)
    """
    level: WarningLevel
    message: str
    migration_id: str
    category: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'level': self.level.value,
            'message': self.message,
            'migration_id': self.migration_id,
            'category': self.category
        }

    def __repr__(self) -> str:
        return f"[{self.level.value}] Migration {self.migration_id}: {self.message}"


def ensure_reversible(
    before: Snapshot,
    up: Sequence[Operation],
    down: Sequence[Operation],
    migration_id: str = None,
) -> Snapshot:
    """
    Check that Down undoes Up exactly.

    Args:
        before: Snapshot the operations start from
        up: Forward operations
        down: Reverse operations

    Returns:
        The snapshot after Up

    Raises:
        IrreversibleMigrationError: If Up does not apply, Down does not
            apply, or Down does not restore ``before``
    """
    try:
        after = apply_operations(before, up)
        restored = apply_operations(after, down)
    except InvalidOperationError as e:
        raise IrreversibleMigrationError(
            f"Operations do not replay cleanly: {e.message}",
            migration_id=migration_id,
        ) from e

    if restored != before:
        raise IrreversibleMigrationError(
            "Down operations do not restore the schema before the migration",
            migration_id=migration_id,
        )
    return after


class MigrationValidator:
    """
    Validates migration records for safety and compatibility issues.

    Performs multiple validation checks:
    - Destructive operations (drop table, drop column, type changes)
    - Nullability hazards (NOT NULL tightening, NOT NULL without default)
    - SQLite table rebuilds (batch mode recreation)
    - Reversibility (Up then Down restores the prior snapshot)

    Attributes:
        db_type: Database dialect name ('sqlite', 'postgresql', etc.)

    Example:
        >>> validator = MigrationValidator(db_type='sqlite')
        >>> warnings = validator.validate_store(store)
        >>> errors = [w for w in warnings if w.level == WarningLevel.ERROR]
    """

    REBUILDING_OPERATIONS = (
        DropColumn,
        RenameColumn,
        AlterColumnType,
        AddForeignKey,
        DropForeignKey,
    )

    def __init__(self, db_type: str = 'sqlite'):
        self.db_type = db_type.lower()

    def validate_migration(self, record: MigrationRecord) -> List[ValidationWarning]:
        """
        Validate one record's Up operations.

        Args:
            record: Migration record to validate

        Returns:
            List of ValidationWarning objects (empty if no issues)
        """
        warnings = []
        warnings.extend(self._check_destructive_operations(record))
        warnings.extend(self._check_nullability(record))
        if self.db_type == 'sqlite':
            warnings.extend(self._check_sqlite_rebuilds(record))
        return warnings

    def check_reversible(self, before: Snapshot, record: MigrationRecord) -> List[ValidationWarning]:
        """
        Replay Up then Down from ``before``.

        Returns:
            List with an ERROR warning if the record is not reversible
        """
        try:
            ensure_reversible(before, record.up, record.down, record.id)
        except IrreversibleMigrationError as e:
            return [ValidationWarning(
                level=WarningLevel.ERROR,
                message=e.message,
                migration_id=record.id,
                category='reversibility'
            )]
        return []

    def validate_store(self, store) -> List[ValidationWarning]:
        """
        Validate every record in a store, replaying history as it goes.

        Stops replaying at the first record that is not reversible, since
        the snapshots after it are unreliable.
        """
        warnings = []
        snapshot = Snapshot.empty()
        for record in store.list():
            warnings.extend(self.validate_migration(record))
            problems = self.check_reversible(snapshot, record)
            warnings.extend(problems)
            if problems:
                break
            snapshot = apply_operations(snapshot, record.up, position=record.to_position)
        return warnings

    def _check_destructive_operations(self, record: MigrationRecord) -> List[ValidationWarning]:
        """
        Operations that destroy or may reject existing data.

        All generate WARNING level to allow execution with acknowledgment.
        """
        warnings = []
        for op in record.up:
            if isinstance(op, DropTable):
                message = (f"Drops table {op.table.name} (all table data will be deleted). "
                           f"Ensure data is backed up or no longer needed.")
            elif isinstance(op, DropColumn):
                message = (f"Drops column {op.table_name}.{op.column.name} (potential data loss). "
                           f"Ensure column data is no longer needed or backed up.")
            elif isinstance(op, AlterColumnType) and op.before.type != op.after.type:
                message = (f"Changes type of {op.table_name}.{op.after.name} from "
                           f"{op.before.type} to {op.after.type}; existing values may not convert.")
            else:
                continue
            warnings.append(ValidationWarning(
                level=WarningLevel.WARNING,
                message=message,
                migration_id=record.id,
                category='destructive'
            ))
        return warnings

    def _check_nullability(self, record: MigrationRecord) -> List[ValidationWarning]:
        warnings = []
        created = {op.table.name for op in record.up if isinstance(op, CreateTable)}
        for op in record.up:
            if isinstance(op, AlterColumnType) and op.before.nullable and not op.after.nullable:
                warnings.append(ValidationWarning(
                    level=WarningLevel.WARNING,
                    message=f"Makes {op.table_name}.{op.after.name} NOT NULL; "
                            f"fails if existing rows hold NULL.",
                    migration_id=record.id,
                    category='nullability'
                ))
            elif (
                isinstance(op, AddColumn)
                and not op.column.nullable
                and op.column.default is None
                and op.table_name not in created
            ):
                # SQLite rejects this even on an empty table
                level = WarningLevel.ERROR if self.db_type == 'sqlite' else WarningLevel.WARNING
                warnings.append(ValidationWarning(
                    level=level,
                    message=f"Adds NOT NULL column {op.table_name}.{op.column.name} "
                            f"without a default; existing rows cannot be filled.",
                    migration_id=record.id,
                    category='nullability'
                ))
        return warnings

    def _check_sqlite_rebuilds(self, record: MigrationRecord) -> List[ValidationWarning]:
        """
        SQLite has limited ALTER TABLE support: these operations rebuild
        the table (create copy, copy rows, drop, rename).
        """
        warnings = []
        seen = set()
        for op in record.up:
            if isinstance(op, self.REBUILDING_OPERATIONS) and op.table_name not in seen:
                seen.add(op.table_name)
                warnings.append(ValidationWarning(
                    level=WarningLevel.INFO,
                    message=f"Table {op.table_name} will be rebuilt on SQLite; "
                            f"duration grows with its row count.",
                    migration_id=record.id,
                    category='sqlite'
                ))
        return warnings
