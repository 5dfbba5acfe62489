"""
Diff engine: the ordered operations turning one snapshot into another.

Operations are emitted in phases so every step is valid against the
schema produced by the previous ones:

    1. CreateTable for new tables (new schema's declaration order)
    2. RenameTable for detected or hinted table renames
    3. DropForeignKey / DropIndex for keys and indexes that no longer
       match, on surviving tables
    4. Column operations per surviving table: RenameColumn, AddColumn,
       AlterColumnType, DropColumn
    5. AddIndex / AddForeignKey on surviving tables
    6. DropTable for removed tables

Indexes and foreign keys are compared only after table and column
renames are resolved, so a renamed column keeps its index. Removals run
before column changes so a column is never dropped while still indexed;
additions run after so new columns exist before they are indexed.

Each operation is applied to a working copy of the old snapshot as it is
emitted. The diff ends by checking that the working copy equals the new
snapshot, and Down is the exact inversion of Up.

Usage:
    from strata.diff import diff

    result = diff(old_snapshot, new_snapshot)
    for op in result.up:
        print(op.describe())
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from strata.diff.matching import (
    DEFAULT_COLUMN_THRESHOLD,
    DEFAULT_TABLE_THRESHOLD,
    column_similarity,
    match_renames,
    table_similarity,
)
from strata.errors import InvalidOperationError, UnsupportedChangeError
from strata.schema.model import Snapshot, Table
from strata.schema.operations import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    AlterColumnType,
    CreateTable,
    DropColumn,
    DropForeignKey,
    DropIndex,
    DropTable,
    Operation,
    RenameColumn,
    RenameTable,
    apply_operation,
    apply_operations,
    invert_operations,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffOptions:
    """
    Rename detection settings.

    Attributes:
        detect_renames: Use the similarity heuristic at all
        table_threshold: Minimum column-name overlap for a table rename
        column_threshold: Minimum score for a column rename
        table_renames: Explicit table renames, old name -> new name
        column_renames: Explicit column renames per table, keyed by the
            table's name in the new schema: {table: {old: new}}
    """

    detect_renames: bool = True
    table_threshold: float = DEFAULT_TABLE_THRESHOLD
    column_threshold: float = DEFAULT_COLUMN_THRESHOLD
    table_renames: Mapping[str, str] = field(default_factory=dict)
    column_renames: Mapping[str, Mapping[str, str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DiffResult:
    """Forward operations and their exact inverse."""

    up: tuple = ()
    down: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not self.up and not self.down

    def __bool__(self) -> bool:
        return not self.is_empty


def _check_hints(kind: str, hints: Mapping[str, str], removed: list, added: list) -> None:
    for old, new in hints.items():
        if old not in removed or new not in added:
            raise InvalidOperationError(
                f"Rename hint {kind} '{old}' -> '{new}' does not match a removed "
                f"and an added {kind}",
                details={'old': old, 'new': new},
            )


def _resolve_renames(
    kind: str,
    removed: list,
    added: list,
    hints: Mapping[str, str],
    similarity,
    threshold: float,
    detect: bool,
    scope: str,
) -> list[tuple[str, str]]:
    _check_hints(kind, hints, removed, added)
    renames = list(hints.items())
    if detect:
        hinted_new = set(hints.values())
        renames.extend(match_renames(
            [n for n in removed if n not in hints],
            [n for n in added if n not in hinted_new],
            similarity,
            threshold,
            scope=scope,
        ))
    renames.sort(key=lambda pair: removed.index(pair[0]))
    return renames


class _Builder:
    """Accumulates operations while tracking the evolving schema."""

    def __init__(self, start: Snapshot):
        self.working = start
        self.operations: list[Operation] = []

    def emit(self, op: Operation) -> None:
        self.working = apply_operation(self.working, op)
        self.operations.append(op)

    def table(self, name: str) -> Table:
        return self.working.table(name)


def diff(
    old: Snapshot,
    new: Snapshot,
    options: Optional[DiffOptions] = None,
) -> DiffResult:
    """
    Compute the ordered operations transforming ``old`` into ``new``.

    Args:
        old: Snapshot the migration starts from
        new: Snapshot the migration must produce
        options: Rename detection settings and hints

    Returns:
        DiffResult with Up operations and their inverse as Down

    Raises:
        AmbiguousRenameError: If rename detection finds equally good
            candidates; resolve with DiffOptions hints
        UnsupportedChangeError: If a surviving table's primary key changes
        InvalidOperationError: If a rename hint names unknown objects
    """
    options = options or DiffOptions()
    builder = _Builder(old)

    # Table identities
    removed = [n for n in old.table_names if n not in new]
    added = [n for n in new.table_names if n not in old]
    table_renames = _resolve_renames(
        'table', removed, added, options.table_renames,
        lambda o, n: table_similarity(old.table(o), new.table(n)),
        options.table_threshold, options.detect_renames, scope='table',
    )
    renamed_to = {new_name for _, new_name in table_renames}
    renamed_from = {old_name for old_name, _ in table_renames}

    # Phase 1: new tables
    created = [n for n in added if n not in renamed_to]
    for name in created:
        builder.emit(CreateTable(new.table(name)))

    # Phase 2: table renames
    for old_name, new_name in table_renames:
        logger.debug('Detected table rename %s -> %s', old_name, new_name)
        builder.emit(RenameTable(old_name, new_name))

    surviving = [n for n in new.table_names if n not in created]
    unknown = [t for t in options.column_renames if t not in surviving]
    if unknown:
        raise InvalidOperationError(
            f"Column rename hints name tables that are not kept by this diff: "
            f"{', '.join(sorted(unknown))}. Key hints by the table's new name",
            details={'tables': sorted(unknown)},
        )

    # Column identities and the per-table shape after column renames
    column_plans = {}
    for name in surviving:
        current = builder.table(name)
        target = new.table(name)
        removed_cols = [c.name for c in current.columns if target.column(c.name) is None]
        added_cols = [c.name for c in target.columns if current.column(c.name) is None]
        column_renames = _resolve_renames(
            'column', removed_cols, added_cols, options.column_renames.get(name, {}),
            lambda o, n, current=current, target=target: column_similarity(
                current.column(o), target.column(n)
            ),
            options.column_threshold, options.detect_renames, scope=name,
        )
        rename_ops = [RenameColumn(name, o, n) for o, n in column_renames]
        renamed_view = apply_operations(Snapshot((current,)), rename_ops).table(name)
        if renamed_view.primary_key != target.primary_key:
            raise UnsupportedChangeError(
                f"Primary key of table '{name}' changes from "
                f"{list(renamed_view.primary_key)} to {list(target.primary_key)}",
                details={'table': name},
            )
        column_plans[name] = (rename_ops, renamed_view)

    # Phase 3: stale foreign keys and indexes
    for name in surviving:
        _, renamed_view = column_plans[name]
        target = new.table(name)
        current = builder.table(name)
        for fk in renamed_view.foreign_keys:
            if target.foreign_key(fk.name) != fk:
                builder.emit(DropForeignKey(name, current.foreign_key(fk.name)))
        for index in renamed_view.indexes:
            if target.index(index.name) != index:
                builder.emit(DropIndex(name, current.index(index.name)))

    # Phase 4: column operations
    for name in surviving:
        rename_ops, _ = column_plans[name]
        target = new.table(name)
        for op in rename_ops:
            builder.emit(op)
        current = builder.table(name)
        for column in target.columns:
            if current.column(column.name) is None:
                builder.emit(AddColumn(name, column))
        for column in target.columns:
            before = current.column(column.name)
            if before is not None and before != column:
                builder.emit(AlterColumnType(name, before, column))
        for column in current.columns:
            if target.column(column.name) is None:
                builder.emit(DropColumn(name, column))

    # Phase 5: new indexes and foreign keys
    for name in surviving:
        target = new.table(name)
        current = builder.table(name)
        for index in target.indexes:
            if current.index(index.name) != index:
                builder.emit(AddIndex(name, index))
        for fk in target.foreign_keys:
            if current.foreign_key(fk.name) != fk:
                builder.emit(AddForeignKey(name, fk))

    # Phase 6: removed tables
    for name in removed:
        if name not in renamed_from:
            builder.emit(DropTable(builder.table(name)))

    if builder.working != new:
        raise UnsupportedChangeError(
            "Diff could not reconcile the schemas",
            details={'tables': list(new.table_names)},
        )

    up = tuple(builder.operations)
    logger.debug('Diff produced %d operations', len(up))
    return DiffResult(up=up, down=invert_operations(up))
