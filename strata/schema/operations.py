"""
Schema operations and their pure application to snapshots.

Each operation carries exactly what is needed to apply it and to build
its inverse: drop operations capture the full definition they remove,
AlterColumnType keeps the column before and after the change.

apply_operations() is the reference semantics of an operation list. The
diff engine uses it to build migrations, the store uses it to replay
history, and tests use it to check round trips.
"""

from dataclasses import dataclass
from typing import ClassVar, Iterable, Sequence, Union

from strata.errors import InvalidOperationError
from strata.schema.model import Column, ForeignKey, Index, Snapshot, Table


@dataclass(frozen=True)
class CreateTable:
    kind: ClassVar[str] = 'create_table'
    table: Table

    @property
    def table_name(self) -> str:
        return self.table.name

    def invert(self) -> 'DropTable':
        return DropTable(self.table)

    def describe(self) -> str:
        return f"create table {self.table.name}"


@dataclass(frozen=True)
class DropTable:
    kind: ClassVar[str] = 'drop_table'
    table: Table

    @property
    def table_name(self) -> str:
        return self.table.name

    def invert(self) -> CreateTable:
        return CreateTable(self.table)

    def describe(self) -> str:
        return f"drop table {self.table.name}"


@dataclass(frozen=True)
class RenameTable:
    kind: ClassVar[str] = 'rename_table'
    old_name: str
    new_name: str

    @property
    def table_name(self) -> str:
        return self.old_name

    def invert(self) -> 'RenameTable':
        return RenameTable(self.new_name, self.old_name)

    def describe(self) -> str:
        return f"rename table {self.old_name} to {self.new_name}"


@dataclass(frozen=True)
class AddColumn:
    kind: ClassVar[str] = 'add_column'
    table_name: str
    column: Column

    def invert(self) -> 'DropColumn':
        return DropColumn(self.table_name, self.column)

    def describe(self) -> str:
        return f"add column {self.table_name}.{self.column.name}"


@dataclass(frozen=True)
class DropColumn:
    kind: ClassVar[str] = 'drop_column'
    table_name: str
    column: Column

    def invert(self) -> AddColumn:
        return AddColumn(self.table_name, self.column)

    def describe(self) -> str:
        return f"drop column {self.table_name}.{self.column.name}"


@dataclass(frozen=True)
class RenameColumn:
    kind: ClassVar[str] = 'rename_column'
    table_name: str
    old_name: str
    new_name: str

    def invert(self) -> 'RenameColumn':
        return RenameColumn(self.table_name, self.new_name, self.old_name)

    def describe(self) -> str:
        return f"rename column {self.table_name}.{self.old_name} to {self.new_name}"


@dataclass(frozen=True)
class AlterColumnType:
    """Change a column's type, nullability or default; the name stays."""

    kind: ClassVar[str] = 'alter_column_type'
    table_name: str
    before: Column
    after: Column

    def __post_init__(self):
        if self.before.name != self.after.name:
            raise ValueError(
                f"AlterColumnType cannot rename '{self.before.name}' "
                f"to '{self.after.name}'; use RenameColumn"
            )

    @property
    def column_name(self) -> str:
        return self.after.name

    def invert(self) -> 'AlterColumnType':
        return AlterColumnType(self.table_name, self.after, self.before)

    def describe(self) -> str:
        return (
            f"alter column {self.table_name}.{self.after.name} "
            f"{self.before.type}{'' if self.before.nullable else ' not null'} -> "
            f"{self.after.type}{'' if self.after.nullable else ' not null'}"
        )


@dataclass(frozen=True)
class AddIndex:
    kind: ClassVar[str] = 'add_index'
    table_name: str
    index: Index

    def invert(self) -> 'DropIndex':
        return DropIndex(self.table_name, self.index)

    def describe(self) -> str:
        return f"add index {self.index.name} on {self.table_name}"


@dataclass(frozen=True)
class DropIndex:
    kind: ClassVar[str] = 'drop_index'
    table_name: str
    index: Index

    def invert(self) -> AddIndex:
        return AddIndex(self.table_name, self.index)

    def describe(self) -> str:
        return f"drop index {self.index.name} on {self.table_name}"


@dataclass(frozen=True)
class AddForeignKey:
    kind: ClassVar[str] = 'add_foreign_key'
    table_name: str
    foreign_key: ForeignKey

    def invert(self) -> 'DropForeignKey':
        return DropForeignKey(self.table_name, self.foreign_key)

    def describe(self) -> str:
        return (
            f"add foreign key {self.foreign_key.name} on {self.table_name} "
            f"-> {self.foreign_key.target_table}"
        )


@dataclass(frozen=True)
class DropForeignKey:
    kind: ClassVar[str] = 'drop_foreign_key'
    table_name: str
    foreign_key: ForeignKey

    def invert(self) -> AddForeignKey:
        return AddForeignKey(self.table_name, self.foreign_key)

    def describe(self) -> str:
        return f"drop foreign key {self.foreign_key.name} on {self.table_name}"


Operation = Union[
    CreateTable,
    DropTable,
    RenameTable,
    AddColumn,
    DropColumn,
    RenameColumn,
    AlterColumnType,
    AddIndex,
    DropIndex,
    AddForeignKey,
    DropForeignKey,
]

OPERATION_TYPES = (
    CreateTable,
    DropTable,
    RenameTable,
    AddColumn,
    DropColumn,
    RenameColumn,
    AlterColumnType,
    AddIndex,
    DropIndex,
    AddForeignKey,
    DropForeignKey,
)


def invert_operations(operations: Sequence[Operation]) -> tuple:
    """
    Build the exact inverse of an operation list.

    Each operation is inverted and the list is reversed, so an index
    added after its column is dropped before that column.

    Example:
        >>> invert_operations([a, b, c])
        (c.invert(), b.invert(), a.invert())
    """
    return tuple(op.invert() for op in reversed(operations))


# ============================================================================
# Application
# ============================================================================

def _require_table(tables: dict, name: str, op: Operation) -> Table:
    table = tables.get(name)
    if table is None:
        raise InvalidOperationError(
            f"Cannot {op.describe()}: table '{name}' does not exist",
            details={'operation': op.kind, 'table': name},
        )
    return table


def _fail(op: Operation, reason: str, **details) -> InvalidOperationError:
    details['operation'] = op.kind
    return InvalidOperationError(f"Cannot {op.describe()}: {reason}", details=details)


def _rename_in(names: tuple, old: str, new: str) -> tuple:
    return tuple(new if n == old else n for n in names)


def _columns_referenced(table: Table, column: str) -> list[str]:
    users = []
    if column in table.primary_key:
        users.append('primary key')
    users.extend(f"index '{ix.name}'" for ix in table.indexes if column in ix.columns)
    users.extend(
        f"foreign key '{fk.name}'" for fk in table.foreign_keys if column in fk.columns
    )
    return users


def _apply_to_tables(tables: dict, op: Operation) -> None:
    """Apply one operation in place to an ordered name -> Table dict."""
    if isinstance(op, CreateTable):
        if op.table.name in tables:
            raise _fail(op, 'table already exists', table=op.table.name)
        tables[op.table.name] = op.table

    elif isinstance(op, DropTable):
        current = _require_table(tables, op.table.name, op)
        if current != op.table:
            raise _fail(
                op, 'captured definition does not match the current table',
                table=op.table.name,
            )
        del tables[op.table.name]

    elif isinstance(op, RenameTable):
        current = _require_table(tables, op.old_name, op)
        if op.new_name in tables:
            raise _fail(op, f"table '{op.new_name}' already exists", table=op.new_name)
        renamed = current.evolve(name=op.new_name)
        items = [(renamed.name, renamed) if name == op.old_name else (name, t)
                 for name, t in tables.items()]
        tables.clear()
        tables.update(items)

    elif isinstance(op, AddColumn):
        table = _require_table(tables, op.table_name, op)
        if table.column(op.column.name) is not None:
            raise _fail(op, 'column already exists', table=op.table_name)
        tables[op.table_name] = table.evolve(columns=table.columns + (op.column,))

    elif isinstance(op, DropColumn):
        table = _require_table(tables, op.table_name, op)
        current = table.column(op.column.name)
        if current is None:
            raise _fail(op, 'column does not exist', table=op.table_name)
        if current != op.column:
            raise _fail(
                op, 'captured definition does not match the current column',
                table=op.table_name,
            )
        users = _columns_referenced(table, op.column.name)
        if users:
            raise _fail(
                op, f"column is still used by {', '.join(users)}",
                table=op.table_name,
            )
        tables[op.table_name] = table.evolve(
            columns=tuple(c for c in table.columns if c.name != op.column.name)
        )

    elif isinstance(op, RenameColumn):
        table = _require_table(tables, op.table_name, op)
        if table.column(op.old_name) is None:
            raise _fail(op, 'column does not exist', table=op.table_name)
        if table.column(op.new_name) is not None:
            raise _fail(op, f"column '{op.new_name}' already exists", table=op.table_name)
        tables[op.table_name] = table.evolve(
            columns=tuple(
                c.renamed(op.new_name) if c.name == op.old_name else c
                for c in table.columns
            ),
            primary_key=_rename_in(table.primary_key, op.old_name, op.new_name),
            indexes=tuple(
                Index(ix.name, _rename_in(ix.columns, op.old_name, op.new_name), ix.unique)
                for ix in table.indexes
            ),
            foreign_keys=tuple(
                ForeignKey(
                    fk.name,
                    _rename_in(fk.columns, op.old_name, op.new_name),
                    fk.target_table,
                    fk.target_columns,
                )
                for fk in table.foreign_keys
            ),
        )

    elif isinstance(op, AlterColumnType):
        table = _require_table(tables, op.table_name, op)
        current = table.column(op.before.name)
        if current is None:
            raise _fail(op, 'column does not exist', table=op.table_name)
        if current != op.before:
            raise _fail(
                op, 'captured definition does not match the current column',
                table=op.table_name,
            )
        tables[op.table_name] = table.evolve(
            columns=tuple(op.after if c.name == op.after.name else c for c in table.columns)
        )

    elif isinstance(op, AddIndex):
        table = _require_table(tables, op.table_name, op)
        if table.index(op.index.name) is not None:
            raise _fail(op, 'index already exists', table=op.table_name)
        missing = [c for c in op.index.columns if c not in table.column_names]
        if missing:
            raise _fail(op, f"unknown columns {missing}", table=op.table_name)
        tables[op.table_name] = table.evolve(indexes=table.indexes + (op.index,))

    elif isinstance(op, DropIndex):
        table = _require_table(tables, op.table_name, op)
        if table.index(op.index.name) != op.index:
            raise _fail(op, 'index does not exist as captured', table=op.table_name)
        tables[op.table_name] = table.evolve(
            indexes=tuple(ix for ix in table.indexes if ix.name != op.index.name)
        )

    elif isinstance(op, AddForeignKey):
        table = _require_table(tables, op.table_name, op)
        if table.foreign_key(op.foreign_key.name) is not None:
            raise _fail(op, 'foreign key already exists', table=op.table_name)
        missing = [c for c in op.foreign_key.columns if c not in table.column_names]
        if missing:
            raise _fail(op, f"unknown columns {missing}", table=op.table_name)
        tables[op.table_name] = table.evolve(
            foreign_keys=table.foreign_keys + (op.foreign_key,)
        )

    elif isinstance(op, DropForeignKey):
        table = _require_table(tables, op.table_name, op)
        if table.foreign_key(op.foreign_key.name) != op.foreign_key:
            raise _fail(op, 'foreign key does not exist as captured', table=op.table_name)
        tables[op.table_name] = table.evolve(
            foreign_keys=tuple(
                fk for fk in table.foreign_keys if fk.name != op.foreign_key.name
            )
        )

    else:
        raise TypeError(f"Not a schema operation: {op!r}")


def apply_operation(snapshot: Snapshot, op: Operation) -> Snapshot:
    """Apply a single operation; position is carried over unchanged."""
    return apply_operations(snapshot, (op,), position=snapshot.position)


def apply_operations(
    snapshot: Snapshot,
    operations: Iterable[Operation],
    position: int = None,
) -> Snapshot:
    """
    Apply operations in order and return the resulting snapshot.

    Args:
        snapshot: Starting snapshot (never modified)
        operations: Operations to apply, in order
        position: Position of the result (defaults to the input's)

    Returns:
        New Snapshot

    Raises:
        InvalidOperationError: If an operation does not fit the schema
            it is applied to
    """
    tables = {t.name: t for t in snapshot.tables}
    for op in operations:
        _apply_to_tables(tables, op)
    return Snapshot(
        tables=tuple(tables.values()),
        position=snapshot.position if position is None else position,
    )
