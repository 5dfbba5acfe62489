"""
Immutable schema model: columns, tables and snapshots.

A Snapshot describes the whole schema at one point in the migration
history. Values are frozen; every change goes through an operation that
produces a new value (see strata.schema.operations).

Equality is structural and order-independent: two tables with the same
columns declared in a different order are equal. Declaration order is
still kept because it drives deterministic CREATE TABLE output.

Usage:
    from strata.schema.model import Column, ColumnType, Snapshot, Table

    employees = Table.build(
        'Employees',
        columns=[
            Column('Id', ColumnType('integer'), nullable=False),
            Column('Name', ColumnType('text')),
        ],
        primary_key=['Id'],
    )
    snapshot = Snapshot.build([employees])
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Iterator, Optional

from strata.errors import (
    DuplicateColumnNameError,
    DuplicateTableNameError,
    UnknownColumnError,
)


TYPE_KINDS = frozenset({
    'integer',
    'biginteger',
    'smallinteger',
    'text',
    'string',
    'float',
    'decimal',
    'boolean',
    'date',
    'datetime',
    'time',
    'binary',
    'json',
    'uuid',
})

_TYPE_PATTERN = re.compile(
    r'^\s*([a-z]+)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?\s*$'
)


@dataclass(frozen=True)
class ColumnType:
    """
    Semantic column type with optional precision.

    Attributes:
        kind: Type tag, one of TYPE_KINDS
        size: Length for strings, precision for decimals
        scale: Scale for decimals

    Example:
        >>> ColumnType.parse('decimal(10, 2)')
        ColumnType(kind='decimal', size=10, scale=2)
        >>> str(ColumnType('string', 255))
        'string(255)'
    """

    kind: str
    size: Optional[int] = None
    scale: Optional[int] = None

    def __post_init__(self):
        if self.kind not in TYPE_KINDS:
            raise ValueError(
                f"Unknown column type '{self.kind}'. "
                f"Valid types: {', '.join(sorted(TYPE_KINDS))}"
            )
        if self.scale is not None and self.size is None:
            raise ValueError(f"Type '{self.kind}' has a scale but no size")

    @classmethod
    def parse(cls, text: str) -> 'ColumnType':
        """Parse 'kind', 'kind(size)' or 'kind(size, scale)'."""
        match = _TYPE_PATTERN.match(text.lower())
        if not match:
            raise ValueError(f"Invalid column type: {text!r}")
        kind, size, scale = match.groups()
        return cls(
            kind,
            int(size) if size is not None else None,
            int(scale) if scale is not None else None,
        )

    def __str__(self) -> str:
        if self.size is None:
            return self.kind
        if self.scale is None:
            return f'{self.kind}({self.size})'
        return f'{self.kind}({self.size},{self.scale})'


@dataclass(frozen=True)
class Column:
    """
    Column definition.

    Attributes:
        name: Column name, unique within its table
        type: Semantic column type
        nullable: Whether NULL is allowed
        default: Optional default value (str, int, float or bool)
    """

    name: str
    type: ColumnType
    nullable: bool = True
    default: Any = None

    def renamed(self, name: str) -> 'Column':
        return replace(self, name=name)

    @property
    def default_key(self):
        """Default compared by type as well as value, so 1, 1.0 and True differ."""
        return (type(self.default).__name__, self.default)

    def same_definition(self, other: 'Column') -> bool:
        """True if both columns differ at most by name."""
        return (
            self.type == other.type
            and self.nullable == other.nullable
            and self.default_key == other.default_key
        )

    def __eq__(self, other):
        if not isinstance(other, Column):
            return NotImplemented
        return self.name == other.name and self.same_definition(other)

    def __hash__(self):
        return hash((self.name, self.type, self.nullable, self.default_key))


@dataclass(frozen=True)
class Index:
    name: str
    columns: tuple[str, ...]
    unique: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'columns', tuple(self.columns))


@dataclass(frozen=True)
class ForeignKey:
    name: str
    columns: tuple[str, ...]
    target_table: str
    target_columns: tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, 'columns', tuple(self.columns))
        object.__setattr__(self, 'target_columns', tuple(self.target_columns))
        if len(self.columns) != len(self.target_columns):
            raise ValueError(
                f"Foreign key '{self.name}' maps {len(self.columns)} columns "
                f"onto {len(self.target_columns)}"
            )


@dataclass(frozen=True, eq=False)
class Table:
    """
    Table definition.

    Columns, indexes and foreign keys keep their declaration order but
    compare as sets keyed by name. Use Table.build() to validate a
    definition; the plain constructor trusts its input.
    """

    name: str
    columns: tuple[Column, ...] = ()
    primary_key: tuple[str, ...] = ()
    indexes: tuple[Index, ...] = ()
    foreign_keys: tuple[ForeignKey, ...] = ()

    @classmethod
    def build(
        cls,
        name: str,
        columns: Iterable[Column],
        primary_key: Iterable[str] = (),
        indexes: Iterable[Index] = (),
        foreign_keys: Iterable[ForeignKey] = (),
    ) -> 'Table':
        """
        Build a validated table.

        Raises:
            DuplicateColumnNameError: If two columns share a name
            UnknownColumnError: If the primary key, an index or a foreign
                key references a column the table does not declare
            ValueError: If two indexes or foreign keys share a name
        """
        columns = tuple(columns)
        seen = set()
        for column in columns:
            if column.name in seen:
                raise DuplicateColumnNameError(name, column.name)
            seen.add(column.name)

        table = cls(
            name=name,
            columns=columns,
            primary_key=tuple(primary_key),
            indexes=tuple(indexes),
            foreign_keys=tuple(foreign_keys),
        )
        table.validate()
        return table

    def validate(self) -> None:
        names = self.column_names
        for column in self.primary_key:
            if column not in names:
                raise UnknownColumnError(self.name, column, 'Primary key')
        for kind, items in (('Index', self.indexes), ('Foreign key', self.foreign_keys)):
            item_names = set()
            for item in items:
                if item.name in item_names:
                    raise ValueError(
                        f"{kind} '{item.name}' is declared more than once "
                        f"in table '{self.name}'"
                    )
                item_names.add(item.name)
                for column in item.columns:
                    if column not in names:
                        raise UnknownColumnError(
                            self.name, column, f"{kind} '{item.name}'"
                        )

    @property
    def column_names(self) -> frozenset:
        return frozenset(c.name for c in self.columns)

    def column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def index(self, name: str) -> Optional[Index]:
        for index in self.indexes:
            if index.name == name:
                return index
        return None

    def foreign_key(self, name: str) -> Optional[ForeignKey]:
        for fk in self.foreign_keys:
            if fk.name == name:
                return fk
        return None

    def evolve(self, **changes) -> 'Table':
        return replace(self, **changes)

    def _key(self):
        return (
            self.name,
            frozenset(self.columns),
            self.primary_key,
            frozenset(self.indexes),
            frozenset(self.foreign_keys),
        )

    def __eq__(self, other):
        if not isinstance(other, Table):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self) -> str:
        return f"<Table({self.name}, {len(self.columns)} columns)>"


@dataclass(frozen=True, eq=False)
class Snapshot:
    """
    The schema at one position in migration history.

    Attributes:
        tables: Tables in declaration order
        position: Number of migration records replayed to reach it

    Position is bookkeeping, not structure: equality only compares
    tables. Position 0 with no tables is the empty snapshot every
    history starts from.
    """

    tables: tuple[Table, ...] = ()
    position: int = 0
    _by_name: dict = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'tables', tuple(self.tables))
        object.__setattr__(self, '_by_name', {t.name: t for t in self.tables})

    @classmethod
    def empty(cls) -> 'Snapshot':
        return cls()

    @classmethod
    def build(cls, tables: Iterable[Table], position: int = 0) -> 'Snapshot':
        """
        Construct a snapshot from a validated table set.

        Raises:
            DuplicateTableNameError: If two tables share a name
            DuplicateColumnNameError: If a table repeats a column name
            UnknownColumnError: If a key references a missing column
        """
        tables = tuple(tables)
        seen = set()
        for table in tables:
            if table.name in seen:
                raise DuplicateTableNameError(table.name)
            seen.add(table.name)
            column_names = set()
            for column in table.columns:
                if column.name in column_names:
                    raise DuplicateColumnNameError(table.name, column.name)
                column_names.add(column.name)
            table.validate()

        for table in tables:
            for fk in table.foreign_keys:
                target = next((t for t in tables if t.name == fk.target_table), None)
                if target is None:
                    raise UnknownColumnError(
                        fk.target_table, fk.target_columns[0],
                        f"Foreign key '{fk.name}' (missing table)",
                    )
                for column in fk.target_columns:
                    if column not in target.column_names:
                        raise UnknownColumnError(
                            fk.target_table, column, f"Foreign key '{fk.name}'"
                        )

        return cls(tables=tables, position=position)

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self.tables)

    def table(self, name: str) -> Optional[Table]:
        return self._by_name.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Table]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    def at_position(self, position: int) -> 'Snapshot':
        return Snapshot(tables=self.tables, position=position)

    def __eq__(self, other):
        if not isinstance(other, Snapshot):
            return NotImplemented
        return frozenset(self.tables) == frozenset(other.tables)

    def __hash__(self):
        return hash(frozenset(self.tables))

    def __repr__(self) -> str:
        return f"<Snapshot(position={self.position}, tables={list(self.table_names)})>"


def equals(a: Snapshot, b: Snapshot) -> bool:
    """Structural, order-independent equality of two snapshots."""
    return a == b
