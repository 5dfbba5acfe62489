"""
Plain-dict form of schema objects and operations.

The same dict shape is used by schema declaration files and by migration
record files, so both can be written as YAML or JSON:

    {'name': 'Employees',
     'columns': [{'name': 'Id', 'type': 'integer', 'nullable': False}],
     'primary_key': ['Id'],
     'indexes': [{'name': 'ix_name', 'columns': ['Name'], 'unique': False}],
     'foreign_keys': []}

Operations are dicts with an 'op' tag plus their fields.
"""

from typing import Any

from strata.schema.model import Column, ColumnType, ForeignKey, Index, Table
from strata.schema.operations import (
    OPERATION_TYPES,
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
)


_OPERATIONS_BY_KIND = {cls.kind: cls for cls in OPERATION_TYPES}


def column_to_dict(column: Column) -> dict:
    data = {'name': column.name, 'type': str(column.type), 'nullable': column.nullable}
    if column.default is not None:
        data['default'] = column.default
    return data


def column_from_dict(data: dict) -> Column:
    if 'name' not in data or 'type' not in data:
        raise ValueError(f"Column needs 'name' and 'type': {data!r}")
    default = data.get('default')
    if default is not None and not isinstance(default, (str, int, float, bool)):
        raise ValueError(
            f"Default for column '{data['name']}' must be a scalar, "
            f"got {type(default).__name__}"
        )
    return Column(
        name=str(data['name']),
        type=ColumnType.parse(str(data['type'])),
        nullable=bool(data.get('nullable', True)),
        default=default,
    )


def index_to_dict(index: Index) -> dict:
    return {'name': index.name, 'columns': list(index.columns), 'unique': index.unique}


def index_from_dict(data: dict) -> Index:
    return Index(str(data['name']), tuple(data['columns']), bool(data.get('unique', False)))


def foreign_key_to_dict(fk: ForeignKey) -> dict:
    return {
        'name': fk.name,
        'columns': list(fk.columns),
        'target_table': fk.target_table,
        'target_columns': list(fk.target_columns),
    }


def foreign_key_from_dict(data: dict) -> ForeignKey:
    return ForeignKey(
        str(data['name']),
        tuple(data['columns']),
        str(data['target_table']),
        tuple(data['target_columns']),
    )


def table_to_dict(table: Table) -> dict:
    data: dict[str, Any] = {
        'name': table.name,
        'columns': [column_to_dict(c) for c in table.columns],
    }
    if table.primary_key:
        data['primary_key'] = list(table.primary_key)
    if table.indexes:
        data['indexes'] = [index_to_dict(ix) for ix in table.indexes]
    if table.foreign_keys:
        data['foreign_keys'] = [foreign_key_to_dict(fk) for fk in table.foreign_keys]
    return data


def table_from_dict(data: dict) -> Table:
    """
    Build a validated Table from its dict form.

    Raises:
        DuplicateColumnNameError: On repeated column names
        UnknownColumnError: If keys reference undeclared columns
        ValueError: On malformed input
    """
    if 'name' not in data:
        raise ValueError(f"Table definition without a name: {data!r}")
    return Table.build(
        str(data['name']),
        columns=[column_from_dict(c) for c in data.get('columns') or []],
        primary_key=data.get('primary_key') or (),
        indexes=[index_from_dict(ix) for ix in data.get('indexes') or []],
        foreign_keys=[foreign_key_from_dict(fk) for fk in data.get('foreign_keys') or []],
    )


def operation_to_dict(op: Operation) -> dict:
    data: dict[str, Any] = {'op': op.kind}
    if isinstance(op, (CreateTable, DropTable)):
        data['table'] = table_to_dict(op.table)
    elif isinstance(op, RenameTable):
        data['old_name'] = op.old_name
        data['new_name'] = op.new_name
    elif isinstance(op, (AddColumn, DropColumn)):
        data['table'] = op.table_name
        data['column'] = column_to_dict(op.column)
    elif isinstance(op, RenameColumn):
        data['table'] = op.table_name
        data['old_name'] = op.old_name
        data['new_name'] = op.new_name
    elif isinstance(op, AlterColumnType):
        data['table'] = op.table_name
        data['before'] = column_to_dict(op.before)
        data['after'] = column_to_dict(op.after)
    elif isinstance(op, (AddIndex, DropIndex)):
        data['table'] = op.table_name
        data['index'] = index_to_dict(op.index)
    elif isinstance(op, (AddForeignKey, DropForeignKey)):
        data['table'] = op.table_name
        data['foreign_key'] = foreign_key_to_dict(op.foreign_key)
    else:
        raise TypeError(f"Not a schema operation: {op!r}")
    return data


def operation_from_dict(data: dict) -> Operation:
    """
    Rebuild an operation from its dict form.

    Raises:
        ValueError: Unknown 'op' tag or missing fields
    """
    kind = data.get('op')
    cls = _OPERATIONS_BY_KIND.get(kind)
    if cls is None:
        raise ValueError(f"Unknown operation kind: {kind!r}")

    try:
        if cls in (CreateTable, DropTable):
            return cls(table_from_dict(data['table']))
        if cls is RenameTable:
            return RenameTable(data['old_name'], data['new_name'])
        if cls in (AddColumn, DropColumn):
            return cls(data['table'], column_from_dict(data['column']))
        if cls is RenameColumn:
            return RenameColumn(data['table'], data['old_name'], data['new_name'])
        if cls is AlterColumnType:
            return AlterColumnType(
                data['table'],
                column_from_dict(data['before']),
                column_from_dict(data['after']),
            )
        if cls in (AddIndex, DropIndex):
            return cls(data['table'], index_from_dict(data['index']))
        return cls(data['table'], foreign_key_from_dict(data['foreign_key']))
    except KeyError as e:
        raise ValueError(f"Operation '{kind}' is missing field {e}") from e
