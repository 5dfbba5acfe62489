"""
Schema model, operations and their serialized form.

This package provides:
- Column, ColumnType, Index, ForeignKey, Table, Snapshot: immutable model
- Operation variants and apply/invert helpers
- Dict/YAML serialization and the schema declaration loader
"""

from .model import Column, ColumnType, ForeignKey, Index, Snapshot, Table, equals
from .operations import (
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
from .loader import load_schema, snapshot_from_dict, snapshot_to_dict

__all__ = [
    'Column',
    'ColumnType',
    'ForeignKey',
    'Index',
    'Snapshot',
    'Table',
    'equals',
    'Operation',
    'CreateTable',
    'DropTable',
    'RenameTable',
    'AddColumn',
    'DropColumn',
    'RenameColumn',
    'AlterColumnType',
    'AddIndex',
    'DropIndex',
    'AddForeignKey',
    'DropForeignKey',
    'apply_operation',
    'apply_operations',
    'invert_operations',
    'load_schema',
    'snapshot_from_dict',
    'snapshot_to_dict',
]
