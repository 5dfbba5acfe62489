"""
Unit tests for the diff engine.

Tests cover:
- Empty diffs
- Table and column creation, drop and rename
- Rename hints and disabled detection
- Phase ordering for indexes and foreign keys
- Down as the exact inverse of Up
- Unsupported primary key changes
"""

import pytest

from strata.diff import DiffOptions, diff
from strata.errors import (
    AmbiguousRenameError,
    InvalidOperationError,
    UnsupportedChangeError,
)
from strata.schema.model import Index, Snapshot, Table
from strata.schema.operations import (
    AddColumn,
    AddIndex,
    AlterColumnType,
    CreateTable,
    DropColumn,
    DropForeignKey,
    DropIndex,
    DropTable,
    RenameColumn,
    RenameTable,
    apply_operations,
    invert_operations,
)
from tests.fixtures.schemas import (
    col,
    departments,
    employees,
    employees_v1,
    employees_v2,
    snapshot,
    with_department_fk,
)


def _kinds(ops):
    return [op.kind for op in ops]


def assert_round_trip(old, new, result):
    """Up takes old to new, Down takes new back to old."""
    assert apply_operations(old, result.up) == new
    assert apply_operations(new, result.down) == old
    assert result.down == invert_operations(result.up)


class TestBasicDiff:
    """Test diffs without renames."""

    def test_identical_snapshots_are_empty(self):
        result = diff(employees_v1(), employees_v1())
        assert result.is_empty
        assert not result

    def test_column_order_is_not_a_change(self):
        a = snapshot(Table.build('T', [col('A'), col('B')]))
        b = snapshot(Table.build('T', [col('B'), col('A')]))
        assert diff(a, b).is_empty

    def test_create_from_empty(self):
        result = diff(Snapshot.empty(), employees_v1())
        assert result.up == (CreateTable(employees()),)
        assert result.down == (DropTable(employees()),)

    def test_drop_everything(self):
        result = diff(employees_v1(), Snapshot.empty())
        assert result.up == (DropTable(employees()),)

    def test_add_column(self):
        new = snapshot(employees(extra=[col('Email')]))
        result = diff(employees_v1(), new)
        assert result.up == (AddColumn('Employees', col('Email')),)
        assert_round_trip(employees_v1(), new, result)

    def test_type_change_is_alter(self):
        new = snapshot(employees(extra=[col('Age', 'biginteger')]))
        old = snapshot(employees(extra=[col('Age', 'integer')]))
        result = diff(old, new)
        assert result.up == (
            AlterColumnType('Employees', col('Age', 'integer'), col('Age', 'biginteger')),
        )
        assert_round_trip(old, new, result)

    def test_nullability_change_is_alter(self):
        old = snapshot(employees(extra=[col('Email')]))
        new = snapshot(employees(extra=[col('Email', nullable=False)]))
        assert _kinds(diff(old, new).up) == ['alter_column_type']

    def test_default_type_change_is_alter(self):
        old = snapshot(employees(extra=[col('Active', 'integer', default=1)]))
        new = snapshot(employees(extra=[col('Active', 'integer', default=True)]))
        result = diff(old, new)
        assert result.up == (
            AlterColumnType(
                'Employees',
                col('Active', 'integer', default=1),
                col('Active', 'integer', default=True),
            ),
        )
        assert_round_trip(old, new, result)

    def test_new_tables_follow_declaration_order(self):
        new = snapshot(departments(), employees())
        result = diff(Snapshot.empty(), new)
        assert [op.table.name for op in result.up] == ['Departments', 'Employees']


class TestRenames:
    """Test rename detection and hints."""

    def test_column_rename_detected(self):
        result = diff(employees_v1(), employees_v2())
        assert result.up == (RenameColumn('Employees', 'Name', 'EmpName'),)
        assert result.down == (RenameColumn('Employees', 'EmpName', 'Name'),)

    def test_table_rename_detected(self):
        new = snapshot(employees(table_name='Staff'))
        result = diff(employees_v1(), new)
        assert result.up == (RenameTable('Employees', 'Staff'),)
        assert_round_trip(employees_v1(), new, result)

    def test_table_and_column_rename_together(self):
        old = snapshot(employees(extra=[col('Email'), col('Phone', 'string(20)')]))
        new = snapshot(employees(
            'FullName', table_name='Staff', extra=[col('Email'), col('Phone', 'string(20)')],
        ))
        result = diff(old, new)
        assert result.up == (
            RenameTable('Employees', 'Staff'),
            RenameColumn('Staff', 'Name', 'FullName'),
        )
        assert_round_trip(old, new, result)

    def test_dissimilar_table_is_drop_and_create(self):
        result = diff(employees_v1(), snapshot(departments()))
        assert _kinds(result.up) == ['create_table', 'drop_table']

    def test_type_change_prevents_column_rename(self):
        new = snapshot(employees('Code').evolve(
            columns=(col('Id', 'integer', nullable=False), col('Code', 'integer')),
        ))
        result = diff(employees_v1(), new)
        assert _kinds(result.up) == ['add_column', 'drop_column']

    def test_detection_disabled(self):
        result = diff(employees_v1(), employees_v2(), DiffOptions(detect_renames=False))
        assert result.up == (
            AddColumn('Employees', col('EmpName')),
            DropColumn('Employees', col('Name')),
        )

    def test_ambiguous_column_rename(self):
        new = snapshot(employees('First', extra=[col('Last')]))
        with pytest.raises(AmbiguousRenameError):
            diff(employees_v1(), new)

    def test_hint_resolves_ambiguity(self):
        new = snapshot(employees('First', extra=[col('Last')]))
        options = DiffOptions(column_renames={'Employees': {'Name': 'Last'}})
        result = diff(employees_v1(), new, options)
        assert result.up == (
            RenameColumn('Employees', 'Name', 'Last'),
            AddColumn('Employees', col('First')),
        )
        assert_round_trip(employees_v1(), new, result)

    def test_hint_applies_with_detection_disabled(self):
        new = snapshot(employees(table_name='People', extra=[col('Extra1'), col('Extra2')]))
        options = DiffOptions(detect_renames=False, table_renames={'Employees': 'People'})
        result = diff(employees_v1(), new, options)
        assert _kinds(result.up) == ['rename_table', 'add_column', 'add_column']

    def test_hint_for_unknown_table_rejected(self):
        options = DiffOptions(table_renames={'Missing': 'Staff'})
        with pytest.raises(InvalidOperationError, match="does not match"):
            diff(employees_v1(), snapshot(employees(table_name='Staff')), options)

    def test_column_hint_keyed_by_old_table_name_rejected(self):
        new = snapshot(employees('First', table_name='Staff'))
        options = DiffOptions(
            table_renames={'Employees': 'Staff'},
            column_renames={'Employees': {'Name': 'First'}},
        )
        with pytest.raises(InvalidOperationError, match="not kept by this diff"):
            diff(employees_v1(), new, options)

    def test_column_hint_for_created_table_rejected(self):
        options = DiffOptions(column_renames={'Departments': {'Title': 'Name'}})
        new = snapshot(employees(), departments())
        with pytest.raises(InvalidOperationError, match="Departments"):
            diff(employees_v1(), new, options)


class TestOrdering:
    """Test that phase order keeps every step valid."""

    def test_index_dropped_before_its_column(self):
        old = snapshot(employees(
            extra=[col('Email')], indexes=[Index('ix_email', ['Email'])],
        ))
        result = diff(old, employees_v1())
        assert _kinds(result.up) == ['drop_index', 'drop_column']
        assert_round_trip(old, employees_v1(), result)

    def test_index_added_after_its_column(self):
        new = snapshot(employees(
            extra=[col('Email')], indexes=[Index('ix_email', ['Email'], unique=True)],
        ))
        result = diff(employees_v1(), new)
        assert _kinds(result.up) == ['add_column', 'add_index']
        assert _kinds(result.down) == ['drop_index', 'drop_column']

    def test_index_follows_renamed_column(self):
        old = snapshot(employees(indexes=[Index('ix_name', ['Name'])]))
        new = snapshot(employees('EmpName', indexes=[Index('ix_name', ['EmpName'])]))
        result = diff(old, new)
        assert result.up == (RenameColumn('Employees', 'Name', 'EmpName'),)

    def test_changed_index_is_dropped_and_recreated(self):
        old = snapshot(employees(indexes=[Index('ix_name', ['Name'])]))
        new = snapshot(employees(indexes=[Index('ix_name', ['Name'], unique=True)]))
        result = diff(old, new)
        assert result.up == (
            DropIndex('Employees', Index('ix_name', ['Name'])),
            AddIndex('Employees', Index('ix_name', ['Name'], unique=True)),
        )

    def test_foreign_key_removed_with_referenced_table(self):
        old = with_department_fk()
        new = snapshot(employees(
            extra=[col('DeptId', 'integer')],
            indexes=[Index('ix_employees_dept', ['DeptId'])],
        ))
        result = diff(old, new)
        assert isinstance(result.up[0], DropForeignKey)
        assert isinstance(result.up[-1], DropTable)
        assert_round_trip(old, new, result)

    def test_foreign_key_created_with_tables(self):
        result = diff(Snapshot.empty(), with_department_fk())
        assert _kinds(result.up) == ['create_table', 'create_table']
        assert_round_trip(Snapshot.empty(), with_department_fk(), result)

    def test_mixed_changes_round_trip(self):
        old = snapshot(
            departments(),
            employees(extra=[col('Age', 'integer'), col('Email', 'string(255)')],
                      indexes=[Index('ix_email', ['Email'])]),
        )
        new = snapshot(
            employees('EmpName', table_name='Employees',
                      extra=[col('Age', 'biginteger'), col('Phone', 'string(20)')]),
            Table.build('Projects', [col('Id', 'integer', nullable=False)], primary_key=['Id']),
        )
        result = diff(old, new)
        assert_round_trip(old, new, result)


class TestUnsupportedChanges:
    """Test changes outside the operation set."""

    def test_primary_key_change_rejected(self):
        old = snapshot(employees())
        new = snapshot(employees().evolve(primary_key=('Id', 'Name')))
        with pytest.raises(UnsupportedChangeError, match="Primary key"):
            diff(old, new)
