"""
Unit tests for the schema model.

Tests cover:
- Column type parsing and rendering
- Table and snapshot validation
- Order-independent structural equality
- Immutability
"""

import dataclasses

import pytest

from strata.errors import (
    DuplicateColumnNameError,
    DuplicateTableNameError,
    UnknownColumnError,
)
from strata.schema.model import ColumnType, ForeignKey, Index, Snapshot, Table, equals
from tests.fixtures.schemas import col, departments, employees, snapshot


class TestColumnType:
    """Test column type parsing."""

    def test_parse_plain_kind(self):
        assert ColumnType.parse('integer') == ColumnType('integer')

    def test_parse_size_and_scale(self):
        parsed = ColumnType.parse('decimal(10, 2)')
        assert parsed == ColumnType('decimal', 10, 2)
        assert str(parsed) == 'decimal(10,2)'

    def test_parse_is_case_insensitive(self):
        assert ColumnType.parse('STRING(255)') == ColumnType('string', 255)

    def test_render_round_trips(self):
        for text in ('text', 'string(255)', 'decimal(12,4)'):
            assert str(ColumnType.parse(text)) == text

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown column type"):
            ColumnType.parse('varchar2')

    def test_malformed_type_rejected(self):
        with pytest.raises(ValueError, match="Invalid column type"):
            ColumnType.parse('string(')

    def test_scale_without_size_rejected(self):
        with pytest.raises(ValueError):
            ColumnType('decimal', None, 2)


class TestTable:
    """Test table construction and equality."""

    def test_column_order_does_not_affect_equality(self):
        a = Table.build('T', [col('A'), col('B')])
        b = Table.build('T', [col('B'), col('A')])
        assert a == b
        assert hash(a) == hash(b)

    def test_declaration_order_is_kept(self):
        table = Table.build('T', [col('B'), col('A')])
        assert [c.name for c in table.columns] == ['B', 'A']

    def test_different_columns_are_not_equal(self):
        assert Table.build('T', [col('A')]) != Table.build('T', [col('A', 'integer')])

    def test_defaults_compare_by_type(self):
        assert col('A', 'integer', default=1) != col('A', 'integer', default=True)
        assert col('A', 'float', default=0.0) != col('A', 'float', default=0)
        assert col('A', 'integer', default=1) == col('A', 'integer', default=1)
        assert len({col('A', default=1), col('A', default=True)}) == 2

    def test_primary_key_order_matters(self):
        a = Table.build('T', [col('A'), col('B')], primary_key=['A', 'B'])
        b = Table.build('T', [col('A'), col('B')], primary_key=['B', 'A'])
        assert a != b

    def test_duplicate_column_rejected(self):
        with pytest.raises(DuplicateColumnNameError) as exc_info:
            Table.build('T', [col('A'), col('A', 'integer')])
        assert exc_info.value.table == 'T'
        assert exc_info.value.column == 'A'

    def test_primary_key_must_reference_columns(self):
        with pytest.raises(UnknownColumnError, match="Primary key"):
            Table.build('T', [col('A')], primary_key=['Missing'])

    def test_index_must_reference_columns(self):
        with pytest.raises(UnknownColumnError, match="ix_missing"):
            Table.build('T', [col('A')], indexes=[Index('ix_missing', ['B'])])

    def test_duplicate_index_name_rejected(self):
        with pytest.raises(ValueError, match="declared more than once"):
            Table.build(
                'T', [col('A')],
                indexes=[Index('ix_a', ['A']), Index('ix_a', ['A'], unique=True)],
            )

    def test_lookups(self):
        table = employees(indexes=[Index('ix_name', ['Name'])])
        assert table.column('Name').type == ColumnType('text')
        assert table.column('Missing') is None
        assert table.index('ix_name').columns == ('Name',)
        assert table.column_names == frozenset({'Id', 'Name'})

    def test_foreign_key_column_count_must_match(self):
        with pytest.raises(ValueError, match="maps 2 columns onto 1"):
            ForeignKey('fk', ['A', 'B'], 'Other', ['Id'])


class TestSnapshot:
    """Test snapshot construction and equality."""

    def test_empty_snapshot(self):
        empty = Snapshot.empty()
        assert len(empty) == 0
        assert empty.position == 0
        assert empty.table_names == ()

    def test_duplicate_table_rejected(self):
        with pytest.raises(DuplicateTableNameError) as exc_info:
            Snapshot.build([employees(), employees()])
        assert exc_info.value.code == 'DUPLICATE_TABLE_NAME'
        assert str(exc_info.value).startswith('[DUPLICATE_TABLE_NAME]')

    def test_duplicate_column_rejected(self):
        bad = Table(name='T', columns=(col('A'), col('A')))
        with pytest.raises(DuplicateColumnNameError):
            Snapshot.build([bad])

    def test_foreign_key_target_must_exist(self):
        orphan = employees(
            extra=[col('DeptId', 'integer')],
            foreign_keys=[ForeignKey('fk_dept', ['DeptId'], 'Departments', ['Id'])],
        )
        with pytest.raises(UnknownColumnError, match="missing table"):
            Snapshot.build([orphan])

    def test_foreign_key_target_column_must_exist(self):
        table = employees(
            extra=[col('DeptId', 'integer')],
            foreign_keys=[ForeignKey('fk_dept', ['DeptId'], 'Departments', ['Code'])],
        )
        with pytest.raises(UnknownColumnError):
            Snapshot.build([departments(), table])

    def test_equality_ignores_table_order_and_position(self):
        a = Snapshot.build([departments(), employees()], position=1)
        b = Snapshot.build([employees(), departments()], position=7)
        assert a == b
        assert equals(a, b)

    def test_inequality(self):
        assert not equals(snapshot(employees()), snapshot(employees('EmpName')))

    def test_table_lookup(self):
        snap = snapshot(employees(), departments())
        assert 'Employees' in snap
        assert 'Missing' not in snap
        assert snap.table('Departments') == departments()
        assert snap.table('Missing') is None
        assert snap.table_names == ('Employees', 'Departments')

    def test_at_position(self):
        snap = snapshot(employees())
        moved = snap.at_position(3)
        assert moved.position == 3
        assert snap.position == 0
        assert moved == snap

    def test_snapshots_are_frozen(self):
        snap = snapshot(employees())
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.position = 5
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.tables[0].name = 'Other'
