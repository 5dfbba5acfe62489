"""
On-disk migration store.

One YAML file per migration record, named after its identifier:

    migrations/
        20251124100000_create_employees.yaml
        20251124100500_rename_name.yaml

File format:
    id: 20251124100000_create_employees
    label: create_employees
    from_position: 0
    to_position: 1
    tool_version: 0.1.0
    checksum: 9f2c...
    up:
      - op: create_table
        table: {name: Employees, columns: [...], primary_key: [Id]}
    down:
      - op: drop_table
        table: {name: Employees, ...}

The store is append-only with deletion restricted to the tail: append()
adds a record after the latest one and pop() removes the latest one.
There is no way to delete any other record.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

import yaml

from strata import __version__
from strata.errors import (
    CorruptMigrationError,
    EmptyDiffError,
    InvalidOperationError,
    NoMigrationsToRemoveError,
    UnknownMigrationError,
)
from strata.migrations.migration import (
    ZERO_ID,
    MigrationRecord,
    is_valid_migration_id,
    make_migration_id,
    migration_sort_key,
)
from strata.schema.model import Snapshot
from strata.schema.operations import Operation, apply_operations
from strata.schema.serialization import operation_from_dict, operation_to_dict

logger = logging.getLogger(__name__)


class MigrationStore:
    """
    Ordered catalog of migration records in a directory.

    Records are re-read from disk on every query so the store always
    reflects the files as they are. Every load verifies the record's
    checksum.

    Example:
        >>> store = MigrationStore(Path('migrations'))
        >>> record = store.append(result.up, result.down, 'create employees')
        >>> [r.id for r in store.list()]
        ['20251124100000_create_employees']
        >>> store.snapshot().table_names
        ('Employees',)
    """

    FILE_SUFFIX = '.yaml'

    def __init__(self, directory: Union[str, Path], tool_version: str = __version__):
        """
        Initialize migration store.

        Args:
            directory: Directory holding record files (created on first append)
            tool_version: Version written into new records
        """
        self.directory = Path(directory)
        self.tool_version = tool_version

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _path_for(self, migration_id: str) -> Path:
        return self.directory / f"{migration_id}{self.FILE_SUFFIX}"

    def load_record(self, path: Path) -> MigrationRecord:
        """
        Parse and verify one record file.

        Raises:
            CorruptMigrationError: If the file cannot be parsed, does not
                match its file name, or fails checksum verification
        """
        expected_id = path.stem
        try:
            data = yaml.safe_load(path.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise CorruptMigrationError(
                f"Cannot parse migration file {path.name}: {e}",
                migration_id=expected_id,
            ) from e

        if not isinstance(data, dict):
            raise CorruptMigrationError(
                f"Migration file {path.name} does not contain a mapping",
                migration_id=expected_id,
            )

        try:
            record = MigrationRecord(
                id=str(data['id']),
                label=str(data.get('label', '')),
                up=tuple(operation_from_dict(op) for op in data.get('up') or []),
                down=tuple(operation_from_dict(op) for op in data.get('down') or []),
                from_position=int(data['from_position']),
                to_position=int(data['to_position']),
                tool_version=str(data.get('tool_version', '')),
                checksum=str(data['checksum']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptMigrationError(
                f"Invalid migration file {path.name}: {e}",
                migration_id=expected_id,
            ) from e

        if record.id != expected_id:
            raise CorruptMigrationError(
                f"Migration file {path.name} declares id '{record.id}'",
                migration_id=expected_id,
            )

        if not record.verify_checksum():
            raise CorruptMigrationError(
                f"Checksum mismatch for migration '{record.id}': "
                f"file was modified after it was generated",
                migration_id=record.id,
                details={'file': str(path)},
            )

        return record

    def list(self) -> List[MigrationRecord]:
        """
        All records, ascending by identifier.

        Returns:
            List of MigrationRecord (empty if the directory is missing)

        Raises:
            CorruptMigrationError: If any record file is invalid
        """
        if not self.directory.exists():
            return []

        records = []
        for path in self.directory.glob(f"*{self.FILE_SUFFIX}"):
            if not is_valid_migration_id(path.stem):
                logger.warning('Skipping file with invalid migration name: %s', path.name)
                continue
            records.append(self.load_record(path))

        return sorted(records)

    def ids(self) -> List[str]:
        return [r.id for r in self.list()]

    def latest(self) -> Optional[MigrationRecord]:
        records = self.list()
        return records[-1] if records else None

    def get(self, migration_id: str) -> MigrationRecord:
        """
        Look up one record.

        Raises:
            UnknownMigrationError: If no such record exists
        """
        path = self._path_for(migration_id)
        if not is_valid_migration_id(migration_id) or not path.exists():
            raise UnknownMigrationError(migration_id)
        return self.load_record(path)

    def __contains__(self, migration_id: str) -> bool:
        return is_valid_migration_id(migration_id) and self._path_for(migration_id).exists()

    def __len__(self) -> int:
        return len(self.list())

    def snapshot(self, upto: Optional[str] = None) -> Snapshot:
        """
        Replay Up operations from the empty snapshot.

        Args:
            upto: Last record to include (inclusive); None means all,
                ZERO_ID means none

        Returns:
            Snapshot at the position of the last replayed record

        Raises:
            UnknownMigrationError: If ``upto`` is not in the store
            CorruptMigrationError: If a record does not apply to the
                schema its predecessors produce
        """
        if upto == ZERO_ID:
            return Snapshot.empty()

        records = self.list()
        if upto is not None:
            if upto not in {r.id for r in records}:
                raise UnknownMigrationError(upto)
            limit = migration_sort_key(upto)
            records = [r for r in records if r.sort_key <= limit]

        snapshot = Snapshot.empty()
        for record in records:
            snapshot = replay(snapshot, record)
        return snapshot

    # ------------------------------------------------------------------
    # Mutation (authoring workflow only)
    # ------------------------------------------------------------------

    def append(
        self,
        up: Sequence[Operation],
        down: Sequence[Operation],
        label: str,
        now: Optional[datetime] = None,
    ) -> MigrationRecord:
        """
        Store a new record after the current latest one.

        Args:
            up: Forward operations
            down: Reverse operations
            label: Human label, becomes part of the identifier
            now: Clock reading for the identifier (defaults to UTC now)

        Returns:
            The stored MigrationRecord

        Raises:
            EmptyDiffError: If both operation lists are empty
        """
        if not up and not down:
            raise EmptyDiffError(label)

        latest = self.latest()
        migration_id = make_migration_id(
            label, now=now, after=latest.id if latest else None
        )
        from_position = latest.to_position if latest else 0
        record = MigrationRecord(
            id=migration_id,
            label=migration_id.split('_', 1)[1],
            up=tuple(up),
            down=tuple(down),
            from_position=from_position,
            to_position=from_position + 1,
            tool_version=self.tool_version,
        )

        self.directory.mkdir(parents=True, exist_ok=True)
        self._write(record)
        logger.info(
            'Stored migration %s (%d up, %d down operations)',
            record.id, len(record.up), len(record.down),
        )
        return record

    def _write(self, record: MigrationRecord) -> None:
        data = {
            'id': record.id,
            'label': record.label,
            'from_position': record.from_position,
            'to_position': record.to_position,
            'tool_version': record.tool_version,
            'checksum': record.checksum,
            'up': [operation_to_dict(op) for op in record.up],
            'down': [operation_to_dict(op) for op in record.down],
        }
        path = self._path_for(record.id)
        tmp_path = path.with_suffix(path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        os.replace(tmp_path, path)

    def pop(self) -> MigrationRecord:
        """
        Remove the latest record.

        Returns:
            The removed record

        Raises:
            NoMigrationsToRemoveError: If the store is empty
        """
        latest = self.latest()
        if latest is None:
            raise NoMigrationsToRemoveError()
        self._path_for(latest.id).unlink()
        logger.info('Removed migration %s', latest.id)
        return latest


def replay(snapshot: Snapshot, record: MigrationRecord) -> Snapshot:
    """
    Apply one record's Up operations.

    Raises:
        CorruptMigrationError: If the operations do not fit ``snapshot``
    """
    try:
        return apply_operations(snapshot, record.up, position=record.to_position)
    except InvalidOperationError as e:
        raise CorruptMigrationError(
            f"Migration '{record.id}' does not apply to the schema before it: "
            f"{e.message}",
            migration_id=record.id,
        ) from e
