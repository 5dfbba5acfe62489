"""
History ledger: which migrations a target has had applied.

The ledger lives in a reserved table on the target database. Its layout
is a fixed contract shared with every tool version:

    __strata_history
        migration_id   text, primary key
        tool_version   text

Rows are append-only in identifier order. record() only accepts an
identifier sorting after the current maximum and erase() only removes
the current maximum, so the ledger behaves as a stack.

All methods take an open SQLAlchemy Connection; the caller owns the
transaction so that a ledger write commits or rolls back together with
the migration it describes.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, MetaData, String, Table, Text, delete, inspect, insert, select
from sqlalchemy.engine import Connection

from strata.errors import (
    DuplicateHistoryEntryError,
    NonContiguousHistoryError,
    NotLatestEntryError,
)
from strata.migrations.migration import HistoryEntry, migration_sort_key

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TABLE = '__strata_history'


class HistoryLedger:
    """
    Reads and writes the history table of one target.

    Attributes:
        table: SQLAlchemy Table describing the history table

    Example:
        ledger = HistoryLedger()
        with target.begin() as conn:
            ledger.record(conn, '20251124100000_create_employees', '0.1.0')
            ledger.applied_ids(conn)
            # ['20251124100000_create_employees']
    """

    def __init__(self, table_name: str = DEFAULT_HISTORY_TABLE):
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column('migration_id', String(150), primary_key=True),
            Column('tool_version', Text(), nullable=False),
        )
        # The persisted layout has no timestamp; keep the ones seen here
        self._applied_at: dict[str, datetime] = {}

    @property
    def table_name(self) -> str:
        return self.table.name

    def exists(self, conn: Connection) -> bool:
        return inspect(conn).has_table(self.table.name)

    def ensure_table(self, conn: Connection) -> None:
        """Create the history table if it does not exist yet."""
        if not self.exists(conn):
            self.table.create(conn)
            logger.info('Created history table %s', self.table.name)

    def applied_ids(self, conn: Connection) -> List[str]:
        """
        Applied identifiers in ascending order.

        Returns an empty list when the history table does not exist.
        """
        if not self.exists(conn):
            return []
        rows = conn.execute(select(self.table.c.migration_id)).scalars().all()
        return sorted(rows, key=migration_sort_key)

    def entries(self, conn: Connection) -> List[HistoryEntry]:
        """
        Full ledger rows in ascending order.

        ``applied_at`` is only known for entries recorded by this process.
        """
        if not self.exists(conn):
            return []
        rows = conn.execute(
            select(self.table.c.migration_id, self.table.c.tool_version)
        ).all()
        entries = [
            HistoryEntry(
                migration_id=row.migration_id,
                tool_version=row.tool_version,
                applied_at=self._applied_at.get(row.migration_id),
            )
            for row in rows
        ]
        return sorted(entries, key=lambda e: migration_sort_key(e.migration_id))

    def latest(self, conn: Connection) -> Optional[str]:
        ids = self.applied_ids(conn)
        return ids[-1] if ids else None

    def record(self, conn: Connection, migration_id: str, tool_version: str) -> HistoryEntry:
        """
        Append one entry.

        Args:
            conn: Connection inside the migration's transaction
            migration_id: Identifier being recorded
            tool_version: Version tag of the applying tool

        Returns:
            The new HistoryEntry

        Raises:
            DuplicateHistoryEntryError: If the identifier is already recorded
            NonContiguousHistoryError: If it does not sort after the
                current maximum
        """
        self.ensure_table(conn)
        ids = self.applied_ids(conn)
        if migration_id in ids:
            raise DuplicateHistoryEntryError(migration_id)
        if ids and migration_sort_key(migration_id) <= migration_sort_key(ids[-1]):
            raise NonContiguousHistoryError(
                f"Cannot record '{migration_id}': it does not sort after the "
                f"latest applied migration '{ids[-1]}'",
                migration_id=migration_id,
                details={'latest': ids[-1]},
            )

        conn.execute(
            insert(self.table).values(migration_id=migration_id, tool_version=tool_version)
        )
        applied_at = datetime.now(timezone.utc)
        self._applied_at[migration_id] = applied_at
        logger.debug('Recorded %s in %s', migration_id, self.table.name)
        return HistoryEntry(migration_id, tool_version, applied_at)

    def erase(self, conn: Connection, migration_id: str) -> None:
        """
        Remove the most recent entry.

        Raises:
            NotLatestEntryError: If ``migration_id`` is not the current maximum
        """
        latest = self.latest(conn)
        if latest != migration_id:
            raise NotLatestEntryError(migration_id, latest)

        conn.execute(delete(self.table).where(self.table.c.migration_id == migration_id))
        self._applied_at.pop(migration_id, None)
        logger.debug('Erased %s from %s', migration_id, self.table.name)
