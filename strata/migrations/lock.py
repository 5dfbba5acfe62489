"""
Advisory lock serializing runners against one target.

The lock is a single-row table on the target itself:

    __strata_lock
        lock_id       integer, primary key (always 1)
        holder        text  (host:pid:token of the owning runner)
        acquired_at   datetime

Acquiring inserts the row in its own committed transaction; a second
runner finds the row (or hits the primary key) and fails fast with
MigrationLockHeldError instead of waiting. A crashed runner leaves the
row behind; force_release() clears it.
"""

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    insert,
    inspect,
    select,
)
from sqlalchemy.exc import IntegrityError, OperationalError

from strata.database import TargetDatabase
from strata.errors import MigrationLockHeldError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TABLE = '__strata_lock'
LOCK_ROW_ID = 1


def make_holder_token() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class AdvisoryLock:
    """
    Fail-fast lock held for the duration of an upgrade or downgrade.

    Example:
        lock = AdvisoryLock()
        with lock.hold(target):
            ...  # apply migrations
    """

    def __init__(self, table_name: str = DEFAULT_LOCK_TABLE):
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column('lock_id', Integer(), primary_key=True, autoincrement=False),
            Column('holder', String(255), nullable=False),
            Column('acquired_at', DateTime(timezone=True), nullable=False),
        )

    def _ensure_table(self, conn) -> None:
        if not inspect(conn).has_table(self.table.name):
            self.table.create(conn)

    def holder(self, target: TargetDatabase) -> Optional[str]:
        """Current holder token, or None when the lock is free."""
        with target.connect() as conn:
            if not inspect(conn).has_table(self.table.name):
                return None
            return conn.execute(
                select(self.table.c.holder).where(self.table.c.lock_id == LOCK_ROW_ID)
            ).scalar_one_or_none()

    def acquire(self, target: TargetDatabase) -> str:
        """
        Take the lock.

        Returns:
            Holder token to pass to release()

        Raises:
            MigrationLockHeldError: If another runner holds the lock
        """
        token = make_holder_token()
        try:
            with target.begin() as conn:
                self._ensure_table(conn)
                current = conn.execute(
                    select(self.table.c.holder).where(self.table.c.lock_id == LOCK_ROW_ID)
                ).scalar_one_or_none()
                if current is not None:
                    raise MigrationLockHeldError(current)
                conn.execute(
                    insert(self.table).values(
                        lock_id=LOCK_ROW_ID,
                        holder=token,
                        acquired_at=datetime.now(timezone.utc),
                    )
                )
        except IntegrityError as e:
            raise MigrationLockHeldError() from e
        except OperationalError as e:
            if 'locked' in str(e).lower():
                raise MigrationLockHeldError() from e
            raise

        logger.debug('Acquired migration lock on %s as %s', target, token)
        return token

    def release(self, target: TargetDatabase, token: str) -> None:
        with target.begin() as conn:
            result = conn.execute(
                delete(self.table).where(
                    self.table.c.lock_id == LOCK_ROW_ID,
                    self.table.c.holder == token,
                )
            )
        if result.rowcount == 0:
            logger.warning('Migration lock %s was already released', token)
        else:
            logger.debug('Released migration lock %s', token)

    @contextmanager
    def hold(self, target: TargetDatabase) -> Iterator[str]:
        token = self.acquire(target)
        try:
            yield token
        finally:
            self.release(target, token)

    def force_release(self, target: TargetDatabase) -> Optional[str]:
        """
        Clear the lock regardless of its holder.

        Only for recovering from a runner that died while holding it.

        Returns:
            The holder that was cleared, or None if the lock was free
        """
        holder = self.holder(target)
        if holder is None:
            return None
        with target.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.lock_id == LOCK_ROW_ID))
        logger.warning('Force-released migration lock held by %s', holder)
        return holder
