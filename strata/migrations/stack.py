"""
Stack manager: the only way to delete a migration record.

Records leave the store last-in first-out, and only once no target still
has the latest one applied. To drop an older record, revert and remove
the newer ones first.
"""

import logging
from typing import Iterable

from strata.errors import MigrationIsAppliedError, NoMigrationsToRemoveError
from strata.migrations.migration import MigrationRecord
from strata.migrations.store import MigrationStore

logger = logging.getLogger(__name__)


class StackManager:
    """
    Removes the latest record from a store.

    Example:
        with target.connect() as conn:
            applied = ledger.applied_ids(conn)
        StackManager(store).remove_last([applied])
    """

    def __init__(self, store: MigrationStore):
        self.store = store

    def remove_last(self, applied_id_sets: Iterable[Iterable[str]] = ()) -> MigrationRecord:
        """
        Delete the latest record.

        Args:
            applied_id_sets: Applied identifiers of every target the caller
                knows about, one collection per target ledger

        Returns:
            The removed record

        Raises:
            NoMigrationsToRemoveError: If the store is empty
            MigrationIsAppliedError: If any supplied ledger contains the
                latest record
        """
        latest = self.store.latest()
        if latest is None:
            raise NoMigrationsToRemoveError()

        for applied_ids in applied_id_sets:
            if latest.id in set(applied_ids):
                raise MigrationIsAppliedError(latest.id)

        removed = self.store.pop()
        logger.info('Removed latest migration %s', removed.id)
        return removed
