"""
Migration generation: turn a desired schema into a stored record.

The store's replayed snapshot is the starting point; nothing reads the
schema of a live database.
"""

import logging
from datetime import datetime
from typing import Optional

from strata.diff import DiffOptions, diff
from strata.errors import EmptyDiffError
from strata.migrations.migration import MigrationRecord
from strata.migrations.store import MigrationStore
from strata.migrations.validator import ensure_reversible
from strata.schema.model import Snapshot

logger = logging.getLogger(__name__)


def generate_migration(
    store: MigrationStore,
    desired: Snapshot,
    label: str,
    options: Optional[DiffOptions] = None,
    now: Optional[datetime] = None,
) -> MigrationRecord:
    """
    Diff the store's latest snapshot against ``desired`` and store the result.

    Args:
        store: Migration store to append to
        desired: Schema the new record must produce
        label: Human label for the identifier
        options: Rename detection settings and hints
        now: Clock reading for the identifier

    Returns:
        The stored MigrationRecord

    Raises:
        EmptyDiffError: If ``desired`` equals the current snapshot
        AmbiguousRenameError: If rename detection needs hints
        UnsupportedChangeError: If the change cannot be expressed
        IrreversibleMigrationError: If Down would not restore the schema
    """
    current = store.snapshot()
    result = diff(current, desired, options)
    if not result:
        raise EmptyDiffError(label)

    ensure_reversible(current, result.up, result.down)

    record = store.append(result.up, result.down, label, now=now)
    for op in record.up:
        logger.debug('  %s', op.describe())
    return record
