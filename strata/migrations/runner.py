#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration runner: apply and revert store records against a target.

Each record runs in its own transaction:

    BEGIN
      execute Up (or Down) operations in order
      ledger.record (or ledger.erase)
    COMMIT

Any failure rolls the transaction back, leaves the ledger as it was for
that record and halts the run: later records are not attempted. The
runner holds the target's advisory lock for the whole call so two
runners never interleave on one ledger.

Cancellation and timeouts are honoured only between records; a record
in flight always reaches commit or rollback first.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from strata import __version__
from strata.database import TargetDatabase
from strata.errors import (
    ConfigurationError,
    ExecutionError,
    MigrationFailedError,
    NonContiguousHistoryError,
    OrderingError,
    PartialApplicationError,
    UnknownMigrationError,
)
from strata.executor import DatabaseExecutor, translate_error
from strata.migrations.ledger import HistoryLedger
from strata.migrations.lock import AdvisoryLock
from strata.migrations.migration import (
    ZERO_ID,
    MigrationAttempt,
    MigrationRecord,
    MigrationState,
    MigrationStatus,
    migration_sort_key,
)
from strata.migrations.store import MigrationStore
from strata.schema.model import Snapshot


class DryRunRollbackError(Exception):
    """Exception raised to trigger rollback during dry-run mode."""
    pass


@dataclass
class RunResult:
    """
    Outcome of an upgrade or downgrade call.

    Attributes:
        direction: 'up' or 'down'
        attempts: One entry per record that was run, in run order
        snapshot: Schema the target is at after the call
        dry_run: Whether changes were rolled back
        cancelled: Whether the run stopped early on cancel or timeout
    """

    direction: str
    attempts: List[MigrationAttempt] = field(default_factory=list)
    snapshot: Snapshot = field(default_factory=Snapshot.empty)
    dry_run: bool = False
    cancelled: bool = False

    @property
    def migration_ids(self) -> List[str]:
        return [a.migration_id for a in self.attempts if a.state == MigrationState.APPLIED]


class MigrationRunner:
    """
    Applies store records to a target database.

    Attributes:
        store: Migration store providing the records
        executor: Database executor rendering operations
        ledger: History ledger of the target
        lock: Advisory lock held during upgrade/downgrade

    Example:
        runner = MigrationRunner(store, AlembicExecutor.for_target(target))
        result = runner.upgrade(target)
        print(result.migration_ids)

        runner.downgrade(target, to_id=ZERO_ID)
    """

    def __init__(
        self,
        store: MigrationStore,
        executor: DatabaseExecutor,
        ledger: Optional[HistoryLedger] = None,
        lock: Optional[AdvisoryLock] = None,
        tool_version: str = __version__,
    ):
        self.store = store
        self.executor = executor
        self.ledger = ledger or HistoryLedger()
        self.lock = lock or AdvisoryLock()
        self.tool_version = tool_version
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def status(self, target: TargetDatabase) -> MigrationStatus:
        """
        Compare the target's ledger with the store.

        Pure read: takes no lock and writes nothing.
        """
        with target.connect() as conn:
            applied = self.ledger.applied_ids(conn)
        store_ids = self.store.ids()
        applied_set = set(applied)
        store_set = set(store_ids)
        return MigrationStatus(
            applied=applied,
            pending=[i for i in store_ids if i not in applied_set],
            unknown=[i for i in applied if i not in store_set],
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _applied_records(self, applied: List[str], records: dict) -> List[MigrationRecord]:
        for migration_id in applied:
            if migration_id not in records:
                raise UnknownMigrationError(
                    migration_id, reason='recorded in the target history'
                )
        return [records[i] for i in applied]

    def plan_upgrade(self, applied: List[str], to_id: Optional[str] = None) -> List[MigrationRecord]:
        """
        Records to apply, ascending.

        Args:
            applied: Identifiers in the target's ledger
            to_id: Last record to apply (inclusive), None for all

        Raises:
            UnknownMigrationError: If ``to_id`` or an applied id is not in the store
            NonContiguousHistoryError: If the pending records do not
                continue the applied history without a gap
        """
        all_records = self.store.list()
        records = {r.id: r for r in all_records}
        applied_records = self._applied_records(applied, records)

        if to_id is not None and to_id != ZERO_ID and to_id not in records:
            raise UnknownMigrationError(to_id)

        applied_set = set(applied)
        pending = [r for r in all_records if r.id not in applied_set]
        if to_id is not None:
            limit = migration_sort_key(to_id)
            pending = [r for r in pending if r.sort_key <= limit]
        if not pending:
            return []

        latest = applied_records[-1] if applied_records else None
        if latest is not None and pending[0].sort_key <= latest.sort_key:
            raise NonContiguousHistoryError(
                f"Migration '{pending[0].id}' sorts before the latest applied "
                f"migration '{latest.id}' but was never applied",
                migration_id=pending[0].id,
                details={'latest_applied': latest.id},
            )

        position = latest.to_position if latest else 0
        for record in pending:
            if record.from_position != position:
                raise NonContiguousHistoryError(
                    f"Migration '{record.id}' starts at position "
                    f"{record.from_position} but the history before it ends at "
                    f"position {position}; a migration is missing",
                    migration_id=record.id,
                    details={'expected_position': position, 'from_position': record.from_position},
                )
            position = record.to_position

        return pending

    def plan_downgrade(self, applied: List[str], to_id: str) -> List[MigrationRecord]:
        """
        Records to revert, descending.

        Args:
            applied: Identifiers in the target's ledger
            to_id: Record to keep as the latest applied; ZERO_ID reverts all

        Raises:
            UnknownMigrationError: If an applied id or ``to_id`` is not in the store
        """
        records = {r.id: r for r in self.store.list()}
        if to_id != ZERO_ID and to_id not in records:
            raise UnknownMigrationError(to_id)
        limit = migration_sort_key(to_id)
        to_revert = [i for i in applied if migration_sort_key(i) > limit]
        return list(reversed(self._applied_records(to_revert, records)))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def upgrade(
        self,
        target: TargetDatabase,
        to_id: Optional[str] = None,
        dry_run: bool = False,
        cancel=None,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """
        Apply pending records up to ``to_id``.

        Args:
            target: Target database
            to_id: Last record to apply (inclusive), None for all pending
            dry_run: Execute each record and roll it back
            cancel: Object with is_set() (e.g. threading.Event), checked
                between records
            timeout: Seconds after which no further record is started

        Returns:
            RunResult with the snapshot the target is at afterwards

        Raises:
            MigrationLockHeldError: If another runner holds the lock
            NonContiguousHistoryError: If a record is missing from history
            UnknownMigrationError: If ``to_id`` is not in the store
            MigrationFailedError: If a record fails (rolled back)
            PartialApplicationError: If a record fails mid-way without
                transactional DDL
        """
        return self._run('up', target, to_id, dry_run, cancel, timeout)

    def downgrade(
        self,
        target: TargetDatabase,
        to_id: str,
        dry_run: bool = False,
        cancel=None,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """
        Revert applied records newer than ``to_id``, newest first.

        ``to_id=ZERO_ID`` reverts everything. Same failure policy as
        upgrade().
        """
        return self._run('down', target, to_id, dry_run, cancel, timeout)

    def _run(self, direction, target, to_id, dry_run, cancel, timeout) -> RunResult:
        if dry_run and not self.executor.transactional_ddl:
            raise ConfigurationError(
                "Dry run needs an executor with transactional DDL"
            )

        deadline = time.monotonic() + timeout if timeout is not None else None
        result = RunResult(direction=direction, dry_run=dry_run)

        with self.lock.hold(target):
            with target.begin() as conn:
                self.ledger.ensure_table(conn)
            with target.connect() as conn:
                applied = self.ledger.applied_ids(conn)

            if direction == 'up':
                plan = self.plan_upgrade(applied, to_id)
            else:
                plan = self.plan_downgrade(applied, to_id)

            if not plan:
                self.logger.info('Nothing to %s', 'apply' if direction == 'up' else 'revert')

            for record in plan:
                if cancel is not None and cancel.is_set():
                    self.logger.warning('Run cancelled before %s', record.id)
                    result.cancelled = True
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    self.logger.warning('Run timed out before %s', record.id)
                    result.cancelled = True
                    break

                attempt = MigrationAttempt(record.id)
                result.attempts.append(attempt)
                self._run_record(target, record, direction, attempt, dry_run)

            with target.connect() as conn:
                final_ids = self.ledger.applied_ids(conn)

        result.snapshot = self.store.snapshot(final_ids[-1] if final_ids else ZERO_ID)
        return result

    def _run_record(
        self,
        target: TargetDatabase,
        record: MigrationRecord,
        direction: str,
        attempt: MigrationAttempt,
        dry_run: bool,
    ) -> None:
        operations = record.up if direction == 'up' else record.down
        verb = 'Applying' if direction == 'up' else 'Reverting'
        self.logger.info(
            '%s migration %s (%d operations)%s',
            verb, record.id, len(operations), ' (DRY RUN)' if dry_run else '',
        )

        attempt.state = MigrationState.APPLYING
        start_time = time.perf_counter()
        index = 0
        try:
            with target.begin() as conn:
                for index, op in enumerate(operations):
                    self.executor.execute(conn, op)
                index = len(operations)
                if dry_run:
                    raise DryRunRollbackError('Dry-run mode: rolling back transaction')
                if direction == 'up':
                    self.ledger.record(conn, record.id, self.tool_version)
                else:
                    self.ledger.erase(conn, record.id)

        except DryRunRollbackError:
            attempt.state = MigrationState.APPLIED
            attempt.execution_time_ms = int((time.perf_counter() - start_time) * 1000)
            self.logger.info(
                'Dry-run complete for %s (%dms) - rolled back',
                record.id, attempt.execution_time_ms,
            )
            return

        except OrderingError:
            attempt.state = MigrationState.FAILED
            raise

        except Exception as e:
            attempt.state = MigrationState.FAILED
            attempt.execution_time_ms = int((time.perf_counter() - start_time) * 1000)
            cause = translate_error(e) if isinstance(e, SQLAlchemyError) else e
            attempt.error = str(cause)

            failed_index = index if index < len(operations) else None
            self.logger.error(
                'Failed to %s migration %s: %s',
                'apply' if direction == 'up' else 'revert', record.id, cause,
            )
            # index counts the operations that completed before the failure
            if not self.executor.transactional_ddl and index > 0:
                raise PartialApplicationError(record.id, cause, index, direction) from e
            raise MigrationFailedError(record.id, cause, failed_index, direction) from e

        attempt.state = MigrationState.APPLIED
        attempt.execution_time_ms = int((time.perf_counter() - start_time) * 1000)
        self.logger.info(
            '%s migration %s (%dms)',
            'Applied' if direction == 'up' else 'Reverted',
            record.id, attempt.execution_time_ms,
        )
