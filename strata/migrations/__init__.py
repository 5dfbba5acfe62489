"""
Migration history: records, store, ledger, runner.

This package provides:
- MigrationRecord, HistoryEntry: data models
- MigrationStore: on-disk catalog of records
- HistoryLedger: per-target record of applied migrations
- AdvisoryLock: fail-fast lock serializing runners
- MigrationRunner: upgrade, downgrade and status
- StackManager: LIFO removal of the latest record
- MigrationValidator: safety and reversibility checks
"""

from .migration import (
    ZERO_ID,
    HistoryEntry,
    MigrationAttempt,
    MigrationRecord,
    MigrationState,
    MigrationStatus,
    make_migration_id,
    migration_sort_key,
)
from .store import MigrationStore
from .ledger import DEFAULT_HISTORY_TABLE, HistoryLedger
from .lock import DEFAULT_LOCK_TABLE, AdvisoryLock
from .runner import MigrationRunner, RunResult
from .stack import StackManager
from .validator import MigrationValidator, ValidationWarning, WarningLevel, ensure_reversible
from .generator import generate_migration

__all__ = [
    'ZERO_ID',
    'HistoryEntry',
    'MigrationAttempt',
    'MigrationRecord',
    'MigrationState',
    'MigrationStatus',
    'make_migration_id',
    'migration_sort_key',
    'MigrationStore',
    'HistoryLedger',
    'DEFAULT_HISTORY_TABLE',
    'AdvisoryLock',
    'DEFAULT_LOCK_TABLE',
    'MigrationRunner',
    'RunResult',
    'StackManager',
    'MigrationValidator',
    'ValidationWarning',
    'WarningLevel',
    'ensure_reversible',
    'generate_migration',
]
