"""
Migration data models.

This module defines the core data structures of migration history:
- MigrationRecord: one step of schema history, as kept in the store
- HistoryEntry: one row of a target's history ledger
- MigrationState: lifecycle of a record during a runner call

Identifiers have the form YYYYMMDDHHMMSS_label. They are totally ordered
by timestamp, then label, and that order is the application order.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from strata.schema.operations import Operation
from strata.schema.serialization import operation_to_dict


ZERO_ID = '0'
"""Sentinel identifier sorting before every record; downgrade(ZERO_ID) reverts all."""

ID_TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'
ID_PATTERN = re.compile(r'^(\d{14})_([A-Za-z0-9_]+)$')
_LABEL_CLEANUP = re.compile(r'[^A-Za-z0-9_]+')


class MigrationState(Enum):
    PENDING = 'pending'
    APPLYING = 'applying'
    APPLIED = 'applied'
    FAILED = 'failed'


def slugify_label(label: str) -> str:
    """
    Reduce a human label to identifier-safe characters.

    Example:
        >>> slugify_label('Rename name -> emp name')
        'rename_name_emp_name'
    """
    slug = _LABEL_CLEANUP.sub('_', label.strip()).strip('_').lower()
    if not slug:
        raise ValueError(f"Label {label!r} has no usable characters")
    return slug


def migration_sort_key(migration_id: str) -> tuple[int, str]:
    """
    Total order of identifiers: timestamp, then label.

    Raises:
        ValueError: If the identifier is malformed
    """
    if migration_id == ZERO_ID:
        return (0, '')
    match = ID_PATTERN.match(migration_id)
    if not match:
        raise ValueError(f"Invalid migration identifier: {migration_id!r}")
    timestamp, label = match.groups()
    return (int(timestamp), label)


def is_valid_migration_id(migration_id: str) -> bool:
    return bool(ID_PATTERN.match(migration_id))


def make_migration_id(
    label: str,
    now: Optional[datetime] = None,
    after: Optional[str] = None,
) -> str:
    """
    Build the next identifier for ``label``.

    Args:
        label: Human label (slugified)
        now: Clock reading, defaults to the current UTC time
            (naive values are taken as UTC)
        after: Latest existing identifier; the new one sorts strictly
            after it even when the clock has not advanced

    Returns:
        Identifier string, e.g. '20251124100000_create_employees'
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    now = now.replace(tzinfo=None, microsecond=0)
    if after is not None and after != ZERO_ID:
        latest = datetime.strptime(ID_PATTERN.match(after).group(1), ID_TIMESTAMP_FORMAT)
        if now <= latest:
            now = latest + timedelta(seconds=1)
    return f"{now.strftime(ID_TIMESTAMP_FORMAT)}_{slugify_label(label)}"


def compute_checksum(migration_id: str, up, down) -> str:
    """
    SHA-256 over the canonical JSON form of a record's operations.

    Used to detect record files edited after they were written.
    """
    payload = {
        'id': migration_id,
        'up': [operation_to_dict(op) for op in up],
        'down': [operation_to_dict(op) for op in down],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class MigrationRecord:
    """
    One step of schema history.

    Applying ``up`` to the snapshot at ``from_position`` yields the
    snapshot at ``to_position``; applying ``down`` to that result gives
    the prior snapshot back exactly.

    Attributes:
        id: Identifier, YYYYMMDDHHMMSS_label
        label: Human label the identifier was built from
        up: Forward operations, in order
        down: Reverse operations, in order
        from_position: Snapshot position before (N-1)
        to_position: Snapshot position after (N)
        tool_version: Version of the tool that generated the record
        checksum: SHA-256 of id and operations

    Example:
        >>> record = store.append(result.up, result.down, 'create employees')
        >>> record
        <MigrationRecord(20251124100000_create_employees, 0->1)>
    """

    id: str
    label: str
    up: tuple[Operation, ...]
    down: tuple[Operation, ...]
    from_position: int
    to_position: int
    tool_version: str = ''
    checksum: str = ''

    def __post_init__(self):
        object.__setattr__(self, 'up', tuple(self.up))
        object.__setattr__(self, 'down', tuple(self.down))
        if not self.checksum:
            object.__setattr__(
                self, 'checksum', compute_checksum(self.id, self.up, self.down)
            )
        if self.to_position != self.from_position + 1:
            raise ValueError(
                f"Migration {self.id} must advance exactly one position, "
                f"got {self.from_position} -> {self.to_position}"
            )

    @property
    def sort_key(self) -> tuple[int, str]:
        return migration_sort_key(self.id)

    def verify_checksum(self) -> bool:
        return self.checksum == compute_checksum(self.id, self.up, self.down)

    def __lt__(self, other: 'MigrationRecord') -> bool:
        if not isinstance(other, MigrationRecord):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __repr__(self) -> str:
        return f"<MigrationRecord({self.id}, {self.from_position}->{self.to_position})>"


@dataclass
class HistoryEntry:
    """
    A migration recorded as applied on one target.

    Attributes:
        migration_id: Identifier of the applied record
        tool_version: Version tag of the tool that applied it
        applied_at: When it was applied, if known
    """

    migration_id: str
    tool_version: str
    applied_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return f"<HistoryEntry({self.migration_id}, {self.tool_version})>"


@dataclass
class MigrationAttempt:
    """
    Outcome of applying or reverting one record during a runner call.

    Attributes:
        migration_id: Record identifier
        state: Final state reached (APPLIED or FAILED)
        execution_time_ms: Time spent inside the record's transaction
        error: Error message if the attempt failed
    """

    migration_id: str
    state: MigrationState = MigrationState.PENDING
    execution_time_ms: Optional[int] = None
    error: Optional[str] = None


@dataclass
class MigrationStatus:
    """
    Read-only view of a target relative to the store.

    Attributes:
        applied: Identifiers in the target's ledger, ascending
        pending: Store identifiers not yet applied, ascending
        unknown: Ledger identifiers missing from the store
    """

    applied: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)

    @property
    def current(self) -> Optional[str]:
        return self.applied[-1] if self.applied else None

    def to_dict(self) -> dict:
        return {
            'applied': list(self.applied),
            'pending': list(self.pending),
            'unknown': list(self.unknown),
            'current': self.current,
        }
