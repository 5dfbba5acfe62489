#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command line interface.

    strata [-c CONFIG] generate LABEL [--schema FILE]
    strata [-c CONFIG] apply [--to ID] [--dry-run] [--timeout SECONDS]
    strata [-c CONFIG] revert --to ID [--dry-run] [--timeout SECONDS]
    strata [-c CONFIG] remove-last [--check-url URL ...]
    strata [-c CONFIG] status [--json]
    strata [-c CONFIG] validate
    strata [-c CONFIG] unlock

Exit codes:
    0  success
    1  generic failure
    2  usage or configuration error
    3  non-contiguous history
    4  migration lock held by another run
    5  migration failed (rolled back)
    6  migration partially applied
    7  run cancelled or timed out
"""
import argparse
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from strata import __version__
from strata.config import StrataConfig, configure_logger, load_config
from strata.database import TargetDatabase
from strata.diff import DiffOptions
from strata.errors import (
    ConfigurationError,
    MigrationFailedError,
    MigrationLockHeldError,
    NonContiguousHistoryError,
    PartialApplicationError,
    StrataError,
)
from strata.executor import AlembicExecutor
from strata.migrations import (
    AdvisoryLock,
    HistoryLedger,
    MigrationRunner,
    MigrationStore,
    MigrationValidator,
    StackManager,
    WarningLevel,
    generate_migration,
)
from strata.migrations.migration import slugify_label
from strata.schema.loader import load_schema

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_NON_CONTIGUOUS = 3
EXIT_LOCK_HELD = 4
EXIT_MIGRATION_FAILED = 5
EXIT_PARTIAL_APPLICATION = 6
EXIT_CANCELLED = 7


def exit_code_for(error: Exception) -> int:
    """Map an error to the process exit code."""
    if isinstance(error, PartialApplicationError):
        return EXIT_PARTIAL_APPLICATION
    if isinstance(error, MigrationFailedError):
        return EXIT_MIGRATION_FAILED
    if isinstance(error, NonContiguousHistoryError):
        return EXIT_NON_CONTIGUOUS
    if isinstance(error, MigrationLockHeldError):
        return EXIT_LOCK_HELD
    if isinstance(error, ConfigurationError):
        return EXIT_USAGE
    return EXIT_FAILURE


def _table_rename(value: str) -> tuple:
    old, sep, new = value.partition('=')
    if not sep or not old or not new:
        raise argparse.ArgumentTypeError(f"expected OLD=NEW, got {value!r}")
    return old, new


def _column_rename(value: str) -> tuple:
    left, sep, new = value.partition('=')
    table, dot, old = left.partition('.')
    if not sep or not dot or not table or not old or not new:
        raise argparse.ArgumentTypeError(f"expected TABLE.OLD=NEW, got {value!r}")
    return table, old, new


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='strata',
        description='Generate, apply and revert reversible schema migrations',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-c', '--config', help='Config file (JSON or YAML)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    commands = parser.add_subparsers(dest='command', required=True)

    generate = commands.add_parser('generate', help='Record the difference to the declared schema')
    generate.add_argument('label', help='Human label for the migration')
    generate.add_argument('--schema', help='Schema declaration file (overrides config)')
    generate.add_argument('--rename-table', action='append', type=_table_rename, default=[],
                          metavar='OLD=NEW', help='Treat table OLD as renamed to NEW')
    generate.add_argument('--rename-column', action='append', type=_column_rename, default=[],
                          metavar='TABLE.OLD=NEW',
                          help='Treat column OLD as renamed to NEW (TABLE is the new table name)')
    generate.add_argument('--no-detect-renames', action='store_true',
                          help='Disable rename detection')

    apply = commands.add_parser('apply', help='Apply pending migrations')
    apply.add_argument('--to', dest='to_id', help='Last migration to apply')
    apply.add_argument('--dry-run', action='store_true', help='Roll back after each migration')
    apply.add_argument('--timeout', type=float, help='Start no migration after this many seconds')

    revert = commands.add_parser('revert', help='Revert applied migrations')
    revert.add_argument('--to', dest='to_id', required=True,
                        help="Migration to keep as latest ('0' reverts all)")
    revert.add_argument('--dry-run', action='store_true', help='Roll back after each migration')
    revert.add_argument('--timeout', type=float, help='Start no migration after this many seconds')

    remove_last = commands.add_parser('remove-last', help='Delete the latest migration record')
    remove_last.add_argument('--check-url', action='append', default=[],
                             help='Additional target whose history must not contain it')

    status = commands.add_parser('status', help='Show applied and pending migrations')
    status.add_argument('--json', action='store_true', help='Machine-readable output')

    commands.add_parser('validate', help='Check migration records for hazards')
    commands.add_parser('unlock', help='Clear a lock left by a crashed run')

    return parser


@contextmanager
def _interrupt_sets(event: threading.Event):
    """Turn Ctrl+C into a cancellation honoured between migrations."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        logger.warning('Interrupt received: stopping after the current migration')
        event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _db_type(config: StrataConfig) -> str:
    url = config.database_url or 'sqlite'
    return url.split(':', 1)[0].split('+', 1)[0] if '://' in url else 'sqlite'


def _runner(config: StrataConfig, target: TargetDatabase) -> MigrationRunner:
    return MigrationRunner(
        MigrationStore(config.migrations_dir),
        AlembicExecutor.for_target(target),
        ledger=HistoryLedger(config.history_table),
        lock=AdvisoryLock(config.lock_table),
    )


def cmd_generate(config: StrataConfig, args) -> int:
    schema_file = args.schema or config.schema_file
    if not schema_file:
        raise ConfigurationError("No schema file: pass --schema or set 'schema_file'")
    try:
        slugify_label(args.label)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    column_renames = {}
    for table, old, new in args.rename_column:
        column_renames.setdefault(table, {})[old] = new
    options = DiffOptions(
        detect_renames=config.detect_renames and not args.no_detect_renames,
        table_threshold=config.table_rename_threshold,
        column_threshold=config.column_rename_threshold,
        table_renames=dict(args.rename_table),
        column_renames=column_renames,
    )

    store = MigrationStore(config.migrations_dir)
    record = generate_migration(store, load_schema(schema_file), args.label, options)

    print(f"Created {record.id} ({len(record.up)} operations)")
    for op in record.up:
        print(f"  {op.describe()}")
    for warning in MigrationValidator(_db_type(config)).validate_migration(record):
        print(f"  {warning!r}")
    return EXIT_OK


def _run(config: StrataConfig, args, direction: str) -> int:
    cancel = threading.Event()
    with TargetDatabase(config.require_database_url()) as target:
        runner = _runner(config, target)
        with _interrupt_sets(cancel):
            if direction == 'up':
                result = runner.upgrade(
                    target, args.to_id, dry_run=args.dry_run, cancel=cancel, timeout=args.timeout
                )
            else:
                result = runner.downgrade(
                    target, args.to_id, dry_run=args.dry_run, cancel=cancel, timeout=args.timeout
                )

    verb = 'Applied' if direction == 'up' else 'Reverted'
    if args.dry_run:
        verb = f"{verb} (dry run)"
    for attempt in result.attempts:
        print(f"{verb} {attempt.migration_id} ({attempt.execution_time_ms}ms)")
    if not result.attempts and not result.cancelled:
        print('Nothing to do')
    if result.cancelled:
        print('Run cancelled before all migrations ran', file=sys.stderr)
        return EXIT_CANCELLED
    return EXIT_OK


def cmd_apply(config: StrataConfig, args) -> int:
    return _run(config, args, 'up')


def cmd_revert(config: StrataConfig, args) -> int:
    return _run(config, args, 'down')


def cmd_remove_last(config: StrataConfig, args) -> int:
    ledger = HistoryLedger(config.history_table)
    urls = ([config.database_url] if config.database_url else []) + list(args.check_url)
    applied_id_sets = []
    for url in urls:
        with TargetDatabase(url) as target, target.connect() as conn:
            applied_id_sets.append(ledger.applied_ids(conn))

    removed = StackManager(MigrationStore(config.migrations_dir)).remove_last(applied_id_sets)
    print(f"Removed {removed.id}")
    return EXIT_OK


def cmd_status(config: StrataConfig, args) -> int:
    with TargetDatabase(config.require_database_url()) as target:
        status = _runner(config, target).status(target)

    if args.json:
        print(json.dumps(status.to_dict(), indent=2))
        return EXIT_OK

    print(f"Applied ({len(status.applied)}):")
    for migration_id in status.applied:
        print(f"  {migration_id}")
    print(f"Pending ({len(status.pending)}):")
    for migration_id in status.pending:
        print(f"  {migration_id}")
    if status.unknown:
        print(f"Unknown to the store ({len(status.unknown)}):")
        for migration_id in status.unknown:
            print(f"  {migration_id}")
    return EXIT_OK


def cmd_validate(config: StrataConfig, args) -> int:
    warnings = MigrationValidator(_db_type(config)).validate_store(
        MigrationStore(config.migrations_dir)
    )
    for warning in warnings:
        print(repr(warning))
    if any(w.level == WarningLevel.ERROR for w in warnings):
        return EXIT_FAILURE
    print('No errors found')
    return EXIT_OK


def cmd_unlock(config: StrataConfig, args) -> int:
    with TargetDatabase(config.require_database_url()) as target:
        holder = AdvisoryLock(config.lock_table).force_release(target)
    print(f"Released lock held by {holder}" if holder else 'Lock is not held')
    return EXIT_OK


COMMANDS = {
    'generate': cmd_generate,
    'apply': cmd_apply,
    'revert': cmd_revert,
    'remove-last': cmd_remove_last,
    'status': cmd_status,
    'validate': cmd_validate,
    'unlock': cmd_unlock,
}


def main(argv=None) -> int:
    """
    CLI entry point.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Process exit code
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return int(e.code or 0)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"strata: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    root = logging.getLogger('strata')
    if not root.handlers:
        configure_logger(
            root,
            log_file=config.log_file,
            log_level=logging.DEBUG if args.verbose else config.level,
        )

    try:
        return COMMANDS[args.command](config, args)
    except StrataError as e:
        print(f"strata: error: {e}", file=sys.stderr)
        return exit_code_for(e)
    except SQLAlchemyError as e:
        print(f"strata: database error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
