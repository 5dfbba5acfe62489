#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration loading and logging setup.

Config files are JSON or YAML:

    database_url: sqlite:///app.db
    migrations_dir: migrations
    schema_file: schema.yaml
    history_table: __strata_history
    lock_table: __strata_lock
    detect_renames: true
    table_rename_threshold: 0.6
    column_rename_threshold: 0.5
    log_level: info
    log_file: strata.log

Relative paths resolve against the config file's directory. The
STRATA_DATABASE_URL environment variable overrides database_url.
"""
import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

import yaml

from strata.diff.matching import DEFAULT_COLUMN_THRESHOLD, DEFAULT_TABLE_THRESHOLD
from strata.errors import ConfigurationError
from strata.migrations.ledger import DEFAULT_HISTORY_TABLE
from strata.migrations.lock import DEFAULT_LOCK_TABLE

DATABASE_URL_ENV = 'STRATA_DATABASE_URL'
LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'


class RobustFileHandler(logging.FileHandler):
    """FileHandler that tolerates flush errors on Windows file handles"""

    def flush(self):
        try:
            super().flush()
        except OSError as e:
            if e.errno != 22:  # EINVAL
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=None,
                     log_level=logging.INFO):
    """Configure a logger with a file or stream handler

    Args:
        logger: Logger instance or logger name string
        log_file: File path string or file-like object (None for stderr)
        log_format: Format string for log messages
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)

    Returns:
        Configured logger instance
    """
    if isinstance(log_file, (str, Path)):
        handler = RobustFileHandler(
            str(log_file),
            mode='a',
            encoding='utf-8',
            errors='replace'
        )
    else:
        handler = logging.StreamHandler(log_file)  # Default to stderr if None

    formatter = logging.Formatter(log_format or LOG_FORMAT)

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(log_level)

    return logger


def parse_log_level(value: Union[str, int]) -> int:
    """Convert 'info', 'DEBUG' or a numeric level to a logging constant."""
    if isinstance(value, int):
        return value
    level = getattr(logging, str(value).upper(), None)
    if not isinstance(level, int):
        raise ConfigurationError(f"Invalid log level: {value!r}")
    return level


@dataclass
class StrataConfig:
    """
    Settings for one project.

    Attributes:
        database_url: Target database URL or SQLite file path
        migrations_dir: Directory of migration record files
        schema_file: Declared schema used by 'generate'
        history_table: Name of the history ledger table
        lock_table: Name of the advisory lock table
        detect_renames: Enable the rename heuristic
        table_rename_threshold: Minimum similarity for table renames
        column_rename_threshold: Minimum similarity for column renames
        log_level: Logging level name
        log_file: Log file path, None for stderr
    """

    database_url: Optional[str] = None
    migrations_dir: Path = Path('migrations')
    schema_file: Optional[Path] = None
    history_table: str = DEFAULT_HISTORY_TABLE
    lock_table: str = DEFAULT_LOCK_TABLE
    detect_renames: bool = True
    table_rename_threshold: float = DEFAULT_TABLE_THRESHOLD
    column_rename_threshold: float = DEFAULT_COLUMN_THRESHOLD
    log_level: str = 'info'
    log_file: Optional[Path] = None

    def __post_init__(self):
        for name in ('table_rename_threshold', 'column_rename_threshold'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 < value <= 1:
                raise ConfigurationError(
                    f"'{name}' must be a number in (0, 1], got {value!r}"
                )
            setattr(self, name, float(value))
        if not isinstance(self.detect_renames, bool):
            raise ConfigurationError(
                f"'detect_renames' must be true or false, got {self.detect_renames!r}"
            )
        for name in ('history_table', 'lock_table'):
            if not isinstance(getattr(self, name), str) or not getattr(self, name):
                raise ConfigurationError(f"'{name}' must be a non-empty string")
        parse_log_level(self.log_level)

    @property
    def level(self) -> int:
        return parse_log_level(self.log_level)

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError(
                f"No database configured: set 'database_url' or {DATABASE_URL_ENV}"
            )
        return self.database_url


def _resolve(base_dir: Path, value) -> Optional[Path]:
    if value is None:
        return None
    path = Path(value)
    return path if path.is_absolute() else base_dir / path


def _read_config_file(path: Path) -> dict:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as fp:
            if path.suffix in ('.yaml', '.yml'):
                conf = yaml.safe_load(fp)
            else:
                conf = json.load(fp)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse config file {path}: {e}") from e
    if conf is None:
        return {}
    if not isinstance(conf, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return conf


def load_config(path: Union[str, Path, None] = None, environ=None) -> StrataConfig:
    """
    Load configuration from a JSON or YAML file.

    Args:
        path: Config file; None means defaults relative to the working directory
        environ: Environment mapping (defaults to os.environ)

    Returns:
        StrataConfig with paths resolved

    Raises:
        ConfigurationError: On a missing file, parse error, unknown key or
            invalid value
    """
    environ = os.environ if environ is None else environ
    if path is None:
        conf, base_dir = {}, Path.cwd()
    else:
        path = Path(path)
        conf, base_dir = _read_config_file(path), path.resolve().parent

    known = {f.name for f in fields(StrataConfig)}
    unknown = sorted(set(conf) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")

    conf = dict(conf)
    conf['migrations_dir'] = _resolve(base_dir, conf.get('migrations_dir', 'migrations'))
    conf['schema_file'] = _resolve(base_dir, conf.get('schema_file'))
    conf['log_file'] = _resolve(base_dir, conf.get('log_file'))

    if environ.get(DATABASE_URL_ENV):
        conf['database_url'] = environ[DATABASE_URL_ENV]

    database_url = conf.get('database_url')
    if database_url and '://' not in database_url and database_url != ':memory:':
        conf['database_url'] = str(_resolve(base_dir, database_url))

    return StrataConfig(**conf)
