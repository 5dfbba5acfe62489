"""
Load schema declarations into snapshots.

The declaration language itself lives outside this package; what arrives
here is its parsed form, a mapping with a 'tables' list, stored as YAML
or JSON:

    tables:
      - name: Employees
        columns:
          - {name: Id, type: integer, nullable: false}
          - {name: Name, type: text}
        primary_key: [Id]
"""

import json
import logging
from pathlib import Path
from typing import Union

import yaml

from strata.errors import ConfigurationError
from strata.schema.model import Snapshot
from strata.schema.serialization import table_from_dict, table_to_dict


logger = logging.getLogger(__name__)


def snapshot_from_dict(data: dict, position: int = 0) -> Snapshot:
    """
    Build a snapshot from the declarative mapping form.

    Raises:
        DuplicateTableNameError: On repeated table names
        DuplicateColumnNameError: On repeated column names
        ValueError: On malformed declarations
    """
    if not isinstance(data, dict):
        raise ValueError("Schema declaration must be a mapping")
    tables = data.get('tables') or []
    if not isinstance(tables, list):
        raise ValueError("'tables' must be a list")
    return Snapshot.build([table_from_dict(t) for t in tables], position=position)


def snapshot_to_dict(snapshot: Snapshot) -> dict:
    return {'tables': [table_to_dict(t) for t in snapshot.tables]}


def load_schema(path: Union[str, Path]) -> Snapshot:
    """
    Read a schema declaration file.

    .yaml and .yml files are parsed as YAML, anything else as JSON.

    Args:
        path: Declaration file

    Returns:
        Snapshot describing the declared schema (position 0)

    Raises:
        ConfigurationError: If the file is missing or unreadable
        AuthoringError: If the declaration is invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Schema file not found: {path}")

    text = path.read_text(encoding='utf-8')
    try:
        if path.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse schema file {path}: {e}") from e

    try:
        snapshot = snapshot_from_dict(data or {})
    except ValueError as e:
        raise ConfigurationError(f"Invalid schema file {path}: {e}") from e

    logger.debug('Loaded schema %s (%d tables)', path, len(snapshot))
    return snapshot
