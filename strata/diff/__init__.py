"""
Schema diffing and rename detection.
"""

from .engine import DiffOptions, DiffResult, diff
from .matching import (
    DEFAULT_COLUMN_THRESHOLD,
    DEFAULT_TABLE_THRESHOLD,
    column_similarity,
    match_renames,
    table_similarity,
)

__all__ = [
    'diff',
    'DiffOptions',
    'DiffResult',
    'match_renames',
    'table_similarity',
    'column_similarity',
    'DEFAULT_TABLE_THRESHOLD',
    'DEFAULT_COLUMN_THRESHOLD',
]
