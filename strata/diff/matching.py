"""
Rename detection.

A table or column that disappears while another one appears is either a
rename or a drop plus a create. The difference matters: a rename keeps
the data. Detection is a guess, so it is modelled as a pure function with
three outcomes:

- a confident match (the pair is treated as a rename),
- no match above the threshold (drop + create),
- AmbiguousRenameError when equally good candidates compete.

It never silently picks one of several equally good candidates.
"""

from dataclasses import dataclass
from typing import Callable, Sequence

from strata.errors import AmbiguousRenameError
from strata.schema.model import Column, Table


DEFAULT_TABLE_THRESHOLD = 0.6
DEFAULT_COLUMN_THRESHOLD = 0.5


@dataclass(frozen=True)
class _Pair:
    score: float
    old_index: int
    new_index: int
    old: str
    new: str


def table_similarity(old: Table, new: Table) -> float:
    """Jaccard overlap of the two tables' column-name sets."""
    old_names, new_names = old.column_names, new.column_names
    union = old_names | new_names
    if not union:
        return 0.0
    return len(old_names & new_names) / len(union)


def column_similarity(old: Column, new: Column) -> float:
    """
    Score a removed/added column pair.

    Columns of different types never match. A matching type scores 0.5;
    matching nullability and matching default add 0.25 each.
    """
    if old.type != new.type:
        return 0.0
    score = 0.5
    if old.nullable == new.nullable:
        score += 0.25
    if old.default_key == new.default_key:
        score += 0.25
    return score


def match_renames(
    removed: Sequence[str],
    added: Sequence[str],
    similarity: Callable[[str, str], float],
    threshold: float,
    scope: str = 'table',
) -> list[tuple[str, str]]:
    """
    Pair removed names with added names.

    Pairs scoring below ``threshold`` (or zero) are discarded. The
    remaining pairs are taken best score first. Pairs sharing the best
    score are accepted together, in the declaration order of the removed
    side, as long as none of them compete for the same name.

    Args:
        removed: Names present only in the old schema, declaration order
        added: Names present only in the new schema, declaration order
        similarity: Score function (old name, new name) -> [0, 1]
        threshold: Minimum score for a pair to count as a rename
        scope: 'table', or the table name when matching columns

    Returns:
        List of (old name, new name) renames

    Raises:
        AmbiguousRenameError: If a name has two equally good partners
    """
    pairs = []
    for i, old in enumerate(removed):
        for j, new in enumerate(added):
            score = round(similarity(old, new), 9)
            if score > 0 and score >= threshold:
                pairs.append(_Pair(score, i, j, old, new))

    matches: list[tuple[str, str]] = []
    used_old: set = set()
    used_new: set = set()

    while True:
        remaining = [p for p in pairs if p.old not in used_old and p.new not in used_new]
        if not remaining:
            break
        best = max(p.score for p in remaining)
        top = [p for p in remaining if p.score == best]

        by_old: dict = {}
        by_new: dict = {}
        for p in top:
            by_old.setdefault(p.old, []).append(p.new)
            by_new.setdefault(p.new, []).append(p.old)
        for old, candidates in by_old.items():
            if len(candidates) > 1:
                raise AmbiguousRenameError(scope, old, candidates)
        for new, candidates in by_new.items():
            if len(candidates) > 1:
                raise AmbiguousRenameError(scope, new, candidates)

        for p in sorted(top, key=lambda p: (p.old_index, p.new_index)):
            matches.append((p.old, p.new))
            used_old.add(p.old)
            used_new.add(p.new)

    matches.sort(key=lambda m: removed.index(m[0]))
    return matches
