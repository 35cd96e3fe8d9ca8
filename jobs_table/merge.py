"""
Splicing fetched rows into a partially materialized tree.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from jobs_table.row_id import RowId
from jobs_table.types.rows import GroupRow, Row, is_group_row

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    root_rows: List[Row]
    parent_row: Optional[GroupRow] = None


def resolve_path(rows: Sequence[Row], location: Sequence[RowId]) -> Optional[List[Row]]:
    """
    Find the chain of rows named by ``location``.

    Returns one row per entry of ``location``, or None if any of them is
    missing from the tree. Every row except the last must be a group row.
    """
    chain: List[Row] = []
    level: Sequence[Row] = rows
    for depth, row_id in enumerate(location):
        found = next((row for row in level if row.row_id == row_id), None)
        if found is None:
            return None
        chain.append(found)
        if depth < len(location) - 1:
            if not is_group_row(found) or found.children is None:
                return None
            level = found.children
    return chain


def _merge_into(
    rows: Sequence[Row],
    new_rows: Sequence[Row],
    location: Sequence[RowId],
    append: bool,
) -> Optional[Tuple[List[Row], GroupRow]]:
    target_id, remaining = location[0], location[1:]
    for index, row in enumerate(rows):
        if row.row_id != target_id:
            continue
        if not is_group_row(row):
            return None

        if remaining:
            merged = _merge_into(row.children or [], new_rows, remaining, append)
            if merged is None:
                return None
            children, parent_row = merged
            updated = row.with_children(children)
        else:
            if append and row.children:
                children = list(row.children) + list(new_rows)
            else:
                children = list(new_rows)
            updated = row.with_children(children)
            parent_row = updated

        rebuilt = list(rows)
        rebuilt[index] = updated
        return rebuilt, parent_row
    return None


def merge_sub_rows(
    existing: List[Row],
    new_rows: Sequence[Row],
    location: Sequence[RowId],
    append: bool = False,
) -> MergeResult:
    """
    Merge ``new_rows`` into ``existing`` as the children of the row at ``location``.

    Args:
        existing: Current root rows.
        new_rows: Rows to place.
        location: Row ids from the root down to the parent row. Empty means
            the new rows replace the whole root level.
        append: Add to the parent's existing children instead of replacing them.

    Returns:
        MergeResult with the new root rows and the updated parent row. If
        the location no longer exists, ``existing`` is returned as is and
        ``parent_row`` is None.
    """
    if not location:
        return MergeResult(root_rows=list(new_rows), parent_row=None)

    merged = _merge_into(existing, new_rows, location, append)
    if merged is None:
        logger.debug("Could not find location %s in tree, skipping merge", location[-1])
        return MergeResult(root_rows=existing, parent_row=None)

    root_rows, parent_row = merged
    return MergeResult(root_rows=root_rows, parent_row=parent_row)
