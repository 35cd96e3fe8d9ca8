"""
Tree Expansion State Management for the grouped jobs table

Tracks which rows of the materialized tree are expanded and what changed
since the previous state, and flattens the tree into the rows a display
would show.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from jobs_table.columns import ColumnSpec, format_values
from jobs_table.types.rows import GroupRow, Row, is_group_row


@dataclass(frozen=True)
class ExpansionDelta:
    """Rows that changed expansion between two states, in mapping order."""
    newly_expanded: List[str] = field(default_factory=list)
    newly_unexpanded: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExpansionState:
    """Expansion flags keyed by row id. Instances are never mutated."""
    expanded: Dict[str, bool] = field(default_factory=dict)

    @staticmethod
    def from_mapping(mapping: Mapping[str, bool]) -> "ExpansionState":
        return ExpansionState(expanded={k: bool(v) for k, v in mapping.items()})

    def expanded_ids(self) -> List[str]:
        return [row_id for row_id, flag in self.expanded.items() if flag]

    def is_expanded(self, row_id: str) -> bool:
        return self.expanded.get(row_id, False)

    def expand(self, row_id: str) -> "ExpansionState":
        return ExpansionState(expanded={**self.expanded, row_id: True})

    def collapse(self, row_id: str) -> "ExpansionState":
        return ExpansionState(expanded={k: v for k, v in self.expanded.items() if k != row_id})

    def toggle(self, row_id: str) -> "ExpansionState":
        return self.collapse(row_id) if self.is_expanded(row_id) else self.expand(row_id)

    def delta_from(self, previous: "ExpansionState") -> ExpansionDelta:
        before = set(previous.expanded_ids())
        after = self.expanded_ids()
        after_set = set(after)
        return ExpansionDelta(
            newly_expanded=[row_id for row_id in after if row_id not in before],
            newly_unexpanded=[row_id for row_id in previous.expanded_ids() if row_id not in after_set],
        )


@dataclass(frozen=True)
class VisibleRow:
    row: Row
    depth: int
    is_expanded: bool = False


def flatten_visible_rows(rows: Sequence[Row], state: ExpansionState, depth: int = 0) -> List[VisibleRow]:
    """Depth-first list of rows shown when ``state`` is applied to the tree."""
    visible: List[VisibleRow] = []
    for row in rows:
        expanded = is_group_row(row) and state.is_expanded(row.row_id)
        visible.append(VisibleRow(row=row, depth=depth, is_expanded=expanded))
        if expanded and row.children:
            visible.extend(flatten_visible_rows(row.children, state, depth + 1))
    return visible


def row_to_dict(row: Row) -> Dict[str, Any]:
    """Serialize a row without its children."""
    if isinstance(row, GroupRow):
        return {
            "kind": row.kind.value,
            "row_id": row.row_id,
            "grouped_field": row.grouped_field,
            "value": row.value,
            "count": row.count,
            "aggregates": dict(row.aggregates),
            "is_materialized": row.is_materialized,
        }
    return {"kind": row.kind.value, "row_id": row.row_id, "values": dict(row.values)}


def visible_rows_to_dicts(
    visible: Sequence[VisibleRow],
    columns: Optional[Sequence[ColumnSpec]] = None,
) -> List[Dict[str, Any]]:
    """
    Serialize visible rows. With ``columns``, each row also carries
    ``display``: formatted cell text for the selected columns.
    """
    result = []
    for item in visible:
        data = {**row_to_dict(item.row), "depth": item.depth, "is_expanded": item.is_expanded}
        if columns is not None:
            if is_group_row(item.row):
                raw = {**item.row.aggregates, item.row.grouped_field: item.row.value}
            else:
                raw = item.row.values
            data["display"] = format_values(columns, raw)
        result.append(data)
    return result
