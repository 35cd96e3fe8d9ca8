"""
Rows of the materialized jobs tree.

Rows are immutable; a merge produces new rows along the changed path and
passes every other row through untouched so consumers can compare by
identity.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class RowKind(str, Enum):
    GROUP = "group"
    LEAF = "leaf"


@dataclass(frozen=True)
class LeafRow:
    """One job."""
    row_id: str
    values: Dict[str, Any] = field(default_factory=dict)
    kind: RowKind = field(default=RowKind.LEAF, init=False)


@dataclass(frozen=True)
class GroupRow:
    """
    All jobs sharing one value of ``grouped_field``.

    ``children`` is None until the group is expanded for the first time;
    an empty list means the group was fetched and has no children.
    """
    row_id: str
    grouped_field: str
    value: Any
    count: int
    aggregates: Dict[str, Any] = field(default_factory=dict)
    children: Optional[List["Row"]] = None
    kind: RowKind = field(default=RowKind.GROUP, init=False)

    @property
    def is_materialized(self) -> bool:
        return self.children is not None

    def with_children(self, children: List["Row"]) -> "GroupRow":
        return replace(self, children=list(children))


Row = Union[GroupRow, LeafRow]


def is_group_row(row: Row) -> bool:
    return row.kind is RowKind.GROUP
