"""
Request and response types exchanged with the job lookup services.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from jobs_table.row_id import RowIdInfo
from jobs_table.types.job import Job


class SortDirection:
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class JobFilter:
    """Equality predicate on one field. A None value matches nulls."""
    field: str
    value: Any


@dataclass(frozen=True)
class JobOrder:
    field: str
    direction: str = SortDirection.ASC

    def __post_init__(self):
        if self.direction not in (SortDirection.ASC, SortDirection.DESC):
            raise ValueError(f"Unknown sort direction: {self.direction}")


@dataclass(frozen=True)
class JobGroup:
    name: Any
    count: int
    aggregates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GetJobsResult:
    jobs: List[Job]
    total_jobs: int


@dataclass
class GroupJobsResult:
    groups: List[JobGroup]
    total_groups: int


class FetchKind(str, Enum):
    JOBS = "jobs"
    GROUPS = "groups"


@dataclass(frozen=True)
class FetchRequest:
    """
    One fetch decided by the table reducer.

    ``expanded_row`` is None for root requests. ``take`` of None means
    every matching item.
    """
    kind: FetchKind
    grouping: Tuple[str, ...]
    filters: Tuple[JobFilter, ...]
    skip: int
    take: Optional[int]
    expanded_row: Optional[RowIdInfo] = None
    grouped_field: Optional[str] = None
    aggregates: Tuple[str, ...] = ()
    page_size: Optional[int] = None

    @property
    def is_root(self) -> bool:
        return self.expanded_row is None

    @property
    def location(self) -> List[str]:
        return list(self.expanded_row.path_from_root) if self.expanded_row else []
