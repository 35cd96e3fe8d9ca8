"""
JobsTableController - drives fetching for the grouped jobs table.

Every user interaction is an event. ``reduce`` turns (state, event) into the
next state plus at most one FetchRequest; the controller issues that request
against the lookup services and merges the response into whatever state is
current when it arrives. Responses that no longer fit the current tree are
dropped.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from jobs_table.columns import DEFAULT_COLUMN_SPECS, ColumnSpec, column_to_dict, groupable_keys
from jobs_table.config import JobsTableConfig, get_config
from jobs_table.merge import merge_sub_rows, resolve_path
from jobs_table.projection import groups_to_rows, jobs_to_rows
from jobs_table.row_id import InvalidSegmentError, RowIdInfo, from_row_id
from jobs_table.services.base import GetJobsService, GroupJobsService
from jobs_table.tree import ExpansionState, VisibleRow, flatten_visible_rows, visible_rows_to_dicts
from jobs_table.types.query import FetchKind, FetchRequest, GetJobsResult, GroupJobsResult, JobFilter, JobOrder
from jobs_table.types.rows import Row, is_group_row

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """A lookup service failed; the table keeps its previous rows."""

    def __init__(self, request: FetchRequest, message: str):
        super().__init__(message)
        self.request = request


class TableStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ERROR = "error"


@dataclass(frozen=True)
class Load:
    pass


@dataclass(frozen=True)
class GroupingChanged:
    grouping: Tuple[str, ...]


@dataclass(frozen=True)
class ExpandedChanged:
    expanded: Mapping[str, bool]


@dataclass(frozen=True)
class PaginationChanged:
    page_index: int
    page_size: int


TableEvent = Union[Load, GroupingChanged, ExpandedChanged, PaginationChanged]


@dataclass(frozen=True)
class TableState:
    grouping: Tuple[str, ...] = ()
    expansion: ExpansionState = field(default_factory=ExpansionState)
    page_index: int = 0
    page_size: int = 30
    root_rows: List[Row] = field(default_factory=list)
    total_row_count: int = 0
    page_count: int = -1
    columns: Tuple[ColumnSpec, ...] = tuple(DEFAULT_COLUMN_SPECS)
    in_flight: int = 0
    error: Optional[str] = None

    @property
    def status(self) -> TableStatus:
        if self.error is not None:
            return TableStatus.ERROR
        if self.in_flight:
            return TableStatus.FETCHING
        return TableStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.in_flight > 0

    def visible_rows(self) -> List[VisibleRow]:
        return flatten_visible_rows(self.root_rows, self.expansion)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grouping": list(self.grouping),
            "expanded": dict(self.expansion.expanded),
            "pagination": {
                "page_index": self.page_index,
                "page_size": self.page_size,
                "page_count": self.page_count,
                "total_row_count": self.total_row_count,
            },
            "status": self.status.value,
            "error": self.error,
            "columns": [column_to_dict(c) for c in self.columns],
            "rows": visible_rows_to_dicts(self.visible_rows(), self.columns),
        }


def validate_grouping(grouping: Sequence[str], columns: Sequence[ColumnSpec], max_depth: Optional[int] = None):
    groupable = set(groupable_keys(list(columns)))
    unknown = [f for f in grouping if f not in groupable]
    if unknown:
        raise ValueError(f"Cannot group by {', '.join(unknown)}")
    if len(set(grouping)) != len(grouping):
        raise ValueError("A field can only be grouped by once")
    if max_depth is not None and len(grouping) > max_depth:
        raise ValueError(f"Grouping depth {len(grouping)} exceeds maximum of {max_depth}")


def _build_request(
    state: TableState,
    expanded_row: Optional[RowIdInfo] = None,
    filters: Tuple[JobFilter, ...] = (),
) -> FetchRequest:
    target_depth = expanded_row.depth if expanded_row else 0
    common = dict(
        grouping=state.grouping,
        filters=filters,
        # an expanded group shows every member, unpaged
        skip=0 if expanded_row else state.page_index * state.page_size,
        take=None if expanded_row else state.page_size,
        expanded_row=expanded_row,
        page_size=state.page_size,
    )
    if target_depth == len(state.grouping):
        return FetchRequest(kind=FetchKind.JOBS, **common)

    grouped_field = state.grouping[target_depth]
    # every groupable selected column, the grouped one included
    aggregates = tuple(groupable_keys(list(state.columns)))
    return FetchRequest(kind=FetchKind.GROUPS, grouped_field=grouped_field, aggregates=aggregates, **common)


def _expand_request(state: TableState, row_id: str) -> Optional[FetchRequest]:
    info = from_row_id(row_id)
    chain = resolve_path(state.root_rows, info.path_from_root)
    if chain is None:
        logger.debug("Expanded row %s is not in the current tree, not fetching", row_id)
        return None

    target = chain[-1]
    if not is_group_row(target):
        logger.debug("Expanded row %s is not a group, not fetching", row_id)
        return None
    if target.is_materialized:
        logger.debug("Children of %s already fetched", row_id)
        return None
    if info.depth > len(state.grouping):
        logger.debug("Expanded row %s is deeper than grouping %s", row_id, state.grouping)
        return None

    # field names come from the row id; values from the rows so they keep their types
    filters = tuple(
        JobFilter(field=segment.type, value=row.value)
        for segment, row in zip(info.segments, chain)
    )
    return _build_request(state, info, filters)


def reduce(
    state: TableState,
    event: TableEvent,
    max_grouping_depth: Optional[int] = None,
    page_size_options: Optional[Sequence[int]] = None,
) -> Tuple[TableState, Optional[FetchRequest]]:
    """
    Compute the next table state and the fetch it needs, if any.

    Raises:
        ValueError: on an invalid grouping or pagination.
        MalformedRowIdError: if a newly expanded row id cannot be decoded.
    """
    if isinstance(event, Load):
        return state, _build_request(state)

    if isinstance(event, GroupingChanged):
        grouping = tuple(event.grouping)
        validate_grouping(grouping, state.columns, max_grouping_depth)
        # row ids below the changed levels no longer mean anything
        next_state = replace(
            state,
            grouping=grouping,
            expansion=ExpansionState(),
            root_rows=[],
            page_index=0,
            total_row_count=0,
            page_count=-1,
        )
        return next_state, _build_request(next_state)

    if isinstance(event, PaginationChanged):
        if event.page_index < 0:
            raise ValueError("page_index must not be negative")
        if event.page_size <= 0:
            raise ValueError("page_size must be positive")
        if page_size_options is not None and event.page_size not in page_size_options:
            raise ValueError(f"page_size must be one of {sorted(page_size_options)}")
        # the whole root level is replaced, so no expanded subtree survives
        next_state = replace(
            state,
            page_index=event.page_index,
            page_size=event.page_size,
            expansion=ExpansionState(),
        )
        return next_state, _build_request(next_state)

    if isinstance(event, ExpandedChanged):
        expansion = ExpansionState.from_mapping(event.expanded)
        delta = expansion.delta_from(state.expansion)
        next_state = replace(state, expansion=expansion)

        if not delta.newly_expanded:
            if delta.newly_unexpanded:
                logger.debug("Not fetching new data since rows were collapsed: %s", delta.newly_unexpanded)
            return next_state, None

        if len(delta.newly_expanded) > 1:
            logger.warning(
                "More than one newly expanded row: %s, only fetching %s",
                delta.newly_expanded, delta.newly_expanded[0],
            )
        return next_state, _expand_request(next_state, delta.newly_expanded[0])

    raise TypeError(f"Unknown table event: {event!r}")


Listener = Callable[[TableState], None]


class JobsTableController:
    """
    Owns the table state and is the only thing that changes it.
    """

    def __init__(
        self,
        get_jobs_service: GetJobsService,
        group_jobs_service: GroupJobsService,
        columns: Optional[Sequence[ColumnSpec]] = None,
        config: Optional[JobsTableConfig] = None,
    ):
        self.config = config or get_config()
        self.get_jobs_service = get_jobs_service
        self.group_jobs_service = group_jobs_service
        self.job_order = JobOrder(self.config.job_order_field, self.config.job_order_direction)
        self.group_order = JobOrder(self.config.group_order_field, self.config.group_order_direction)
        # the configured default is always a valid choice
        self.page_size_options = sorted(set(self.config.page_size_options) | {self.config.default_page_size})

        self.state = TableState(
            page_size=self.config.default_page_size,
            columns=tuple(columns or DEFAULT_COLUMN_SPECS),
        )
        self._listeners: List[Listener] = []
        self._root_generation = 0
        self._failed_request: Optional[FetchRequest] = None

        self._request_count = 0
        self._dropped_responses = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new state. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: TableState):
        if state is self.state:
            return
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    async def dispatch(self, event: TableEvent) -> TableState:
        next_state, request = reduce(
            self.state, event, self.config.max_grouping_depth, self.page_size_options
        )
        self._set_state(next_state)
        if request is not None:
            await self._run(request)
        return self.state

    async def load(self) -> TableState:
        return await self.dispatch(Load())

    async def set_grouping(self, grouping: Sequence[str]) -> TableState:
        return await self.dispatch(GroupingChanged(tuple(grouping)))

    async def set_expanded(self, expanded: Mapping[str, bool]) -> TableState:
        return await self.dispatch(ExpandedChanged(dict(expanded)))

    async def toggle_expanded(self, row_id: str) -> TableState:
        return await self.dispatch(ExpandedChanged(self.state.expansion.toggle(row_id).expanded))

    async def set_page(self, page_index: int, page_size: Optional[int] = None) -> TableState:
        if page_size is None:
            page_size = self.state.page_size
        return await self.dispatch(PaginationChanged(page_index, page_size))

    def set_columns(self, columns: Sequence[ColumnSpec]) -> TableState:
        """Change the selected columns. Already fetched rows are kept."""
        self._set_state(replace(self.state, columns=tuple(columns)))
        return self.state

    async def retry(self) -> TableState:
        """Reissue the request that failed last, if there is one."""
        request = self._failed_request
        if request is None:
            return self.state
        if request.grouping != self.state.grouping:
            logger.info("Not retrying request for outdated grouping %s", request.grouping)
            self._failed_request = None
            self._set_state(replace(self.state, error=None))
            return self.state
        if request.is_root:
            # pagination may have moved on since the failure
            request = _build_request(self.state)
        await self._run(request)
        return self.state

    async def _run(self, request: FetchRequest):
        self._request_count += 1
        generation = None
        if request.is_root:
            self._root_generation += 1
            generation = self._root_generation

        self._set_state(replace(self.state, in_flight=self.state.in_flight + 1, error=None))
        try:
            result = await self._fetch(request)
        except asyncio.CancelledError:
            self._set_state(replace(self.state, in_flight=self.state.in_flight - 1))
            raise
        except Exception as e:
            logger.error("Failed to fetch %s for %s: %s", request.kind.value, request.location or "root", e)
            self._failed_request = request
            self._set_state(replace(self.state, in_flight=self.state.in_flight - 1, error=str(e)))
            raise FetchError(request, f"Failed to fetch {request.kind.value}: {e}") from e

        state = replace(self.state, in_flight=self.state.in_flight - 1)
        try:
            rows, total = self._project(request, result)
        except InvalidSegmentError as e:
            # not a lookup failure, so nothing is kept for retry
            logger.error("Cannot build rows for %s: %s", request.location or "root", e)
            self._set_state(state)
            raise

        if self._failed_request is not None and (
            self._failed_request is request or (request.is_root and self._failed_request.is_root)
        ):
            self._failed_request = None
        self._set_state(self._apply(state, request, rows, total, generation))

    async def _fetch(self, request: FetchRequest) -> Union[GetJobsResult, GroupJobsResult]:
        filters = list(request.filters)
        if request.kind is FetchKind.JOBS:
            return await self.get_jobs_service.get_jobs(filters, self.job_order, request.skip, request.take)
        return await self.group_jobs_service.group_jobs(
            filters,
            self.group_order,
            request.grouped_field,
            list(request.aggregates),
            request.skip,
            request.take,
        )

    @staticmethod
    def _project(request: FetchRequest, result: Union[GetJobsResult, GroupJobsResult]) -> Tuple[List[Row], int]:
        parent_row_id = request.expanded_row.row_id if request.expanded_row else None
        if request.kind is FetchKind.JOBS:
            return jobs_to_rows(result.jobs, parent_row_id), result.total_jobs
        return groups_to_rows(result.groups, parent_row_id, request.grouped_field), result.total_groups

    def _apply(
        self,
        state: TableState,
        request: FetchRequest,
        rows: List[Row],
        total: int,
        generation: Optional[int],
    ) -> TableState:
        if request.grouping != state.grouping:
            logger.debug("Dropping response for outdated grouping %s", request.grouping)
            self._dropped_responses += 1
            return state

        if request.is_root:
            if generation != self._root_generation:
                logger.debug("Dropping superseded root response")
                self._dropped_responses += 1
                return state
            return replace(
                state,
                root_rows=list(rows),
                total_row_count=total,
                page_count=math.ceil(total / state.page_size),
            )

        merged = merge_sub_rows(state.root_rows, rows, request.location)
        if merged.parent_row is None:
            logger.debug("Dropping response for %s, row is gone", request.expanded_row.row_id)
            self._dropped_responses += 1
            return state
        return replace(state, root_rows=merged.root_rows)

    def get_stats(self) -> Dict[str, int]:
        return {
            "request_count": self._request_count,
            "dropped_responses": self._dropped_responses,
        }
