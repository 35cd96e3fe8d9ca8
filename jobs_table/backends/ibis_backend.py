"""
IbisJobsBackend - job lookups against a table in any Ibis-supported database.

Features:
- Conjunctive equality filters, stable ordering, skip/take paging
- Grouped counts with per-field aggregates
- Arrow based loading of job records
- Queries run in the default executor so the event loop is never blocked
"""
import asyncio
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import ibis
import pyarrow as pa

from jobs_table.services.base import JobsService
from jobs_table.types.job import Job
from jobs_table.types.query import (
    GetJobsResult,
    GroupJobsResult,
    JobFilter,
    JobGroup,
    JobOrder,
    SortDirection,
)

JOBS_SCHEMA = pa.schema([
    ("job_id", pa.string()),
    ("queue", pa.string()),
    ("job_set", pa.string()),
    ("owner", pa.string()),
    ("state", pa.string()),
    ("priority", pa.int64()),
    ("submitted", pa.timestamp("us")),
    ("cpu", pa.int64()),
    ("memory", pa.int64()),
])

GROUP_COUNT_COLUMN = "group_count"
GROUP_NAME_ORDER = "name"
GROUP_COUNT_ORDER = "count"


def connect(connection_uri: str = ":memory:", **connection_kwargs):
    """Open an Ibis connection for a URI. Unknown schemes are treated as DuckDB paths."""
    if connection_uri.startswith("postgres://"):
        parsed = urlparse(connection_uri)
        return ibis.postgres.connect(
            host=parsed.hostname,
            port=parsed.port,
            user=parsed.username,
            password=parsed.password,
            database=parsed.path[1:],
        )
    if connection_uri.startswith("sqlite://"):
        return ibis.sqlite.connect(connection_uri.replace("sqlite://", ""))
    if connection_uri.startswith("duckdb://"):
        return ibis.duckdb.connect(connection_uri.replace("duckdb://", ""), **connection_kwargs)
    return ibis.duckdb.connect(connection_uri, **connection_kwargs)


def jobs_to_arrow(jobs: Iterable[Job]) -> pa.Table:
    return pa.Table.from_pylist([job.to_dict() for job in jobs], schema=JOBS_SCHEMA)


class IbisJobsBackend(JobsService):
    """
    Answers both job lookups from one table.
    """

    def __init__(
        self,
        connection: Optional[Any] = None,
        connection_uri: Optional[str] = None,
        table_name: str = "jobs",
        **connection_kwargs
    ):
        """
        Initialize the backend.

        Args:
            connection: An existing Ibis connection
            connection_uri: URI used to connect when no connection is given
            table_name: Table holding one row per job
            **connection_kwargs: Additional connection parameters
        """
        self.con = connection if connection is not None else connect(connection_uri or ":memory:", **connection_kwargs)
        self.table_name = table_name
        self._lock = threading.Lock()

        # Track query stats
        self._query_count = 0
        self._total_time = 0.0

    def load_arrow(self, table: pa.Table):
        """Replace the jobs table with the contents of an Arrow table."""
        with self._lock:
            self.con.create_table(self.table_name, table, overwrite=True)

    def load_jobs(self, jobs: Iterable[Job]):
        self.load_arrow(jobs_to_arrow(jobs))

    def has_table(self) -> bool:
        return self.table_name in self.con.list_tables()

    def _table(self):
        return self.con.table(self.table_name)

    @staticmethod
    def _check_field(table, field: str):
        if field not in table.columns:
            raise ValueError(f"Unknown job field: {field}")

    def _apply_filters(self, table, filters: Sequence[JobFilter]):
        for job_filter in filters:
            self._check_field(table, job_filter.field)
            column = table[job_filter.field]
            predicate = column.isnull() if job_filter.value is None else column == job_filter.value
            table = table.filter(predicate)
        return table

    @staticmethod
    def _sort_key(column, direction: str):
        return ibis.desc(column) if direction == SortDirection.DESC else ibis.asc(column)

    @staticmethod
    def _page(expr, skip: int, take: Optional[int]):
        if take is None and not skip:
            return expr
        return expr.limit(take, offset=skip)

    def _timed(self, fn, *args):
        start = time.time()
        with self._lock:
            result = fn(*args)
        self._query_count += 1
        self._total_time += time.time() - start
        return result

    def _get_jobs_sync(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        skip: int,
        take: Optional[int],
    ) -> GetJobsResult:
        table = self._apply_filters(self._table(), filters)
        self._check_field(table, order.field)

        total = int(table.count().execute())
        sort_keys = [self._sort_key(table[order.field], order.direction)]
        if order.field != "job_id":
            sort_keys.append(ibis.asc(table.job_id))

        expr = self._page(table.order_by(sort_keys), skip, take)
        rows = expr.to_pyarrow().to_pylist()
        return GetJobsResult(jobs=[Job.from_dict(row) for row in rows], total_jobs=total)

    def _group_jobs_sync(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        grouped_field: str,
        aggregates: List[str],
        skip: int,
        take: Optional[int],
    ) -> GroupJobsResult:
        table = self._apply_filters(self._table(), filters)
        self._check_field(table, grouped_field)

        aggregate_fields = [f for f in aggregates if f != grouped_field]
        metrics: Dict[str, Any] = {GROUP_COUNT_COLUMN: table.count()}
        for field in aggregate_fields:
            self._check_field(table, field)
            metrics[f"{field}__distinct"] = table[field].nunique()
            metrics[f"{field}__present"] = table[field].count()
            metrics[f"{field}__min"] = table[field].min()

        grouped = table.group_by(grouped_field).aggregate(**metrics)
        total = int(grouped.count().execute())

        if order.field == GROUP_NAME_ORDER:
            order_column = grouped[grouped_field]
        elif order.field == GROUP_COUNT_ORDER:
            order_column = grouped[GROUP_COUNT_COLUMN]
        elif order.field in aggregate_fields:
            order_column = grouped[f"{order.field}__min"]
        else:
            raise ValueError(f"Cannot order groups by {order.field}")

        sort_keys = [self._sort_key(order_column, order.direction)]
        if order.field != GROUP_NAME_ORDER:
            sort_keys.append(ibis.asc(grouped[grouped_field]))

        expr = self._page(grouped.order_by(sort_keys), skip, take)
        groups = []
        for row in expr.to_pyarrow().to_pylist():
            # a field only has an aggregate value when every member agrees on it;
            # nunique skips nulls, so a null member makes the group mixed
            group_aggregates = {
                field: row[f"{field}__min"] if (
                    row[f"{field}__distinct"] == 1
                    and row[f"{field}__present"] == row[GROUP_COUNT_COLUMN]
                ) else None
                for field in aggregate_fields
            }
            groups.append(JobGroup(
                name=row[grouped_field],
                count=int(row[GROUP_COUNT_COLUMN]),
                aggregates=group_aggregates,
            ))
        return GroupJobsResult(groups=groups, total_groups=total)

    async def get_jobs(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        skip: int,
        take: Optional[int],
    ) -> GetJobsResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self._timed, self._get_jobs_sync, list(filters), order, skip, take
        )

    async def group_jobs(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        grouped_field: str,
        aggregates: List[str],
        skip: int,
        take: Optional[int],
    ) -> GroupJobsResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self._timed, self._group_jobs_sync, list(filters), order, grouped_field, list(aggregates), skip, take
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "query_count": self._query_count,
            "total_time": self._total_time,
            "avg_time": self._total_time / self._query_count if self._query_count else 0.0,
        }
