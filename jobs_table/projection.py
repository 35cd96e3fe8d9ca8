"""
Conversion of lookup results into tree rows.
"""
from typing import Iterable, List, Optional

from jobs_table.row_id import RowId, to_row_id
from jobs_table.types.job import Job
from jobs_table.types.query import JobGroup
from jobs_table.types.rows import GroupRow, LeafRow

JOB_ROW_TYPE = "job"


def jobs_to_rows(jobs: Iterable[Job], parent_row_id: Optional[RowId] = None) -> List[LeafRow]:
    """One leaf row per job, keyed by the job id."""
    return [
        LeafRow(row_id=to_row_id((JOB_ROW_TYPE, job.job_id), parent_row_id), values=job.to_dict())
        for job in jobs
    ]


def groups_to_rows(
    groups: Iterable[JobGroup],
    parent_row_id: Optional[RowId],
    grouped_field: str,
) -> List[GroupRow]:
    """One unexpanded group row per group, nested under ``parent_row_id``."""
    return [
        GroupRow(
            row_id=to_row_id((grouped_field, group.name), parent_row_id),
            grouped_field=grouped_field,
            value=group.name,
            count=group.count,
            aggregates=dict(group.aggregates),
        )
        for group in groups
    ]
