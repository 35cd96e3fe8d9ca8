"""
Contracts of the two job lookup services the table fetches from.

Both treat ``filters`` as a conjunction of equalities and must return the
same answer for the same arguments. ``take`` of None means unbounded.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from jobs_table.types.query import GetJobsResult, GroupJobsResult, JobFilter, JobOrder


class GetJobsService(ABC):
    @abstractmethod
    async def get_jobs(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        skip: int,
        take: Optional[int],
    ) -> GetJobsResult:
        pass


class GroupJobsService(ABC):
    @abstractmethod
    async def group_jobs(
        self,
        filters: Sequence[JobFilter],
        order: JobOrder,
        grouped_field: str,
        aggregates: List[str],
        skip: int,
        take: Optional[int],
    ) -> GroupJobsResult:
        pass


class JobsService(GetJobsService, GroupJobsService):
    """A single object answering both kinds of lookup."""
