"""
Job - the leaf record shown in the jobs table.
"""
from dataclasses import dataclass, asdict, fields
from datetime import datetime
from typing import Any, Dict, Optional


class JobState:
    QUEUED = "QUEUED"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    ALL = (QUEUED, PENDING, RUNNING, SUCCEEDED, FAILED, CANCELLED)


@dataclass(frozen=True)
class Job:
    job_id: str
    queue: str
    job_set: str
    owner: str
    state: str
    priority: int = 0
    submitted: Optional[datetime] = None
    cpu: int = 0
    memory: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Job":
        known = {f.name for f in fields(Job)}
        return Job(**{k: v for k, v in d.items() if k in known})


JOB_FIELDS = tuple(f.name for f in fields(Job))
