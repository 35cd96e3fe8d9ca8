"""
Deterministic job generator for demos and tests.
"""
import random
from datetime import datetime, timedelta
from typing import List

from jobs_table.types.job import Job, JobState

OWNERS = ["alice", "bob", "carol", "dave"]
BASE_SUBMITTED = datetime(2024, 1, 1, 12, 0, 0)


def make_test_jobs(n_jobs: int, seed: int = 1, n_queues: int = 2, n_job_sets: int = 3) -> List[Job]:
    """
    Build ``n_jobs`` jobs. Job ``i`` lands in queue ``i % n_queues`` and job
    set ``i % n_job_sets``; every other field comes from a seeded RNG.
    """
    rng = random.Random(seed)
    jobs = []
    for i in range(n_jobs):
        jobs.append(Job(
            job_id=f"{i:08d}",
            queue=f"queue-{i % n_queues + 1}",
            job_set=f"job-set-{i % n_job_sets + 1}",
            owner=rng.choice(OWNERS),
            state=rng.choice(JobState.ALL),
            priority=rng.randint(0, 10),
            submitted=BASE_SUBMITTED + timedelta(minutes=i),
            cpu=rng.choice([500, 1000, 2000, 4000]),
            memory=rng.choice([512, 1024, 4096]) * 1024 ** 2,
        ))
    return jobs
