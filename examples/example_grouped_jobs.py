"""
Example usage of jobs_table with two levels of grouping.
"""
import asyncio
import json

from jobs_table.backends.ibis_backend import IbisJobsBackend
from jobs_table.config import JobsTableConfig
from jobs_table.controller import JobsTableController
from jobs_table.sample_data import make_test_jobs


def print_table(title, state):
    print(f"\n{title}")
    for item in state.visible_rows():
        row = item.row
        label = f"{row.row_id} ({row.count})" if row.kind.value == "group" else row.row_id
        marker = "v" if item.is_expanded else ">" if row.kind.value == "group" else " "
        print(f"{'  ' * item.depth}{marker} {label}")


async def main():
    backend = IbisJobsBackend()
    backend.load_jobs(make_test_jobs(60, seed=7, n_queues=3, n_job_sets=4))

    controller = JobsTableController(backend, backend, config=JobsTableConfig(default_page_size=10))

    # =================================================================
    # 1. Load the first page of ungrouped jobs
    # =================================================================
    state = await controller.load()
    print(f"Loaded {len(state.root_rows)} of {state.total_row_count} jobs, {state.page_count} pages")

    # =================================================================
    # 2. Group by queue, then by job set
    # =================================================================
    state = await controller.set_grouping(["queue", "job_set"])
    print_table("Grouped by queue > job set:", state)

    # =================================================================
    # 3. Expand a queue, then one of its job sets
    # =================================================================
    first_queue = state.root_rows[0].row_id
    state = await controller.toggle_expanded(first_queue)
    first_job_set = state.root_rows[0].children[0].row_id
    state = await controller.toggle_expanded(first_job_set)
    print_table(f"With {first_queue} and {first_job_set} expanded:", state)

    # =================================================================
    # 4. Collapse and re-expand the queue; no new lookup is made
    # =================================================================
    await controller.toggle_expanded(first_queue)
    state = await controller.toggle_expanded(first_queue)
    print_table("After collapsing and re-expanding:", state)

    print("\nController stats:", json.dumps(controller.get_stats()))
    print("Backend stats:", json.dumps(backend.get_stats()))


if __name__ == "__main__":
    asyncio.run(main())
