"""
Test suite for the jobs table controller, backed by a real in-memory DuckDB
through Ibis.
"""
import asyncio
import logging
import pytest
from jobs_table.backends.ibis_backend import IbisJobsBackend
from jobs_table.config import JobsTableConfig
from jobs_table.controller import (
    ExpandedChanged,
    FetchError,
    GroupingChanged,
    JobsTableController,
    Load,
    PaginationChanged,
    TableState,
    TableStatus,
    reduce,
)
from jobs_table.projection import groups_to_rows
from jobs_table.row_id import InvalidSegmentError, MalformedRowIdError
from jobs_table.sample_data import make_test_jobs
from jobs_table.services.base import JobsService
from jobs_table.tree import ExpansionState
from jobs_table.types.job import Job
from jobs_table.types.query import FetchKind, JobFilter, JobGroup


class Hold:
    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()


class ScriptedService(JobsService):
    """Records calls and can hold or fail the next one before delegating."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []
        self._holds = []
        self._failures = []

    def hold_next(self) -> Hold:
        hold = Hold()
        self._holds.append(hold)
        return hold

    def fail_next(self, exc: Exception):
        self._failures.append(exc)

    async def _gate(self):
        if self._failures:
            raise self._failures.pop(0)
        if self._holds:
            hold = self._holds.pop(0)
            hold.entered.set()
            await hold.release.wait()

    async def get_jobs(self, filters, order, skip, take):
        self.calls.append(("jobs", tuple(filters), skip, take))
        await self._gate()
        return await self.inner.get_jobs(filters, order, skip, take)

    async def group_jobs(self, filters, order, grouped_field, aggregates, skip, take):
        self.calls.append(("groups", grouped_field, tuple(filters), skip, take))
        await self._gate()
        return await self.inner.group_jobs(filters, order, grouped_field, aggregates, skip, take)


def make_controller(jobs, page_size=30):
    backend = IbisJobsBackend()
    backend.load_jobs(jobs)
    service = ScriptedService(backend)
    controller = JobsTableController(service, service, config=JobsTableConfig(default_page_size=page_size))
    return controller, service


def visible_ids(controller):
    return [v.row.row_id for v in controller.state.visible_rows()]


# ---------------------------------------------------------------------------
# reducer

def test_load_requests_first_root_page():
    state = TableState(page_size=10)
    next_state, request = reduce(state, Load())

    assert next_state is state
    assert request.kind is FetchKind.JOBS
    assert request.is_root
    assert (request.skip, request.take) == (0, 10)
    assert request.filters == ()


def test_pagination_change_requests_offset_page():
    state = TableState(grouping=("queue",), expansion=ExpansionState({"queue:q1": True}))
    next_state, request = reduce(state, PaginationChanged(page_index=2, page_size=5))

    assert next_state.expansion.expanded == {}
    assert request.kind is FetchKind.GROUPS
    assert request.grouped_field == "queue"
    assert (request.skip, request.take) == (10, 5)


def test_grouping_change_resets_tree_and_expansion():
    rows = groups_to_rows([JobGroup("q1", 1)], None, "queue")
    state = TableState(grouping=("queue",), root_rows=rows, page_index=3, expansion=ExpansionState({"queue:q1": True}))

    next_state, request = reduce(state, GroupingChanged(("state", "queue")))

    assert next_state.grouping == ("state", "queue")
    assert next_state.root_rows == []
    assert next_state.expansion.expanded == {}
    assert next_state.page_index == 0
    assert request.is_root
    assert request.grouped_field == "state"
    assert request.aggregates == ("queue", "job_set", "owner", "state")


@pytest.mark.parametrize("grouping", [("job_id",), ("queue", "queue"), ("nope",)])
def test_invalid_grouping_is_rejected(grouping):
    with pytest.raises(ValueError):
        reduce(TableState(), GroupingChanged(grouping))


def test_grouping_deeper_than_maximum_is_rejected():
    with pytest.raises(ValueError):
        reduce(TableState(), GroupingChanged(("queue", "job_set")), max_grouping_depth=1)


def test_expanding_group_requests_children_with_typed_filters():
    rows = groups_to_rows([JobGroup(5, 2), JobGroup(7, 1)], None, "priority")
    state = TableState(grouping=("priority",), root_rows=rows)

    next_state, request = reduce(state, ExpandedChanged({"priority:5": True}))

    assert next_state.expansion.is_expanded("priority:5")
    assert request.kind is FetchKind.JOBS
    assert request.filters == (JobFilter("priority", 5),)
    assert (request.skip, request.take) == (0, None)
    assert request.location == ["priority:5"]


def test_expanding_non_deepest_group_requests_next_level():
    rows = groups_to_rows([JobGroup("q1", 2)], None, "queue")
    state = TableState(grouping=("queue", "job_set"), root_rows=rows)

    _, request = reduce(state, ExpandedChanged({"queue:q1": True}))

    assert request.kind is FetchKind.GROUPS
    assert request.grouped_field == "job_set"
    assert request.filters == (JobFilter("queue", "q1"),)


def test_collapsing_never_fetches():
    rows = groups_to_rows([JobGroup("q1", 2)], None, "queue")
    state = TableState(grouping=("queue",), root_rows=rows, expansion=ExpansionState({"queue:q1": True}))

    next_state, request = reduce(state, ExpandedChanged({}))

    assert request is None
    assert not next_state.expansion.is_expanded("queue:q1")
    assert next_state.root_rows is rows


def test_expanding_unknown_row_does_not_fetch():
    state = TableState(grouping=("queue",), root_rows=groups_to_rows([JobGroup("q1", 2)], None, "queue"))
    _, request = reduce(state, ExpandedChanged({"queue:q9": True}))
    assert request is None


def test_malformed_expanded_row_id_is_an_error():
    with pytest.raises(MalformedRowIdError):
        reduce(TableState(), ExpandedChanged({"not a row id": True}))


# ---------------------------------------------------------------------------
# controller scenarios

@pytest.mark.asyncio
async def test_shows_jobs_without_grouping():
    jobs = make_test_jobs(5)
    controller, _ = make_controller(jobs)

    state = await controller.load()

    assert len(state.root_rows) == 5
    assert visible_ids(controller) == [f"job:{j.job_id}" for j in jobs]
    assert state.root_rows[0].values == jobs[0].to_dict()
    assert state.page_count == 1
    assert state.total_row_count == 5
    assert state.status is TableStatus.IDLE


@pytest.mark.asyncio
async def test_no_data():
    controller, _ = make_controller([])
    state = await controller.load()

    assert state.root_rows == []
    assert state.total_row_count == 0
    assert state.page_count == 0


@pytest.mark.asyncio
async def test_pagination_of_root_level():
    jobs = make_test_jobs(12)
    controller, service = make_controller(jobs, page_size=5)
    await controller.load()
    assert controller.state.page_count == 3

    state = await controller.set_page(2)

    assert [r.row_id for r in state.root_rows] == ["job:00000010", "job:00000011"]
    assert service.calls[-1] == ("jobs", (), 10, 5)


@pytest.mark.asyncio
async def test_group_by_queue_and_expand():
    jobs = make_test_jobs(5)
    controller, service = make_controller(jobs)
    await controller.load()

    await controller.set_grouping(["queue"])
    assert visible_ids(controller) == ["queue:queue-1", "queue:queue-2"]
    assert [r.count for r in controller.state.root_rows] == [3, 2]

    sibling = controller.state.root_rows[1]
    await controller.toggle_expanded("queue:queue-1")

    assert service.calls[-1] == ("jobs", (JobFilter("queue", "queue-1"),), 0, None)
    members = [j for j in jobs if j.queue == "queue-1"]
    assert len(controller.state.visible_rows()) == 2 + len(members)
    assert visible_ids(controller)[1] == f"queue:queue-1>job:{members[0].job_id}"
    assert controller.state.root_rows[1] is sibling
    # root totals are only driven by root requests
    assert controller.state.total_row_count == 2


@pytest.mark.asyncio
async def test_two_level_grouping_collapse_keeps_subtree():
    controller, service = make_controller(make_test_jobs(6, 1, 2, 3))
    await controller.load()
    await controller.set_grouping(["queue", "job_set"])
    assert len(controller.state.visible_rows()) == 2

    await controller.toggle_expanded("queue:queue-1")
    assert len(controller.state.visible_rows()) == 2 + 3
    queue_row = controller.state.root_rows[0]
    assert [c.row_id for c in queue_row.children] == [
        "queue:queue-1>job_set:job-set-1",
        "queue:queue-1>job_set:job-set-2",
        "queue:queue-1>job_set:job-set-3",
    ]

    await controller.toggle_expanded("queue:queue-1>job_set:job-set-1")
    assert len(controller.state.visible_rows()) == 2 + 3 + 1
    assert service.calls[-1] == (
        "jobs", (JobFilter("queue", "queue-1"), JobFilter("job_set", "job-set-1")), 0, None,
    )
    assert "queue:queue-1>job_set:job-set-1>job:00000000" in visible_ids(controller)

    calls_before = len(service.calls)
    await controller.toggle_expanded("queue:queue-1")
    assert len(controller.state.visible_rows()) == 2
    assert controller.state.root_rows[0].children is not None

    await controller.toggle_expanded("queue:queue-1")
    assert len(controller.state.visible_rows()) == 2 + 3 + 1
    assert len(service.calls) == calls_before


@pytest.mark.asyncio
async def test_three_level_grouping():
    jobs = make_test_jobs(200, 1, 2, 3)
    controller, _ = make_controller(jobs)
    await controller.set_grouping(["state", "job_set", "queue"])
    n_states = len({j.state for j in jobs})
    assert len(controller.state.visible_rows()) == n_states

    job = jobs[0]
    state_id = f"state:{job.state}"
    job_set_id = f"{state_id}>job_set:{job.job_set}"
    queue_id = f"{job_set_id}>queue:{job.queue}"

    await controller.toggle_expanded(state_id)
    await controller.toggle_expanded(job_set_id)
    await controller.toggle_expanded(queue_id)

    members = [j for j in jobs if (j.state, j.job_set, j.queue) == (job.state, job.job_set, job.queue)]
    n_job_sets = len({j.job_set for j in jobs if j.state == job.state})
    n_queues = len({j.queue for j in jobs if j.state == job.state and j.job_set == job.job_set})
    assert len(controller.state.visible_rows()) == n_states + n_job_sets + n_queues + len(members)


@pytest.mark.asyncio
async def test_grouping_change_discards_expanded_subtrees():
    controller, service = make_controller(make_test_jobs(5, 1, 2, 3))
    await controller.set_grouping(["queue"])
    await controller.toggle_expanded("queue:queue-1")
    assert controller.state.expansion.expanded == {"queue:queue-1": True}

    await controller.set_grouping(["job_set"])

    assert controller.state.expansion.expanded == {}
    assert visible_ids(controller) == ["job_set:job-set-1", "job_set:job-set-2", "job_set:job-set-3"]
    assert all(r.children is None for r in controller.state.root_rows)
    assert service.calls[-1] == ("groups", "job_set", (), 0, 30)


@pytest.mark.asyncio
async def test_late_response_for_vanished_row_is_dropped():
    controller, _ = make_controller(make_test_jobs(5), page_size=1)
    await controller.set_grouping(["queue"])
    assert visible_ids(controller) == ["queue:queue-1"]

    hold = controller.get_jobs_service.hold_next()
    expanding = asyncio.ensure_future(controller.toggle_expanded("queue:queue-1"))
    await hold.entered.wait()

    await controller.set_page(1)
    assert visible_ids(controller) == ["queue:queue-2"]
    shown = controller.state

    hold.release.set()
    await expanding

    assert controller.state.root_rows is shown.root_rows
    assert visible_ids(controller) == ["queue:queue-2"]
    assert controller.get_stats()["dropped_responses"] == 1
    assert controller.state.in_flight == 0


@pytest.mark.asyncio
async def test_late_response_for_old_grouping_is_dropped():
    controller, service = make_controller(make_test_jobs(6, 1, 2, 3))
    await controller.set_grouping(["queue"])

    hold = service.hold_next()
    expanding = asyncio.ensure_future(controller.toggle_expanded("queue:queue-1"))
    await hold.entered.wait()

    # same root row ids, different meaning below them
    await controller.set_grouping(["queue", "job_set"])
    hold.release.set()
    await expanding

    assert all(r.children is None for r in controller.state.root_rows)
    assert controller.state.expansion.expanded == {}


@pytest.mark.asyncio
async def test_superseded_root_response_is_dropped():
    controller, service = make_controller(make_test_jobs(12), page_size=5)
    await controller.load()

    hold = service.hold_next()
    first = asyncio.ensure_future(controller.set_page(1))
    await hold.entered.wait()
    await controller.set_page(2)

    hold.release.set()
    await first

    assert controller.state.page_index == 2
    assert [r.row_id for r in controller.state.root_rows] == ["job:00000010", "job:00000011"]


@pytest.mark.asyncio
async def test_multiple_new_expansions_fetch_only_the_first(caplog):
    controller, service = make_controller(make_test_jobs(5))
    await controller.set_grouping(["queue"])
    calls_before = len(service.calls)

    with caplog.at_level(logging.WARNING, logger="jobs_table.controller"):
        await controller.set_expanded({"queue:queue-1": True, "queue:queue-2": True})

    assert "More than one newly expanded row" in caplog.text
    assert len(service.calls) == calls_before + 1
    first, second = controller.state.root_rows
    assert first.is_materialized
    assert not second.is_materialized


@pytest.mark.asyncio
async def test_fetch_failure_keeps_tree_and_can_be_retried():
    controller, service = make_controller(make_test_jobs(5))
    await controller.set_grouping(["queue"])
    rows_before = controller.state.root_rows

    service.fail_next(RuntimeError("lookup unavailable"))
    with pytest.raises(FetchError) as exc_info:
        await controller.toggle_expanded("queue:queue-1")

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert controller.state.status is TableStatus.ERROR
    assert controller.state.error == "lookup unavailable"
    assert controller.state.root_rows is rows_before
    assert controller.state.in_flight == 0

    state = await controller.retry()

    assert state.status is TableStatus.IDLE
    assert state.error is None
    assert len(state.root_rows[0].children) == 3


@pytest.mark.asyncio
async def test_unencodable_value_is_not_a_lookup_failure():
    jobs = [Job(job_id="1", queue="team:ml", job_set="js", owner="alice", state="RUNNING")]
    controller, service = make_controller(jobs)
    await controller.load()

    with pytest.raises(InvalidSegmentError):
        await controller.set_grouping(["queue"])

    assert controller.state.status is TableStatus.IDLE
    assert controller.state.error is None
    assert controller.state.in_flight == 0
    assert controller.state.root_rows == []

    calls = len(service.calls)
    await controller.retry()
    assert len(service.calls) == calls


@pytest.mark.asyncio
async def test_null_group_can_be_expanded():
    jobs = [
        Job(job_id="1", queue="queue-1", job_set="js", owner=None, state="RUNNING"),
        Job(job_id="2", queue="queue-1", job_set="js", owner="None", state="RUNNING"),
    ]
    controller, service = make_controller(jobs)
    await controller.set_grouping(["owner"])

    null_row = next(r for r in controller.state.root_rows if r.value is None)
    await controller.toggle_expanded(null_row.row_id)

    assert service.calls[-1] == ("jobs", (JobFilter("owner", None),), 0, None)
    expanded = next(r for r in controller.state.root_rows if r.row_id == null_row.row_id)
    assert [c.values["job_id"] for c in expanded.children] == ["1"]


@pytest.mark.asyncio
async def test_page_size_must_be_positive_and_offered():
    controller, service = make_controller(make_test_jobs(5), page_size=4)
    await controller.load()
    calls = len(service.calls)

    with pytest.raises(ValueError):
        await controller.set_page(0, page_size=0)
    with pytest.raises(ValueError):
        await controller.set_page(0, page_size=7)
    assert len(service.calls) == calls

    state = await controller.set_page(0, page_size=20)
    assert state.page_size == 20
    state = await controller.set_page(0, page_size=4)
    assert state.page_size == 4


@pytest.mark.asyncio
async def test_retry_without_failure_is_a_no_op():
    controller, service = make_controller(make_test_jobs(2))
    await controller.load()
    calls = len(service.calls)

    await controller.retry()

    assert len(service.calls) == calls


@pytest.mark.asyncio
async def test_malformed_row_id_leaves_state_untouched():
    controller, _ = make_controller(make_test_jobs(2))
    await controller.load()
    before = controller.state

    with pytest.raises(MalformedRowIdError):
        await controller.set_expanded({"garbage": True})

    assert controller.state is before


@pytest.mark.asyncio
async def test_subscribers_see_each_new_state():
    controller, _ = make_controller(make_test_jobs(3))
    seen = []
    unsubscribe = controller.subscribe(seen.append)

    await controller.load()

    assert seen[0].status is TableStatus.FETCHING
    assert seen[-1] is controller.state
    assert len(seen[-1].root_rows) == 3

    unsubscribe()
    await controller.set_page(0)
    assert seen[-1].status is TableStatus.IDLE
    assert len(seen) == 2
