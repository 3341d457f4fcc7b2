import pytest

from caseflow.contracts import Principal, RequestStatus, UserRole
from caseflow.persistence import RequestFilter
from caseflow.queries import TaskQueryService

FRONT_DESK = Principal(id="fd1", name="Front Desk One", role=UserRole.FRONT_DESK)


@pytest.fixture
def queries(store, registry) -> TaskQueryService:
    return TaskQueryService(store, registry=registry, offices={"office1": "Colombo DS"})


@pytest.mark.asyncio
async def test_office_and_user_queues_follow_assignment(engine, queries, land_intake):
    first = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    second = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.claim_task(second.id, "off1")

    office_queue = await queries.tasks_for_office("office1")
    assert [r.id for r in office_queue] == [second.id, first.id]
    assert [r.id for r in await queries.tasks_for_user("off1")] == [second.id]
    assert await queries.tasks_for_office("office8") == []


@pytest.mark.asyncio
async def test_get_by_id(engine, queries, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    assert (await queries.get_service_request_by_id(sr.id)).id == sr.id
    assert await queries.get_service_request_by_id("SR99999") is None


@pytest.mark.asyncio
async def test_list_with_status_filter(engine, queries, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.claim_task(sr.id, "off1")

    in_progress = await queries.list_requests(RequestFilter(status=RequestStatus.IN_PROGRESS))
    assert [r.id for r in in_progress] == [sr.id]


@pytest.mark.asyncio
async def test_search_matches_citizen_and_comments(engine, queries, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    other = land_intake.model_copy(update={"citizen_name": "Sunil Fernando", "nic_number": "7001"})
    await engine.create_service_request(other, "office1", FRONT_DESK)

    assert [r.id for r in await queries.search_requests("nimal")] == [sr.id]
    assert len(await queries.search_requests("colombo ds")) == 2
    assert await queries.search_requests("no such thing") == []


@pytest.mark.asyncio
async def test_statistics(engine, queries, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.claim_task(sr.id, "off1")

    stats = await queries.statistics()
    assert stats.total == 2
    assert stats.by_status[RequestStatus.NEW] == 1
    assert stats.by_status[RequestStatus.IN_PROGRESS] == 1
    assert stats.by_status[RequestStatus.COMPLETED] == 0
    assert stats.by_subject == {"sc1": 2}


@pytest.mark.asyncio
async def test_task_summaries(engine, queries, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)

    [summary] = await queries.task_summaries_for_office("office1")
    assert summary.service_request_id == sr.id
    assert summary.nic_number == "199012345678"
    assert summary.current_step_name == "Initial Document Verification"
    assert summary.assigned_office_name == "Colombo DS"
    assert summary.status == RequestStatus.NEW
    assert await queries.task_summaries_for_user("off1") == []
