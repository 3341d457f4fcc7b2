"""End to end service request flows through the engine."""

import asyncio

import pytest

from caseflow.contracts import HistoryAction, Principal, RequestStatus, UserRole
from caseflow.engine import WorkflowEngine
from caseflow.exceptions import AlreadyClaimedError, ConcurrencyError, InvalidStateError
from caseflow.persistence import InMemoryRequestStore, SQLiteRequestStore
from caseflow.queries import TaskQueryService

FRONT_DESK = Principal(id="fd1", name="Front Desk One", role=UserRole.FRONT_DESK)


@pytest.mark.asyncio
async def test_two_step_land_transfer(engine, store, registry, land_intake):
    queries = TaskQueryService(store, registry)
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    assert [r.id for r in await queries.tasks_for_office("office1")] == [sr.id]

    await engine.claim_task(sr.id, "off1")
    assert [r.id for r in await queries.tasks_for_user("off1")] == [sr.id]
    sr = await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-1"})
    assert sr.status == RequestStatus.PENDING_REVIEW

    sr = await engine.approve_step(sr.id, "sh1", "verified")
    assert (sr.status, sr.current_step_id, sr.assigned_to_office_id) == (
        RequestStatus.NEW,
        "wf1s2",
        "office8",
    )
    assert await queries.tasks_for_office("office1") == []
    assert [r.id for r in await queries.tasks_for_office("office8")] == [sr.id]

    await engine.claim_task(sr.id, "off8")
    sr = await engine.submit_task_data(sr.id, "off8", {"landValue": 1000})
    assert sr.status == RequestStatus.PENDING_APPROVAL
    sr = await engine.approve_step(sr.id, "dh1", "approved")

    assert sr.status == RequestStatus.COMPLETED
    assert sr.assigned_to_office_id is None
    assert sr.assigned_to_user_id is None
    assert sr.data["deedNumber"] == "D-1"
    assert sr.data["landValue"] == 1000
    assert [e.action for e in sr.history] == [
        HistoryAction.CREATED,
        HistoryAction.TASK_CLAIMED,
        HistoryAction.SUBMITTED,
        HistoryAction.APPROVED,
        HistoryAction.FORWARDED,
        HistoryAction.TASK_CLAIMED,
        HistoryAction.SUBMITTED,
        HistoryAction.APPROVED,
    ]


@pytest.mark.asyncio
async def test_n_approvals_complete_three_step_workflow(engine, users, land_intake):
    for user_id, office in (("off4", "office4"), ("off5", "office5"), ("sh4", "office4"),
                            ("sh5", "office5")):
        role = UserRole.SECTION_HEAD if user_id.startswith("sh") else UserRole.OFFICER
        users.add(Principal(id=user_id, name=user_id, role=role, office_id=office))

    permit = land_intake.model_copy(update={"subject_id": "sc2"})
    sr = await engine.create_service_request(permit, "office4", FRONT_DESK)
    plan = [("off4", "sh4"), ("off5", "sh5"), ("off8", "dh1")]
    for officer, approver in plan:
        await engine.claim_task(sr.id, officer)
        await engine.submit_task_data(sr.id, officer, {})
        sr = await engine.approve_step(sr.id, approver)

    assert sr.status == RequestStatus.COMPLETED
    assert sr.assigned_to_office_id is None
    assert sr.assigned_to_user_id is None
    assert sum(e.action == HistoryAction.APPROVED for e in sr.history) == 3


@pytest.mark.asyncio
async def test_correction_loop_returns_to_first_step(engine, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.claim_task(sr.id, "off1")
    await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-1"})
    await engine.approve_step(sr.id, "sh1")
    await engine.claim_task(sr.id, "off8")
    await engine.submit_task_data(sr.id, "off8", {"landValue": 10})

    sr = await engine.request_correction(sr.id, "dh1", "wf1s1", "wrong deed")
    assert (sr.status, sr.current_step_id, sr.assigned_to_office_id) == (
        RequestStatus.CORRECTION_REQUESTED,
        "wf1s1",
        "office1",
    )

    await engine.claim_task(sr.id, "off1")
    sr = await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-2"})
    assert sr.status == RequestStatus.PENDING_REVIEW
    assert sr.data["deedNumber"] == "D-2"


@pytest.mark.asyncio
async def test_claim_held_in_claimable_status(engine, store, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    sr.assigned_to_user_id = "off1"
    await store.save_request(sr, expected_version=sr.version)

    with pytest.raises(AlreadyClaimedError) as exc_info:
        await engine.claim_task(sr.id, "off2")
    assert exc_info.value.holder_id == "off1"
    claimed = await engine.claim_task(sr.id, "off1")
    assert claimed.status == RequestStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_concurrent_approvals_are_serialized(engine, land_intake):
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.claim_task(sr.id, "off1")
    await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-1"})

    results = await asyncio.gather(
        engine.approve_step(sr.id, "sh1"),
        engine.approve_step(sr.id, "dh1"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, InvalidStateError) for r in results) == 1
    final = await engine.get_service_request(sr.id)
    assert final.current_step_id == "wf1s2"
    assert sum(e.action == HistoryAction.APPROVED for e in final.history) == 1


class _YieldingStore(InMemoryRequestStore):
    """Gives other tasks a chance to run between read and write."""

    async def get_request(self, request_id):
        request = await super().get_request(request_id)
        await asyncio.sleep(0)
        return request


@pytest.mark.asyncio
async def test_stale_writer_from_other_engine_is_rejected(registry, users, land_intake):
    store = _YieldingStore()
    first = WorkflowEngine(registry, store, users)
    second = WorkflowEngine(registry, store, users)
    sr = await first.create_service_request(land_intake, "office1", FRONT_DESK)

    results = await asyncio.gather(
        first.claim_task(sr.id, "off1"),
        second.claim_task(sr.id, "off2"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ConcurrencyError) for r in results) == 1
    final = await store.get_request(sr.id)
    assert final.assigned_to_user_id in {"off1", "off2"}
    assert [e.action for e in final.history] == [
        HistoryAction.CREATED,
        HistoryAction.TASK_CLAIMED,
    ]


@pytest.mark.asyncio
async def test_lifecycle_on_sqlite(tmp_path, registry, users, land_intake):
    path = tmp_path / "caseflow.db"
    store = SQLiteRequestStore(path)
    engine = WorkflowEngine(registry, store, users)
    sr = await engine.create_service_request(land_intake, "office1", FRONT_DESK)
    await engine.claim_task(sr.id, "off1")
    await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-1"})
    await engine.attach_document(sr.id, "off1", "Deed.pdf", "s3://deed.pdf")
    await engine.reject_step(sr.id, "sh1", "forged")
    store.close()

    reopened = SQLiteRequestStore(path)
    try:
        engine = WorkflowEngine(registry, reopened, users)
        loaded = await engine.get_service_request(sr.id)
        assert loaded.status == RequestStatus.REJECTED
        assert loaded.data["parcel"] == "LOT-7"
        assert [e.action for e in loaded.history][-2:] == [
            HistoryAction.DOCUMENT_UPLOADED,
            HistoryAction.REJECTED,
        ]
        with pytest.raises(InvalidStateError):
            await engine.approve_step(sr.id, "dh1")
    finally:
        reopened.close()
