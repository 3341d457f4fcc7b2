"""Walk one land transfer request from intake to completion."""

import asyncio
import logging

from caseflow import Principal, ServiceRequestCreationData, UserRole
from caseflow.bootstrap import build_engine, build_queries
from caseflow.config import load_config
from caseflow.persistence import InMemoryRequestStore


async def main():
    logging.basicConfig(level=logging.INFO)
    config = load_config("guides/caseflow.yaml")
    store = InMemoryRequestStore()
    engine = build_engine(config, store=store)
    queries = build_queries(config, store=store)

    front_desk = Principal(
        id="fd1", name="Kumari Jayasinghe", role=UserRole.FRONT_DESK, office_id="office1"
    )
    intake = ServiceRequestCreationData(
        nic_number="199012345678",
        citizen_name="Nimal Perera",
        citizen_address="12 Temple Road, Colombo 7",
        citizen_contact="+94771234567",
        subject_id="sc1",
        initial_documents_present=True,
    )
    sr = await engine.create_service_request(intake, "office1", front_desk)
    print(f"Created {sr.id} at {sr.current_step_id}")

    # Each step: an officer claims and submits, a head approves
    stages = [
        ("off1", {"deedNumber": "D-2024-118"}, "sh1"),
        ("off3", {"surveyPlan": "SP-5531"}, "sh3"),
        ("off8", {"landValue": 4500000}, "dh1"),
    ]
    for officer, form, approver in stages:
        await engine.claim_task(sr.id, officer)
        sr = await engine.submit_task_data(sr.id, officer, form)
        print(f"{sr.id} submitted by {officer}: {sr.status.value}")
        sr = await engine.approve_step(sr.id, approver, "Checked")
        print(f"{sr.id} approved by {approver}: {sr.status.value}")

    for event in sr.history:
        print(f"  {event.action.value:<24} {event.step_name:<32} {event.actor_name}")

    stats = await queries.statistics()
    print(f"Completed requests: {stats.by_status[sr.status]}")


if __name__ == "__main__":
    asyncio.run(main())
