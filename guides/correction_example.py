"""Send a request back for correction and resubmit it."""

import asyncio

from caseflow import Principal, ServiceRequestCreationData, UserRole
from caseflow.bootstrap import build_engine
from caseflow.config import load_config
from caseflow.exceptions import UnauthorizedError
from caseflow.persistence import InMemoryRequestStore


async def main():
    engine = build_engine(load_config("guides/caseflow.yaml"), store=InMemoryRequestStore())
    front_desk = Principal(id="fd1", name="Kumari Jayasinghe", role=UserRole.FRONT_DESK)
    sr = await engine.create_service_request(
        ServiceRequestCreationData(
            nic_number="851234567V", citizen_name="Kamala Silva", subject_id="sc1"
        ),
        "office1",
        front_desk,
    )

    await engine.claim_task(sr.id, "off1")
    await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-77"})

    try:
        await engine.request_correction(sr.id, "sh1", "wf1s1", "Wrong deed")
    except UnauthorizedError as exc:
        print(f"Section heads cannot request corrections: {exc}")

    sr = await engine.request_correction(sr.id, "dh1", "wf1s1", "Deed number mismatch")
    print(f"{sr.id}: {sr.status.value}, back at {sr.current_step_id} in {sr.assigned_to_office_id}")

    await engine.claim_task(sr.id, "off1")
    sr = await engine.submit_task_data(sr.id, "off1", {"deedNumber": "D-78"})
    print(f"Resubmitted: {sr.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
