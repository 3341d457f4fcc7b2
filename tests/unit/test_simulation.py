from datetime import datetime, timedelta, timezone

import pytest

from caseflow.contracts import (
    ApprovalType,
    FieldDefinition,
    FieldOption,
    FieldType,
    HistoryAction,
    UploadedDocument,
    ValidationRules,
    WorkflowStepDefinition,
)
from caseflow.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from caseflow.simulation import RunStatus, WorkflowSimulator, generate_sample_data
from caseflow.validation import validate_step_data


@pytest.fixture
def simulator(registry) -> WorkflowSimulator:
    return WorkflowSimulator(registry)


def test_start_records_initial_state(simulator):
    context = simulator.start("wf1", {"nic": "1990"}, user_id="author")

    assert context.run_id.startswith("sim-")
    assert context.status == RunStatus.RUNNING
    assert context.current_step_index == 0
    assert context.step_data == {"nic": "1990"}
    assert context.history[0].action == HistoryAction.STARTED
    assert simulator.get_context(context.run_id) is context


def test_unknown_workflow_or_run(simulator):
    with pytest.raises(NotFoundError):
        simulator.start("missing")
    with pytest.raises(NotFoundError):
        simulator.get_context("sim-missing")


def test_execute_step_without_approval_advances(simulator):
    context = simulator.start("wf1")
    result = simulator.execute_step(context.run_id, {"deedNumber": "D-9"}, "off1")

    # wf1s1 has no named approver
    assert result.success
    assert not result.requires_approval
    assert result.next_step_index == 1
    assert context.step_data["deedNumber"] == "D-9"
    assert context.assigned_users["wf1s1"] == "off1"


def test_execute_step_rejects_invalid_data(simulator):
    context = simulator.start("wf1")
    with pytest.raises(ValidationFailedError):
        simulator.execute_step(context.run_id, {}, "off1")
    assert context.current_step_index == 0


def test_approval_gates_progress(simulator):
    context = simulator.start("wf2")
    result = simulator.execute_step(context.run_id, {}, "off1")

    assert result.requires_approval
    assert result.approval_type == ApprovalType.SECTION_HEAD
    assert context.awaiting_approval == ApprovalType.SECTION_HEAD
    assert not simulator.can_execute_step(context, 0, "off1")
    with pytest.raises(InvalidStateError):
        simulator.execute_step(context.run_id, {}, "off1")

    simulator.approve_step(context.run_id, True, "fine", "sh1")
    assert context.current_step_index == 1
    assert simulator.current_step(context).id == "wf2s2"
    assert simulator.next_step(context).id == "wf2s3"


def test_full_run_completes(simulator):
    context = simulator.start("wf2")
    for _ in range(3):
        simulator.execute_step(context.run_id, {}, "off1")
        simulator.approve_step(context.run_id, True, "ok", "dh1")

    assert context.status == RunStatus.COMPLETED
    assert simulator.progress(context) == 100
    assert context.history[-1].action == HistoryAction.COMPLETED
    assert context.history[-1].step_id == "end"
    assert simulator.estimated_completion(context) is None
    with pytest.raises(InvalidStateError):
        simulator.execute_step(context.run_id, {}, "off1")


def test_rejected_approval_fails_run(simulator):
    context = simulator.start("wf2")
    simulator.execute_step(context.run_id, {}, "off1")
    simulator.approve_step(context.run_id, False, "incomplete", "sh1")

    assert context.status == RunStatus.FAILED
    assert context.history[-1].action == HistoryAction.REJECTED


def test_approve_without_pending_approval(simulator):
    context = simulator.start("wf2")
    with pytest.raises(InvalidStateError):
        simulator.approve_step(context.run_id, True, "", "sh1")


def test_pause_resume_cancel(simulator):
    context = simulator.start("wf1")

    simulator.pause(context.run_id, "waiting for citizen")
    assert context.status == RunStatus.PAUSED
    with pytest.raises(InvalidStateError):
        simulator.execute_step(context.run_id, {"deedNumber": "D"}, "off1")

    simulator.resume(context.run_id, "off1")
    assert context.status == RunStatus.RUNNING
    simulator.cancel(context.run_id, "withdrawn", "off1")
    assert context.status == RunStatus.FAILED
    assert [e.action for e in simulator.history(context.run_id)][-3:] == [
        HistoryAction.PAUSED,
        HistoryAction.RESUMED,
        HistoryAction.CANCELLED,
    ]
    with pytest.raises(InvalidStateError):
        simulator.resume(context.run_id, "off1")


def test_parallel_bookkeeping(simulator):
    context = simulator.start("wf2")
    simulator.start_parallel_steps(context.run_id, ["wf2s2", "wf2s3"])
    assert not simulator.check_parallel_completion(context)

    simulator.complete_parallel_step(context.run_id, "wf2s2")
    simulator.complete_parallel_step(context.run_id, "wf2s3")
    assert simulator.check_parallel_completion(context)

    with pytest.raises(InvalidStateError):
        simulator.complete_parallel_step(context.run_id, "wf2s2")
    with pytest.raises(NotFoundError):
        simulator.start_parallel_steps(context.run_id, ["nope"])


def test_estimated_completion_sums_remaining_steps(simulator):
    context = simulator.start("wf1")
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert simulator.estimated_completion(context, now) == now + timedelta(hours=72)


def test_generated_sample_data_passes_validation(registry):
    step = WorkflowStepDefinition(
        id="s",
        name="Everything",
        form_fields=[
            FieldDefinition(id="a", label="Name", name="name", required=True,
                            validation_rules=ValidationRules(min_length=20)),
            FieldDefinition(id="b", label="Code", name="code", required=True,
                            validation_rules=ValidationRules(max_length=4)),
            FieldDefinition(id="c", label="Value", name="value", type=FieldType.NUMBER,
                            required=True, validation_rules=ValidationRules(min=100)),
            FieldDefinition(id="d", label="Mail", name="mail", type=FieldType.EMAIL),
            FieldDefinition(id="e", label="Phone", name="phone", type=FieldType.PHONE),
            FieldDefinition(id="f", label="Kind", name="kind", type=FieldType.SELECT,
                            options=[FieldOption(value="deed", label="Deed")]),
            FieldDefinition(id="g", label="Note", name="note", default_value="n/a"),
        ],
    )
    data = generate_sample_data(step)

    assert validate_step_data(step, data) == []
    assert data["value"] == 100
    assert data["kind"] == "deed"
    assert data["note"] == "n/a"
    for workflow in registry.list():
        for wf_step in workflow.steps:
            assert validate_step_data(wf_step, generate_sample_data(wf_step)) == []


def test_run_events_use_run_step_id(simulator):
    context = simulator.start("wf1")
    simulator.pause(context.run_id, "lunch")
    simulator.resume(context.run_id, "off1")
    simulator.cancel(context.run_id, "withdrawn", "off1")

    assert [e.step_id for e in context.history[-3:]] == ["run", "run", "run"]
    assert context.history[-1].actor_user_id == "off1"


def test_execute_step_keeps_documents_per_step(simulator):
    deed = UploadedDocument(id="DOC1", name="Deed", url="s3://deed.pdf", uploaded_by="off1")
    nic = UploadedDocument(id="DOC2", name="NIC", url="s3://nic.pdf", uploaded_by="off1")
    context = simulator.start("wf1")

    simulator.execute_step(context.run_id, {"deedNumber": "D-1"}, "off1", [deed, nic])

    assert context.documents == {"wf1s1": [deed, nic]}
    submitted = [e for e in context.history if e.action == HistoryAction.SUBMITTED]
    assert submitted[-1].documents == [deed, nic]
