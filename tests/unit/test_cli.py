import asyncio

import pytest
from typer.testing import CliRunner

import caseflow.persistence as persistence
from caseflow.cli import app
from caseflow.contracts import Principal, UserRole
from caseflow.persistence import InMemoryRequestStore

RUNNER = CliRunner()
FRONT_DESK = Principal(id="fd1", name="Front Desk One", role=UserRole.FRONT_DESK)


@pytest.fixture(autouse=True)
def cli_config(tmp_path, monkeypatch, fixtures_dir):
    config_path = tmp_path / "caseflow.yaml"
    config_path.write_text(
        f"workflows_path: {fixtures_dir / 'workflows.yaml'}\n"
        f"users_path: {fixtures_dir / 'users.yaml'}\n"
        "offices:\n  office1: Colombo DS\n"
    )
    monkeypatch.setenv("CASEFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("CASEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


@pytest.fixture
def cli_store(monkeypatch, store) -> InMemoryRequestStore:
    monkeypatch.setattr(persistence, "_store_instance", store)
    return store


def test_request_list_and_show(cli_store, engine, land_intake):
    sr = asyncio.run(engine.create_service_request(land_intake, "office1", FRONT_DESK))
    asyncio.run(engine.claim_task(sr.id, "off1"))

    result = RUNNER.invoke(app, ["request", "list", "--office", "office1"])
    assert result.exit_code == 0, result.stdout
    assert f"{sr.id}\tInProgress\twf1s1\toffice1\toff1" in result.stdout

    result = RUNNER.invoke(app, ["request", "show", sr.id])
    assert result.exit_code == 0, result.stdout
    assert f"Service request {sr.id}: InProgress" in result.stdout
    assert "Current step: Initial Document Verification" in result.stdout
    assert "Created [Intake] by Front Desk One: Assigned to Colombo DS" in result.stdout
    assert "Task Claimed" in result.stdout


def test_request_show_missing(cli_store):
    result = RUNNER.invoke(app, ["request", "show", "SR99999"])
    assert result.exit_code == 1
    assert "Service request not found" in result.stdout


def test_request_list_empty_and_stats(cli_store, engine, land_intake):
    result = RUNNER.invoke(app, ["request", "list", "--status", "Completed"])
    assert result.exit_code == 0
    assert "No service requests found" in result.stdout

    asyncio.run(engine.create_service_request(land_intake, "office1", FRONT_DESK))
    result = RUNNER.invoke(app, ["request", "stats"])
    assert result.exit_code == 0
    assert "Total: 1" in result.stdout
    assert "New\t1" in result.stdout
    assert "subject sc1\t1" in result.stdout


def test_workflow_list():
    result = RUNNER.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "wf1\tStandard Land Transfer\tsubject=sc1" in result.stdout
    assert "wf2\tNew Business Permit" in result.stdout


def test_workflow_validate(tmp_path, fixtures_dir):
    result = RUNNER.invoke(app, ["workflow", "validate", str(fixtures_dir / "workflows.yaml")])
    assert result.exit_code == 0, result.stdout
    assert "wf1: OK" in result.stdout
    assert "wf2: OK" in result.stdout

    broken = tmp_path / "broken.yaml"
    broken.write_text("workflows:\n  - {id: wf9, name: Broken, subject_id: sc9}\n")
    result = RUNNER.invoke(app, ["workflow", "validate", str(broken)])
    assert result.exit_code == 1
    assert "wf9: [error] At least one step is required" in result.stdout

    result = RUNNER.invoke(app, ["workflow", "validate", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "Specified path does not exist" in result.stdout


def test_workflow_simulate():
    result = RUNNER.invoke(app, ["workflow", "simulate", "wf2"])
    assert result.exit_code == 0, result.stdout
    assert "- wf2s1 Application Intake: submitted" in result.stdout
    assert "completed (100% of steps)" in result.stdout

    result = RUNNER.invoke(app, ["workflow", "simulate", "wf2", "--reject-at", "wf2s2"])
    assert result.exit_code == 0
    assert "SectionHead rejected" in result.stdout
    assert "failed (33% of steps)" in result.stdout

    result = RUNNER.invoke(app, ["workflow", "simulate", "missing"])
    assert result.exit_code == 1
    assert "Workflow not found" in result.stdout
