"""Command line interface for inspecting requests and workflow definitions."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from caseflow.bootstrap import build_queries, load_registry
from caseflow.config import load_config
from caseflow.contracts import RequestStatus
from caseflow.exceptions import CaseflowError
from caseflow.persistence import RequestFilter
from caseflow.registry import load_workflow_definitions
from caseflow.simulation import WorkflowSimulator, generate_sample_data
from caseflow.validation import has_errors, validate_workflow_definition

app = typer.Typer(help="CLI for caseflow service requests and workflows")

# Command groups
request_app = typer.Typer(help="Commands for inspecting service requests")
workflow_app = typer.Typer(help="Commands for managing workflow definitions")

app.add_typer(request_app, name="request")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for caseflow"),
) -> None:
    """Caseflow CLI entry point."""
    logging.basicConfig(level=log_level.upper())


@request_app.command("list")
def request_list(
    office: Optional[str] = typer.Option(None, help="Only requests assigned to this office"),
    user: Optional[str] = typer.Option(None, help="Only requests claimed by this user"),
    status: Optional[RequestStatus] = typer.Option(None, help="Only requests in this status"),
) -> None:
    """
    List service requests, newest first.

    Example:
        caseflow request list --office office1
        # Output: SR00002    PendingReview    wf1s1    office1    -
    """
    queries = build_queries()
    requests = asyncio.run(
        queries.list_requests(
            RequestFilter(office_id=office, user_id=user, status=status)
        )
    )
    if not requests:
        typer.echo("No service requests found")
        return
    for sr in requests:
        typer.echo(
            f"{sr.id}\t{sr.status.value}\t{sr.current_step_id}\t"
            f"{sr.assigned_to_office_id or '-'}\t{sr.assigned_to_user_id or '-'}"
        )


@request_app.command("show")
def request_show(request_id: str) -> None:
    """
    Show a service request with its full audit history.

    Example:
        caseflow request show SR00001
    """
    queries = build_queries()
    sr = asyncio.run(queries.get_service_request_by_id(request_id))
    if sr is None:
        typer.echo("Service request not found")
        raise typer.Exit(code=1)
    summary = queries.summarize(sr)
    typer.echo(f"Service request {sr.id}: {sr.status.value}")
    typer.echo(f"Citizen: {sr.creation_data.citizen_name} ({sr.creation_data.nic_number})")
    typer.echo(f"Workflow: {sr.workflow_definition_id}")
    typer.echo(f"Current step: {summary.current_step_name}")
    typer.echo(
        f"Office: {summary.assigned_office_name or '-'}  "
        f"User: {sr.assigned_to_user_id or '-'}"
    )
    for event in sr.history:
        line = (
            f"- {event.timestamp:%Y-%m-%d %H:%M} {event.action.value} "
            f"[{event.step_name}] by {event.actor_name}"
        )
        if event.comment:
            line += f": {event.comment}"
        typer.echo(line)


@request_app.command("stats")
def request_stats() -> None:
    """Show request counts by status and subject."""
    stats = asyncio.run(build_queries().statistics())
    typer.echo(f"Total: {stats.total}")
    for status, count in stats.by_status.items():
        typer.echo(f"{status.value}\t{count}")
    for subject, count in sorted(stats.by_subject.items()):
        typer.echo(f"subject {subject}\t{count}")


def _definitions_path(path: Optional[Path]) -> Path:
    if path is not None:
        return path
    configured = load_config().workflows_path
    if not configured:
        typer.secho("No workflow file given or configured", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return Path(configured)


@workflow_app.command("list")
def workflow_list() -> None:
    """List the workflow definitions loaded from configuration."""
    registry = load_registry()
    if not len(registry):
        typer.echo("No workflows found")
        return
    for wf in registry.list():
        state = "active" if wf.is_active else "inactive"
        typer.echo(
            f"{wf.id}\t{wf.name}\tsubject={wf.subject_id}\tv{wf.version}\t"
            f"{len(wf.steps)} steps\t{state}"
        )


@workflow_app.command("validate")
def workflow_validate(path: Optional[Path] = typer.Argument(None)) -> None:
    """
    Check workflow definitions before publishing them.

    Prints every issue found and exits with code 1 when any is an error.

    Example:
        caseflow workflow validate ./workflows.yaml
        # Output: wf1: OK
        #         wf9: [error] At least one step is required
    """
    source = _definitions_path(path)
    if not source.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    failed = False
    for definition in load_workflow_definitions(source):
        issues = validate_workflow_definition(definition)
        if not issues:
            typer.echo(f"{definition.id}: OK")
            continue
        for issue in issues:
            typer.echo(f"{definition.id}: [{issue.severity}] {issue.message}")
        failed = failed or has_errors(issues)
    if failed:
        raise typer.Exit(code=1)


@workflow_app.command("simulate")
def workflow_simulate(
    workflow_id: str,
    path: Optional[Path] = typer.Option(None, help="YAML file with workflow definitions"),
    reject_at: Optional[str] = typer.Option(None, help="Step id whose approval is refused"),
) -> None:
    """
    Walk a workflow end to end with generated sample data.

    Approval steps are approved automatically unless named by ``--reject-at``.

    Example:
        caseflow workflow simulate wf1 --path ./workflows.yaml
    """
    source = _definitions_path(path)
    definitions = {d.id: d for d in load_workflow_definitions(source)}
    if workflow_id not in definitions:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    simulator = WorkflowSimulator()
    try:
        context = simulator.start(definitions[workflow_id], user_id="simulator")
        while not context.status.is_terminal:
            step = simulator.current_step(context)
            result = simulator.execute_step(
                context.run_id, generate_sample_data(step), "simulator"
            )
            typer.echo(f"- {step.id} {step.name}: submitted")
            if result.requires_approval:
                approved = step.id != reject_at
                simulator.approve_step(
                    context.run_id, approved, "simulated decision", "simulator"
                )
                verdict = "approved" if approved else "rejected"
                typer.echo(f"  {result.approval_type.value} {verdict}")
    except CaseflowError as exc:
        typer.secho(f"Simulation failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(
        f"Run {context.run_id}: {context.status.value} "
        f"({simulator.progress(context):.0f}% of steps)"
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
