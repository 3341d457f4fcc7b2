"""Try out a workflow definition before publishing it."""

from caseflow.registry import WorkflowDefinitionRegistry
from caseflow.simulation import WorkflowSimulator, generate_sample_data
from caseflow.validation import validate_workflow_definition


def main():
    registry = WorkflowDefinitionRegistry.from_yaml("guides/land_transfer_workflows.yaml")
    workflow = registry.get("wf1")

    for issue in validate_workflow_definition(workflow):
        print(f"[{issue.severity}] {issue.message}")

    simulator = WorkflowSimulator(registry)
    context = simulator.start(workflow.id, {"nic_number": "199012345678"}, "author")
    print(f"Estimated completion: {simulator.estimated_completion(context):%Y-%m-%d %H:%M}")

    while not context.status.is_terminal:
        step = simulator.current_step(context)
        result = simulator.execute_step(context.run_id, generate_sample_data(step), "author")
        if result.requires_approval:
            simulator.approve_step(context.run_id, True, "Looks fine", "reviewer")
        print(f"{step.name}: {simulator.progress(context):.0f}% done")

    print(f"Run {context.run_id} {context.status.value}")


if __name__ == "__main__":
    main()
