"""Transition rules shared by live service requests and simulation runs.

Both the :class:`~caseflow.engine.WorkflowEngine` (which tracks a step id)
and the :class:`~caseflow.simulation.WorkflowSimulator` (which tracks a step
index) walk a workflow through :class:`StepCursor`, so ordering, completion
and approval routing are decided in one place.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel

from .contracts import (
    AWAITING_DECISION_STATUSES,
    ApprovalType,
    Principal,
    RequestStatus,
    UserRole,
    WorkflowDefinition,
    WorkflowStepDefinition,
)
from .exceptions import InvalidStateError, NotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

DEFAULT_STEP_HOURS = 24.0


class StepCursor(BaseModel):
    """Position within a workflow's ordered step sequence."""

    workflow: WorkflowDefinition
    index: int = 0

    @classmethod
    def at_step(cls, workflow: WorkflowDefinition, step_id: str) -> "StepCursor":
        index = workflow.step_index(step_id)
        if index is None:
            raise NotFoundError("Step", step_id)
        return cls(workflow=workflow, index=index)

    @property
    def current(self) -> Optional[WorkflowStepDefinition]:
        """The step at the cursor, ``None`` once past the last step."""
        if 0 <= self.index < len(self.workflow.steps):
            return self.workflow.steps[self.index]
        return None

    @property
    def step_id(self) -> Optional[str]:
        step = self.current
        return step.id if step else None

    def next_step(self) -> Optional[WorkflowStepDefinition]:
        nxt = self.index + 1
        return self.workflow.steps[nxt] if nxt < len(self.workflow.steps) else None

    def advance(self) -> "StepCursor":
        """Return the cursor for the following step."""
        return StepCursor(workflow=self.workflow, index=self.index + 1)

    def is_last(self) -> bool:
        return self.index == len(self.workflow.steps) - 1

    def is_finished(self) -> bool:
        return self.index >= len(self.workflow.steps)

    def remaining_steps(self) -> List[WorkflowStepDefinition]:
        return list(self.workflow.steps[self.index :])

    def progress(self) -> float:
        """Percentage of steps already passed."""
        total = len(self.workflow.steps)
        return min(self.index, total) / total * 100 if total else 100.0

    def remaining_hours(self) -> float:
        return sum(
            step.estimated_duration or DEFAULT_STEP_HOURS
            for step in self.remaining_steps()
        )


def requires_approval(step: WorkflowStepDefinition) -> bool:
    return step.approval_type != ApprovalType.NONE


def status_after_submit(step: WorkflowStepDefinition) -> RequestStatus:
    """Queue submitted work for the approver the step names.

    Steps without an explicit approver are reviewed by the section head.
    """
    if step.approval_type == ApprovalType.DEPARTMENT_HEAD:
        return RequestStatus.PENDING_APPROVAL
    return RequestStatus.PENDING_REVIEW


def check_decision_allowed(
    principal: Principal,
    status: RequestStatus,
    assigned_office_id: Optional[str],
    request_id: str,
) -> None:
    """Guard shared by approval and rejection of a submitted step.

    Raises:
        InvalidStateError: nothing is awaiting a decision.
        UnauthorizedError: the principal may not decide in this state.
    """
    if status not in AWAITING_DECISION_STATUSES:
        raise InvalidStateError(
            f"Service request {request_id} is {status.value}; only PendingReview "
            "or PendingApproval requests can be approved or rejected"
        )
    if principal.role == UserRole.DEPARTMENT_HEAD:
        return
    if principal.role == UserRole.SECTION_HEAD:
        if status != RequestStatus.PENDING_REVIEW:
            raise UnauthorizedError(
                f"Service request {request_id} awaits Department Head approval"
            )
        if principal.office_id is None or principal.office_id != assigned_office_id:
            raise UnauthorizedError(
                f"User {principal.id} is not Section Head of the office "
                f"handling service request {request_id}"
            )
        return
    raise UnauthorizedError(
        f"User {principal.id} with role {principal.role.value} cannot decide on "
        f"service request {request_id}"
    )


def resolve_next_office(
    next_step: WorkflowStepDefinition, requested_office_id: Optional[str] = None
) -> Optional[str]:
    """Pick the office that owns ``next_step``.

    An explicit office wins, then the step's first assignable office.
    """
    return requested_office_id or next_step.first_assignable_office
