"""What-if execution of workflow definitions without touching real requests.

Authoring tools use :class:`WorkflowSimulator` to walk a definition step by
step. Runs follow the same cursor and approval routing as live service
requests but keep their state in memory, addressed by step index.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .contracts import (
    ApprovalType,
    FieldType,
    HistoryAction,
    UploadedDocument,
    WorkflowDefinition,
    WorkflowHistoryEvent,
    WorkflowStepDefinition,
    utcnow,
)
from .exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from .machine import StepCursor, requires_approval
from .registry import WorkflowDefinitionRegistry
from .validation import validate_step_data

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
RUN_STEP_ID = "run"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class ExecutionContext(BaseModel):
    """In-memory state of one simulated run."""

    run_id: str = Field(default_factory=lambda: f"sim-{uuid.uuid4().hex[:12]}")
    workflow: WorkflowDefinition
    current_step_index: int = 0
    step_data: Dict[str, Any] = Field(default_factory=dict)
    documents: Dict[str, List[UploadedDocument]] = Field(default_factory=dict)
    history: List[WorkflowHistoryEvent] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    start_time: datetime = Field(default_factory=utcnow)
    last_update_time: datetime = Field(default_factory=utcnow)
    assigned_users: Dict[str, str] = Field(default_factory=dict)
    parallel_steps: List[str] = Field(default_factory=list)
    awaiting_approval: Optional[ApprovalType] = None

    @property
    def cursor(self) -> StepCursor:
        return StepCursor(workflow=self.workflow, index=self.current_step_index)


class StepExecutionResult(BaseModel):
    success: bool
    next_step_index: Optional[int] = None
    data: Optional[Dict[str, Any]] = None
    comments: Optional[str] = None
    requires_approval: bool = False
    approval_type: Optional[ApprovalType] = None


class WorkflowSimulator:
    """Drives simulated runs of workflow definitions."""

    def __init__(self, registry: WorkflowDefinitionRegistry | None = None) -> None:
        self._registry = registry
        self._contexts: Dict[str, ExecutionContext] = {}

    # ------------------------------------------------------------------
    # Helpers
    def _record(
        self,
        context: ExecutionContext,
        action: HistoryAction,
        actor: str,
        step_id: str = RUN_STEP_ID,
        step_name: Optional[str] = None,
        comment: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        documents: Optional[List[UploadedDocument]] = None,
    ) -> None:
        now = utcnow()
        context.last_update_time = now
        context.history.append(
            WorkflowHistoryEvent(
                step_id=step_id,
                step_name=step_name or action.value,
                actor_user_id=actor,
                actor_name="System" if actor == SYSTEM_ACTOR else f"User {actor}",
                timestamp=now,
                action=action,
                comment=comment,
                data=data,
                documents=list(documents or []),
            )
        )

    def _active(self, run_id: str, *, allow_paused: bool = False) -> ExecutionContext:
        context = self.get_context(run_id)
        if context.status.is_terminal:
            raise InvalidStateError(f"Run {run_id} is {context.status.value}")
        if context.status == RunStatus.PAUSED and not allow_paused:
            raise InvalidStateError(f"Run {run_id} is paused")
        return context

    def _advance(self, context: ExecutionContext, actor: str) -> Optional[int]:
        cursor = context.cursor.advance()
        if cursor.is_finished():
            context.status = RunStatus.COMPLETED
            self._record(
                context,
                HistoryAction.COMPLETED,
                actor,
                step_id="end",
                step_name="Workflow Completed",
                data={"final_data": dict(context.step_data)},
            )
            logger.info(f"Simulated run {context.run_id} completed")
            return None
        context.current_step_index = cursor.index
        return cursor.index

    # ------------------------------------------------------------------
    # Execution management
    def start(
        self,
        workflow: WorkflowDefinition | str,
        initial_data: Optional[Dict[str, Any]] = None,
        user_id: str = SYSTEM_ACTOR,
    ) -> ExecutionContext:
        if isinstance(workflow, str):
            if self._registry is None:
                raise NotFoundError("Workflow", workflow)
            workflow = self._registry.get(workflow)
        if not workflow.steps:
            raise InvalidStateError(f"Workflow {workflow.id} has no steps")

        context = ExecutionContext(workflow=workflow, step_data=dict(initial_data or {}))
        self._record(
            context,
            HistoryAction.STARTED,
            user_id,
            step_id="start",
            step_name="Workflow Started",
            data=dict(initial_data or {}),
        )
        self._contexts[context.run_id] = context
        logger.info(f"Started simulated run {context.run_id} of {workflow.id}")
        return context

    def execute_step(
        self,
        run_id: str,
        step_data: Dict[str, Any],
        user_id: str,
        documents: Optional[List[UploadedDocument]] = None,
    ) -> StepExecutionResult:
        """Submit data for the current step.

        Raises:
            ValidationFailedError: ``step_data`` violates the step's fields.
            InvalidStateError: the run is finished, paused or awaiting approval.
        """
        context = self._active(run_id)
        if context.awaiting_approval is not None:
            raise InvalidStateError(
                f"Run {run_id} is awaiting {context.awaiting_approval.value} approval"
            )
        step = context.cursor.current

        errors = validate_step_data(step, step_data)
        if errors:
            raise ValidationFailedError(errors)

        context.step_data = {**context.step_data, **step_data}
        context.assigned_users[step.id] = user_id
        if documents:
            context.documents[step.id] = [
                *context.documents.get(step.id, []),
                *documents,
            ]
        self._record(
            context,
            HistoryAction.SUBMITTED,
            user_id,
            step_id=step.id,
            step_name=step.name,
            data=dict(step_data),
            documents=documents,
        )

        if requires_approval(step):
            self.request_approval(run_id, step.approval_type)
            return StepExecutionResult(
                success=True,
                data=step_data,
                requires_approval=True,
                approval_type=step.approval_type,
                comments="Step completed, awaiting approval",
            )

        next_index = self._advance(context, user_id)
        return StepExecutionResult(success=True, next_step_index=next_index, data=step_data)

    def pause(self, run_id: str, reason: str) -> ExecutionContext:
        context = self._active(run_id, allow_paused=True)
        context.status = RunStatus.PAUSED
        self._record(
            context, HistoryAction.PAUSED, SYSTEM_ACTOR, step_name="Workflow Paused",
            comment=reason,
        )
        return context

    def resume(self, run_id: str, user_id: str) -> ExecutionContext:
        context = self._active(run_id, allow_paused=True)
        context.status = RunStatus.RUNNING
        self._record(
            context, HistoryAction.RESUMED, user_id, step_name="Workflow Resumed"
        )
        return context

    def cancel(self, run_id: str, reason: str, user_id: str) -> ExecutionContext:
        context = self._active(run_id, allow_paused=True)
        context.status = RunStatus.FAILED
        self._record(
            context,
            HistoryAction.CANCELLED,
            user_id,
            step_name="Workflow Cancelled",
            comment=reason,
        )
        logger.info(f"Simulated run {run_id} cancelled: {reason}")
        return context

    # ------------------------------------------------------------------
    # State management
    def get_context(self, run_id: str) -> ExecutionContext:
        context = self._contexts.get(run_id)
        if context is None:
            raise NotFoundError("Simulation run", run_id)
        return context

    def history(self, run_id: str) -> List[WorkflowHistoryEvent]:
        return list(self.get_context(run_id).history)

    # ------------------------------------------------------------------
    # Step management
    @staticmethod
    def current_step(context: ExecutionContext) -> Optional[WorkflowStepDefinition]:
        return context.cursor.current

    @staticmethod
    def next_step(context: ExecutionContext) -> Optional[WorkflowStepDefinition]:
        return context.cursor.next_step()

    @staticmethod
    def can_execute_step(context: ExecutionContext, step_index: int, user_id: str) -> bool:
        return (
            context.status == RunStatus.RUNNING
            and context.awaiting_approval is None
            and step_index == context.current_step_index
            and context.cursor.current is not None
        )

    # ------------------------------------------------------------------
    # Approval management
    def request_approval(self, run_id: str, approval_type: ApprovalType) -> None:
        context = self._active(run_id)
        context.awaiting_approval = approval_type
        self._record(
            context,
            HistoryAction.APPROVAL_REQUESTED,
            SYSTEM_ACTOR,
            comment=f"{approval_type.value} approval requested",
        )

    def approve_step(
        self, run_id: str, approved: bool, comments: str, approver_id: str
    ) -> ExecutionContext:
        """Resolve a pending approval, advancing on approval and failing otherwise."""
        context = self._active(run_id)
        if context.awaiting_approval is None:
            raise InvalidStateError(f"Run {run_id} has no approval pending")
        step = context.cursor.current
        context.awaiting_approval = None
        self._record(
            context,
            HistoryAction.APPROVED if approved else HistoryAction.REJECTED,
            approver_id,
            step_id=step.id,
            step_name=step.name,
            comment=comments,
        )
        if approved:
            self._advance(context, approver_id)
        else:
            context.status = RunStatus.FAILED
            logger.info(f"Simulated run {run_id} rejected at step {step.id}")
        return context

    # ------------------------------------------------------------------
    # Parallel bookkeeping
    def start_parallel_steps(self, run_id: str, step_ids: Iterable[str]) -> None:
        context = self._active(run_id)
        step_ids = list(step_ids)
        for step_id in step_ids:
            if context.workflow.get_step(step_id) is None:
                raise NotFoundError("Step", step_id)
        context.parallel_steps = [*context.parallel_steps, *step_ids]
        context.last_update_time = utcnow()

    def complete_parallel_step(self, run_id: str, step_id: str) -> None:
        context = self._active(run_id)
        if step_id not in context.parallel_steps:
            raise InvalidStateError(f"Step {step_id!r} is not running in parallel")
        context.parallel_steps.remove(step_id)
        context.last_update_time = utcnow()

    @staticmethod
    def check_parallel_completion(context: ExecutionContext) -> bool:
        return not context.parallel_steps

    # ------------------------------------------------------------------
    # Reporting
    @staticmethod
    def progress(context: ExecutionContext) -> float:
        if context.status == RunStatus.COMPLETED:
            return 100.0
        return context.cursor.progress()

    @staticmethod
    def estimated_completion(
        context: ExecutionContext, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        cursor = context.cursor
        if context.status.is_terminal or cursor.current is None:
            return None
        return (now or utcnow()) + timedelta(hours=cursor.remaining_hours())


_SAMPLE_VALUES = {
    FieldType.NUMBER: 42,
    FieldType.DATE: "2024-01-01",
    FieldType.EMAIL: "citizen@example.com",
    FieldType.PHONE: "+94771234567",
    FieldType.CHECKBOX: True,
    FieldType.FILE: "sample.pdf",
}


def generate_sample_data(step: WorkflowStepDefinition) -> Dict[str, Any]:
    """Produce values that satisfy every field check of ``step``."""

    data: Dict[str, Any] = {}
    for field in step.form_fields:
        if field.default_value is not None:
            data[field.name] = field.default_value
        elif field.options:
            data[field.name] = field.options[0].value
        elif field.type in _SAMPLE_VALUES:
            value = _SAMPLE_VALUES[field.type]
            rules = field.validation_rules
            if field.type == FieldType.NUMBER and rules is not None:
                if rules.min is not None and value < rules.min:
                    value = rules.min
                if rules.max is not None and value > rules.max:
                    value = rules.max
            data[field.name] = value
        else:
            rules = field.validation_rules
            length = max(rules.min_length or 0, 12) if rules else 12
            if rules and rules.max_length is not None:
                length = min(length, rules.max_length)
            data[field.name] = ("Sample " + field.label)[:length].ljust(length, "x")
    return data
