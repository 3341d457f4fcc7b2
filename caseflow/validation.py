"""Validation of step data and of workflow definitions at authoring time."""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel

from .contracts import (
    ApprovalType,
    FieldDefinition,
    FieldType,
    WorkflowDefinition,
    WorkflowStepDefinition,
)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")

LONG_STEP_HOURS = 720
MAX_RECOMMENDED_STEPS = 10


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _check_field(field: FieldDefinition, value: Any) -> List[str]:
    errors: List[str] = []
    if field.type == FieldType.EMAIL:
        if not EMAIL_RE.match(str(value)):
            errors.append(f"{field.label} must be a valid email address")
    elif field.type == FieldType.NUMBER:
        if _as_number(value) is None:
            errors.append(f"{field.label} must be a number")
    elif field.type == FieldType.PHONE:
        if not PHONE_RE.match(re.sub(r"\s", "", str(value))):
            errors.append(f"{field.label} must be a valid phone number")

    rules = field.validation_rules
    if rules is None:
        return errors
    if isinstance(value, str):
        if rules.min_length is not None and len(value) < rules.min_length:
            errors.append(
                f"{field.label} must be at least {rules.min_length} characters"
            )
        if rules.max_length is not None and len(value) > rules.max_length:
            errors.append(
                f"{field.label} must be at most {rules.max_length} characters"
            )
        if rules.pattern and not re.fullmatch(rules.pattern, value):
            errors.append(f"{field.label} has an invalid format")
    if rules.min is not None or rules.max is not None:
        number = _as_number(value)
        if number is not None:
            if rules.min is not None and number < rules.min:
                errors.append(f"{field.label} must be at least {rules.min:g}")
            if rules.max is not None and number > rules.max:
                errors.append(f"{field.label} must be at most {rules.max:g}")
    return errors


def validate_step_data(
    step: WorkflowStepDefinition, data: Dict[str, Any]
) -> List[str]:
    """Check ``data`` against the form fields of ``step``.

    Returns a list of human readable errors; an empty list means the data
    may be accepted.
    """

    errors: List[str] = []
    for field in step.form_fields:
        value = data.get(field.name)
        if _is_blank(value):
            if field.required:
                errors.append(f"{field.label} is required")
            continue
        errors.extend(_check_field(field, value))
    return errors


class ValidationIssue(BaseModel):
    """Single finding produced while checking a workflow definition."""

    severity: Literal["error", "warning", "info"]
    message: str
    step_id: Optional[str] = None
    field_id: Optional[str] = None


def validate_workflow_definition(workflow: WorkflowDefinition) -> List[ValidationIssue]:
    """Run authoring checks on ``workflow`` before it is published."""

    issues: List[ValidationIssue] = []

    def add(severity, message, step_id=None, field_id=None):
        issues.append(
            ValidationIssue(
                severity=severity, message=message, step_id=step_id, field_id=field_id
            )
        )

    if not workflow.name.strip():
        add("error", "Workflow name is required")
    if not workflow.subject_id:
        add("error", "Subject is required")
    if not workflow.steps:
        add("error", "At least one step is required")

    seen_ids: set[str] = set()
    for index, step in enumerate(workflow.steps):
        label = f"Step {index + 1}"
        if step.id in seen_ids:
            add("error", f"{label}: Duplicate step id {step.id!r}", step.id)
        seen_ids.add(step.id)

        if not step.name.strip():
            add("error", f"{label}: Name is required", step.id)
        if step.estimated_duration is not None:
            if step.estimated_duration <= 0:
                add(
                    "error",
                    f"{label}: Estimated duration must be greater than 0",
                    step.id,
                )
            elif step.estimated_duration > LONG_STEP_HOURS:
                add(
                    "warning",
                    f"{label}: Estimated duration is very long "
                    f"({step.estimated_duration:g} hours)",
                    step.id,
                )
        if not step.assignable_to_office_ids:
            add(
                "warning",
                f"{label}: No assignable offices; the step cannot be routed "
                "or targeted by a correction",
                step.id,
            )

        names = [f.name for f in step.form_fields]
        for field_index, field in enumerate(step.form_fields):
            prefix = f"{label}, Field {field_index + 1}"
            if not field.label.strip():
                add("error", f"{prefix}: Label is required", step.id, field.id)
            if not field.name.strip():
                add("error", f"{prefix}: Field name is required", step.id, field.id)
            elif names.count(field.name) > 1:
                add(
                    "error",
                    f"{label}: Duplicate field name {field.name!r}",
                    step.id,
                    field.id,
                )
            rules = field.validation_rules
            if rules is not None and rules.pattern:
                try:
                    re.compile(rules.pattern)
                except re.error as exc:
                    add(
                        "error",
                        f"{prefix}: Invalid pattern {rules.pattern!r} ({exc})",
                        step.id,
                        field.id,
                    )

        if step.approval_type == ApprovalType.DEPARTMENT_HEAD and any(
            later.approval_type == ApprovalType.SECTION_HEAD
            for later in workflow.steps[index + 1 :]
        ):
            add(
                "warning",
                f"{label}: Department Head approval should typically be the final step",
                step.id,
            )

    if workflow.steps and not any(
        s.approval_type != ApprovalType.NONE for s in workflow.steps
    ):
        add(
            "info",
            "No approval steps defined. Consider adding approval steps for "
            "important decisions.",
        )
    parallel = [s for s in workflow.steps if s.is_parallel]
    if parallel:
        add(
            "info",
            f"{len(parallel)} step(s) are marked parallel; they still execute in order.",
        )
    if len(workflow.steps) > MAX_RECOMMENDED_STEPS:
        add(
            "warning",
            "Workflow has many steps. Consider breaking it into smaller workflows.",
        )
    return issues


def has_errors(issues: List[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)
