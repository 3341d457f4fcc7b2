"""Lookup of published workflow definitions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from ..contracts import WorkflowDefinition, WorkflowStepDefinition
from ..exceptions import NotFoundError, ValidationFailedError
from ..validation import has_errors, validate_workflow_definition

logger = logging.getLogger(__name__)


def _version_key(version: str) -> Tuple[int, ...]:
    parts = []
    for part in version.split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    return tuple(parts)


class WorkflowDefinitionRegistry:
    """Read-side registry of immutable workflow definitions.

    Definitions are checked with :func:`validate_workflow_definition` when
    registered; anything reporting an error-severity issue is refused so the
    engine only ever sees non-empty step sequences with unique step ids.
    """

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: WorkflowDefinition) -> None:
        issues = validate_workflow_definition(definition)
        if has_errors(issues):
            raise ValidationFailedError(
                [i.message for i in issues if i.severity == "error"],
                f"Workflow {definition.id!r} cannot be published",
            )
        if definition.id in self._definitions:
            raise ValueError(f"Workflow {definition.id!r} is already registered")
        self._definitions[definition.id] = definition
        logger.debug(f"Registered workflow {definition.id} v{definition.version}")

    def get(self, workflow_id: str) -> WorkflowDefinition:
        definition = self._definitions.get(workflow_id)
        if definition is None:
            raise NotFoundError("Workflow", workflow_id)
        return definition

    def get_step(self, workflow_id: str, step_id: str) -> WorkflowStepDefinition:
        step = self.get(workflow_id).get_step(step_id)
        if step is None:
            raise NotFoundError("Step", step_id)
        return step

    def find_by_subject(self, subject_id: str) -> Optional[WorkflowDefinition]:
        """Return the newest active workflow for ``subject_id``."""
        candidates = [
            d
            for d in self._definitions.values()
            if d.subject_id == subject_id and d.is_active
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda d: _version_key(d.version))

    def list(self) -> List[WorkflowDefinition]:
        return list(self._definitions.values())

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "WorkflowDefinitionRegistry":
        return cls(load_workflow_definitions(path))


def load_workflow_definitions(path: str | Path) -> List[WorkflowDefinition]:
    """Parse a YAML document holding a ``workflows`` list."""

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    raw = data.get("workflows", []) if isinstance(data, dict) else data
    return [WorkflowDefinition.model_validate(item) for item in raw]
