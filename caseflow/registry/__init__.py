"""Definition and principal lookups consumed by the engine."""

from __future__ import annotations

from .definitions import WorkflowDefinitionRegistry, load_workflow_definitions
from .users import InMemoryUserDirectory, UserDirectory

__all__ = [
    "WorkflowDefinitionRegistry",
    "load_workflow_definitions",
    "UserDirectory",
    "InMemoryUserDirectory",
]
