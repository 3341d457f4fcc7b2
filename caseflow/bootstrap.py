"""Wiring of the engine and its collaborators from configuration."""

from __future__ import annotations

import logging
from typing import Optional

from .config import CaseflowConfig, load_config
from .engine import WorkflowEngine
from .persistence import RequestStore, get_request_store
from .queries import TaskQueryService
from .registry import InMemoryUserDirectory, WorkflowDefinitionRegistry

logger = logging.getLogger(__name__)


def load_registry(config: Optional[CaseflowConfig] = None) -> WorkflowDefinitionRegistry:
    """Registry populated from ``config.workflows_path`` (empty when unset)."""
    config = config or load_config()
    if not config.workflows_path:
        logger.debug("No workflows_path configured; starting with an empty registry")
        return WorkflowDefinitionRegistry()
    return WorkflowDefinitionRegistry.from_yaml(config.workflows_path)


def load_users(config: Optional[CaseflowConfig] = None) -> InMemoryUserDirectory:
    config = config or load_config()
    if not config.users_path:
        return InMemoryUserDirectory()
    return InMemoryUserDirectory.from_yaml(config.users_path)


def build_engine(
    config: Optional[CaseflowConfig] = None,
    store: Optional[RequestStore] = None,
    registry: Optional[WorkflowDefinitionRegistry] = None,
) -> WorkflowEngine:
    config = config or load_config()
    return WorkflowEngine(
        registry=registry or load_registry(config),
        store=store or get_request_store(config.database_url),
        users=load_users(config),
        config=config.engine,
        offices=config.offices,
    )


def build_queries(
    config: Optional[CaseflowConfig] = None,
    store: Optional[RequestStore] = None,
    registry: Optional[WorkflowDefinitionRegistry] = None,
) -> TaskQueryService:
    config = config or load_config()
    return TaskQueryService(
        store or get_request_store(config.database_url),
        registry=registry or load_registry(config),
        offices=config.offices,
    )
