"""Caseflow: workflow and approval engine for government service requests."""

from .contracts import (
    ApprovalType,
    HistoryAction,
    Principal,
    RequestStatus,
    ServiceRequest,
    ServiceRequestCreationData,
    UploadedDocument,
    UserRole,
    WorkflowDefinition,
    WorkflowHistoryEvent,
    WorkflowStepDefinition,
)
from .engine import WorkflowEngine
from .persistence import get_request_store
from .queries import TaskQueryService
from .registry import InMemoryUserDirectory, WorkflowDefinitionRegistry
from .simulation import WorkflowSimulator

__version__ = "0.1.0"
__all__ = [
    "ApprovalType",
    "HistoryAction",
    "Principal",
    "RequestStatus",
    "ServiceRequest",
    "ServiceRequestCreationData",
    "UploadedDocument",
    "UserRole",
    "WorkflowDefinition",
    "WorkflowHistoryEvent",
    "WorkflowStepDefinition",
    "WorkflowEngine",
    "TaskQueryService",
    "WorkflowDefinitionRegistry",
    "InMemoryUserDirectory",
    "WorkflowSimulator",
    "get_request_store",
]
