"""Read-side projections over the request store."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import RequestStatus, ServiceRequest, TaskSummary
from .persistence import RequestFilter, RequestStore
from .registry import WorkflowDefinitionRegistry

logger = logging.getLogger(__name__)


class RequestStatistics(BaseModel):
    """Counts of service requests by status and by subject."""

    total: int = 0
    by_status: Dict[RequestStatus, int] = Field(
        default_factory=lambda: {status: 0 for status in RequestStatus}
    )
    by_subject: Dict[str, int] = Field(default_factory=dict)


class TaskQueryService:
    """Work queues and lookups derived from the engine's assignment fields."""

    def __init__(
        self,
        store: RequestStore,
        registry: WorkflowDefinitionRegistry | None = None,
        offices: Optional[Dict[str, str]] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._offices = offices or {}

    async def tasks_for_office(self, office_id: str) -> List[ServiceRequest]:
        return await self.list_requests(RequestFilter(office_id=office_id))

    async def tasks_for_user(self, user_id: str) -> List[ServiceRequest]:
        return await self.list_requests(RequestFilter(user_id=user_id))

    async def get_service_request_by_id(self, request_id: str) -> ServiceRequest | None:
        return await self._store.get_request(request_id)

    async def list_requests(
        self, filters: RequestFilter | None = None
    ) -> List[ServiceRequest]:
        """Return matching requests, newest first."""
        requests = await self._store.list_requests(filters)
        return sorted(requests, key=lambda r: (r.created_at, r.id), reverse=True)

    async def search_requests(self, text: str) -> List[ServiceRequest]:
        """Case-insensitive search over citizen, NIC, id and history comments."""
        term = text.lower()
        matches = []
        for request in await self.list_requests():
            haystack = [
                request.creation_data.citizen_name,
                request.creation_data.nic_number,
                request.id,
            ] + [event.comment for event in request.history if event.comment]
            if any(term in value.lower() for value in haystack):
                matches.append(request)
        logger.debug(f"Search {text!r} matched {len(matches)} requests")
        return matches

    async def statistics(self) -> RequestStatistics:
        stats = RequestStatistics()
        for request in await self._store.list_requests():
            stats.total += 1
            stats.by_status[request.status] += 1
            stats.by_subject[request.subject_id] = (
                stats.by_subject.get(request.subject_id, 0) + 1
            )
        return stats

    def summarize(self, request: ServiceRequest) -> TaskSummary:
        step_name = request.current_step_id
        if self._registry is not None and request.workflow_definition_id in self._registry:
            step = self._registry.get(request.workflow_definition_id).get_step(
                request.current_step_id
            )
            if step is not None:
                step_name = step.name
        office = request.assigned_to_office_id
        return TaskSummary(
            service_request_id=request.id,
            nic_number=request.creation_data.nic_number,
            subject_id=request.subject_id,
            current_step_id=request.current_step_id,
            current_step_name=step_name,
            assigned_office_id=office,
            assigned_office_name=self._offices.get(office, office) if office else None,
            assigned_user_id=request.assigned_to_user_id,
            status=request.status,
            last_update=request.updated_at,
        )

    async def task_summaries_for_office(self, office_id: str) -> List[TaskSummary]:
        return [self.summarize(r) for r in await self.tasks_for_office(office_id)]

    async def task_summaries_for_user(self, user_id: str) -> List[TaskSummary]:
        return [self.summarize(r) for r in await self.tasks_for_user(user_id)]
