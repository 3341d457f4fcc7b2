"""In-memory implementation of the request store."""

from __future__ import annotations

import asyncio
from typing import Dict

from ..contracts import ServiceRequest, WorkflowHistoryEvent
from ..exceptions import ConcurrencyError, InvalidStateError, NotFoundError
from .models import RequestFilter
from .repository import RequestStore


class InMemoryRequestStore(RequestStore):
    """Store service requests in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._requests: Dict[str, ServiceRequest] = {}
        self._next_id = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def allocate_request_id(self) -> str:
        async with self._lock:
            self._next_id += 1
            return f"SR{self._next_id:05d}"

    async def create_request(self, request: ServiceRequest) -> ServiceRequest:
        async with self._lock:
            if request.id in self._requests:
                raise ValueError(f"Service request {request.id} already exists")
            stored = request.model_copy(deep=True, update={"version": 1})
            self._requests[request.id] = stored
            return stored.model_copy(deep=True)

    async def get_request(self, request_id: str) -> ServiceRequest | None:
        stored = self._requests.get(request_id)
        return stored.model_copy(deep=True) if stored else None

    async def save_request(
        self, request: ServiceRequest, expected_version: int
    ) -> ServiceRequest:
        async with self._lock:
            stored = self._current(request.id, expected_version)
            if request.history[: len(stored.history)] != stored.history:
                raise InvalidStateError(
                    f"History of service request {request.id} is append-only"
                )
            updated = request.model_copy(
                deep=True, update={"version": stored.version + 1}
            )
            self._requests[request.id] = updated
            return updated.model_copy(deep=True)

    async def append_history(
        self, request_id: str, event: WorkflowHistoryEvent, expected_version: int
    ) -> ServiceRequest:
        async with self._lock:
            stored = self._current(request_id, expected_version)
            updated = stored.model_copy(
                deep=True,
                update={
                    "history": [*stored.history, event],
                    "updated_at": event.timestamp,
                    "version": stored.version + 1,
                },
            )
            self._requests[request_id] = updated
            return updated.model_copy(deep=True)

    async def list_requests(
        self, filters: RequestFilter | None = None
    ) -> list[ServiceRequest]:
        return [
            r.model_copy(deep=True)
            for r in self._requests.values()
            if filters is None or filters.matches(r)
        ]

    def _current(self, request_id: str, expected_version: int) -> ServiceRequest:
        stored = self._requests.get(request_id)
        if stored is None:
            raise NotFoundError("Service request", request_id)
        if stored.version != expected_version:
            raise ConcurrencyError(request_id, expected_version, stored.version)
        return stored
