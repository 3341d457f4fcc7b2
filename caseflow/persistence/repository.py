"""Store abstraction for service request persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import ServiceRequest, WorkflowHistoryEvent
from .models import RequestFilter


class RequestStore(Protocol):
    """Protocol for service request persistence backends.

    Every record carries a ``version`` that the store increments on each
    write. Writes name the version they were derived from and fail with
    :class:`~caseflow.exceptions.ConcurrencyError` when it is stale.
    History is append-only: stores only ever add events past the ones
    already persisted.
    """

    async def allocate_request_id(self) -> str:
        """Return a fresh, unused service request id."""

    async def create_request(self, request: ServiceRequest) -> ServiceRequest:
        """Persist a new request and return the stored copy."""

    async def get_request(self, request_id: str) -> ServiceRequest | None:
        """Retrieve a request by id."""

    async def save_request(
        self, request: ServiceRequest, expected_version: int
    ) -> ServiceRequest:
        """Persist state and any newly appended history in one write."""

    async def append_history(
        self, request_id: str, event: WorkflowHistoryEvent, expected_version: int
    ) -> ServiceRequest:
        """Append a single history event without touching other fields."""

    async def list_requests(
        self, filters: RequestFilter | None = None
    ) -> list[ServiceRequest]:
        """Return requests matching ``filters`` in creation order."""
