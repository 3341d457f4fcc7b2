"""Workflow engine advancing service requests through their steps."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from .config import EngineConfig
from .contracts import (
    CLAIMABLE_STATUSES,
    HistoryAction,
    Principal,
    RequestStatus,
    ServiceRequest,
    ServiceRequestCreationData,
    UploadedDocument,
    UserRole,
    WorkflowDefinition,
    WorkflowHistoryEvent,
    utcnow,
)
from .exceptions import (
    AlreadyClaimedError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)
from .machine import (
    StepCursor,
    check_decision_allowed,
    resolve_next_office,
    status_after_submit,
)
from .persistence import RequestStore
from .registry import UserDirectory, WorkflowDefinitionRegistry
from .validation import validate_step_data

logger = logging.getLogger(__name__)

INTAKE_STEP_ID = "INTAKE"


class WorkflowEngine:
    """State machine owning every status transition of a service request.

    Each operation loads the request, checks its guards, mutates a private
    copy and persists state plus history in a single store write. A failed
    guard raises before anything is written. Operations on the same request
    id are serialized; the store's version check rejects writers that raced
    from another process.
    """

    def __init__(
        self,
        registry: WorkflowDefinitionRegistry,
        store: RequestStore,
        users: UserDirectory,
        config: EngineConfig | None = None,
        offices: Optional[Dict[str, str]] = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._users = users
        self._config = config or EngineConfig()
        self._offices = offices or {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_waiters: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Helpers
    @asynccontextmanager
    async def _locked(self, request_id: str) -> AsyncIterator[ServiceRequest]:
        lock = self._locks.setdefault(request_id, asyncio.Lock())
        self._lock_waiters[request_id] = self._lock_waiters.get(request_id, 0) + 1
        try:
            async with lock:
                request = await self._store.get_request(request_id)
                if request is None:
                    raise NotFoundError("Service request", request_id)
                yield request
        finally:
            # Drop the lock once no task holds or awaits it
            self._lock_waiters[request_id] -= 1
            if not self._lock_waiters[request_id]:
                del self._lock_waiters[request_id]
                del self._locks[request_id]

    async def _commit(self, request: ServiceRequest) -> ServiceRequest:
        return await self._store.save_request(request, expected_version=request.version)

    def _office_name(self, office_id: Optional[str]) -> str:
        if office_id is None:
            return "unassigned"
        return self._offices.get(office_id, office_id)

    def _cursor(self, request: ServiceRequest) -> tuple[WorkflowDefinition, StepCursor]:
        workflow = self._registry.get(request.workflow_definition_id)
        return workflow, StepCursor.at_step(workflow, request.current_step_id)

    @staticmethod
    def _ensure_active(request: ServiceRequest) -> None:
        if request.is_terminal:
            raise InvalidStateError(
                f"Service request {request.id} is {request.status.value} and "
                "cannot be modified"
            )

    # ------------------------------------------------------------------
    # Commands
    async def create_service_request(
        self,
        creation_data: ServiceRequestCreationData | Dict[str, Any],
        initial_office_id: str,
        acting_user: Principal,
    ) -> ServiceRequest:
        """Open a request bound to the workflow for its subject."""
        if not isinstance(creation_data, ServiceRequestCreationData):
            creation_data = ServiceRequestCreationData.model_validate(creation_data)

        workflow = self._registry.find_by_subject(creation_data.subject_id)
        if workflow is None or workflow.first_step is None:
            raise NotFoundError("Workflow for subject", creation_data.subject_id)

        now = utcnow()
        request_id = await self._store.allocate_request_id()
        payload = creation_data.model_dump(mode="json")
        request = ServiceRequest(
            id=request_id,
            creation_data=creation_data,
            data=dict(payload),
            status=RequestStatus.NEW,
            current_step_id=workflow.first_step.id,
            assigned_to_office_id=initial_office_id,
            workflow_definition_id=workflow.id,
            created_at=now,
            updated_at=now,
            history=[
                WorkflowHistoryEvent(
                    step_id=INTAKE_STEP_ID,
                    step_name="Intake",
                    actor_user_id=acting_user.id,
                    actor_name=acting_user.name,
                    timestamp=now,
                    action=HistoryAction.CREATED,
                    comment=f"Assigned to {self._office_name(initial_office_id)}",
                    data=payload,
                    to_office_id=initial_office_id,
                )
            ],
        )
        stored = await self._store.create_request(request)
        logger.info(
            f"Created service request {stored.id} on workflow {workflow.id} "
            f"assigned to office {initial_office_id}"
        )
        return stored

    async def claim_task(self, request_id: str, user_id: str) -> ServiceRequest:
        """Give ``user_id`` exclusive ownership of the current step."""
        async with self._locked(request_id) as request:
            self._ensure_active(request)
            user = self._users.get(user_id)
            if request.assigned_to_user_id and request.assigned_to_user_id != user_id:
                logger.warning(
                    f"User {user_id} tried to claim {request_id} held by "
                    f"{request.assigned_to_user_id}"
                )
                raise AlreadyClaimedError(request_id, request.assigned_to_user_id)
            if request.status not in CLAIMABLE_STATUSES:
                raise InvalidStateError(
                    f"Service request {request_id} is {request.status.value}; only "
                    "New or CorrectionRequested requests can be claimed"
                )
            _, cursor = self._cursor(request)

            now = utcnow()
            request.assigned_to_user_id = user_id
            request.status = RequestStatus.IN_PROGRESS
            request.updated_at = now
            request.history.append(
                WorkflowHistoryEvent(
                    step_id=cursor.current.id,
                    step_name=cursor.current.name,
                    actor_user_id=user.id,
                    actor_name=user.name,
                    timestamp=now,
                    action=HistoryAction.TASK_CLAIMED,
                )
            )
            stored = await self._commit(request)
        logger.info(f"User {user_id} claimed service request {request_id}")
        return stored

    async def submit_task_data(
        self,
        request_id: str,
        user_id: str,
        form_data: Dict[str, Any],
        documents: Optional[List[UploadedDocument]] = None,
    ) -> ServiceRequest:
        """Record the claimant's work on the current step and queue it for review."""
        async with self._locked(request_id) as request:
            self._ensure_active(request)
            user = self._users.get(user_id)
            if request.status != RequestStatus.IN_PROGRESS:
                raise InvalidStateError(
                    f"Service request {request_id} is {request.status.value}; data "
                    "can only be submitted while InProgress"
                )
            if request.assigned_to_user_id != user_id:
                raise UnauthorizedError(
                    f"Service request {request_id} is not claimed by user {user_id}"
                )
            _, cursor = self._cursor(request)
            step = cursor.current

            errors = validate_step_data(step, form_data)
            if errors:
                logger.warning(
                    f"Rejected submission for {request_id} step {step.id}: {errors}"
                )
                raise ValidationFailedError(errors)

            now = utcnow()
            request.data = {**request.data, **form_data}
            request.status = status_after_submit(step)
            request.updated_at = now
            request.history.append(
                WorkflowHistoryEvent(
                    step_id=step.id,
                    step_name=step.name,
                    actor_user_id=user.id,
                    actor_name=user.name,
                    timestamp=now,
                    action=HistoryAction.SUBMITTED,
                    data=dict(form_data),
                    documents=list(documents or []),
                )
            )
            stored = await self._commit(request)
        logger.info(
            f"User {user_id} submitted step {step.id} of {request_id}; "
            f"now {stored.status.value}"
        )
        return stored

    async def approve_step(
        self,
        request_id: str,
        user_id: str,
        comment: Optional[str] = None,
        next_office_id: Optional[str] = None,
    ) -> ServiceRequest:
        """Approve the current step and forward the request or complete it."""
        async with self._locked(request_id) as request:
            self._ensure_active(request)
            user = self._users.get(user_id)
            _, cursor = self._cursor(request)
            check_decision_allowed(
                user, request.status, request.assigned_to_office_id, request_id
            )
            step = cursor.current
            next_step = cursor.next_step()

            next_office = None
            if next_step is not None:
                next_office = resolve_next_office(next_step, next_office_id)
                if next_office is None:
                    if self._config.require_next_office:
                        raise InvalidStateError(
                            f"No office can be resolved for step {next_step.id!r}; "
                            "pass an explicit office or fix the workflow definition"
                        )
                    logger.warning(
                        f"No assignable office for step {next_step.id} of "
                        f"{request_id}; forwarding without an owning office"
                    )

            now = utcnow()
            request.updated_at = now
            request.history.append(
                WorkflowHistoryEvent(
                    step_id=step.id,
                    step_name=step.name,
                    actor_user_id=user.id,
                    actor_name=user.name,
                    timestamp=now,
                    action=HistoryAction.APPROVED,
                    comment=comment,
                )
            )

            if next_step is not None:
                request.current_step_id = next_step.id
                request.status = RequestStatus.NEW
                request.assigned_to_office_id = next_office
                request.assigned_to_user_id = None
                request.history.append(
                    WorkflowHistoryEvent(
                        step_id=next_step.id,
                        step_name=next_step.name,
                        actor_user_id=user.id,
                        actor_name=user.name,
                        timestamp=now,
                        action=HistoryAction.FORWARDED,
                        comment=f"Assigned to {self._office_name(next_office)}",
                        to_office_id=next_office,
                    )
                )
            else:
                request.status = RequestStatus.COMPLETED
                request.assigned_to_office_id = None
                request.assigned_to_user_id = None
            stored = await self._commit(request)

        if next_step is not None:
            logger.info(
                f"User {user_id} approved step {step.id} of {request_id}; "
                f"forwarded to {next_step.id} at office {next_office}"
            )
        else:
            logger.info(f"User {user_id} approved final step of {request_id}; completed")
        return stored

    async def reject_step(
        self, request_id: str, user_id: str, reason: str
    ) -> ServiceRequest:
        """Reject the submitted step, terminating the request."""
        async with self._locked(request_id) as request:
            self._ensure_active(request)
            user = self._users.get(user_id)
            _, cursor = self._cursor(request)
            check_decision_allowed(
                user, request.status, request.assigned_to_office_id, request_id
            )

            now = utcnow()
            request.status = RequestStatus.REJECTED
            request.updated_at = now
            request.history.append(
                WorkflowHistoryEvent(
                    step_id=cursor.current.id,
                    step_name=cursor.current.name,
                    actor_user_id=user.id,
                    actor_name=user.name,
                    timestamp=now,
                    action=HistoryAction.REJECTED,
                    comment=reason,
                )
            )
            stored = await self._commit(request)
        logger.info(f"User {user_id} rejected service request {request_id}")
        return stored

    async def request_correction(
        self, request_id: str, user_id: str, target_step_id: str, comment: str
    ) -> ServiceRequest:
        """Send the request back to ``target_step_id`` for rework."""
        async with self._locked(request_id) as request:
            self._ensure_active(request)
            user = self._users.get(user_id)
            if user.role != UserRole.DEPARTMENT_HEAD:
                raise UnauthorizedError(
                    f"Only Department Heads can request corrections; user {user_id} "
                    f"is {user.role.value}"
                )
            workflow = self._registry.get(request.workflow_definition_id)
            target = workflow.get_step(target_step_id)
            if target is None:
                raise NotFoundError("Step", target_step_id)
            target_office = target.first_assignable_office
            if target_office is None:
                raise InvalidStateError(
                    f"Target step {target.name!r} has no assignable offices defined "
                    "for correction"
                )

            now = utcnow()
            request.status = RequestStatus.CORRECTION_REQUESTED
            request.current_step_id = target.id
            request.assigned_to_office_id = target_office
            request.assigned_to_user_id = None
            request.updated_at = now
            request.history.append(
                WorkflowHistoryEvent(
                    step_id=target.id,
                    step_name=target.name,
                    actor_user_id=user.id,
                    actor_name=user.name,
                    timestamp=now,
                    action=HistoryAction.CORRECTION_REQUESTED,
                    comment=comment,
                    to_office_id=target_office,
                )
            )
            stored = await self._commit(request)
        logger.info(
            f"User {user_id} requested correction of {request_id} at step "
            f"{target_step_id} (office {target_office})"
        )
        return stored

    async def attach_document(
        self, request_id: str, user_id: str, name: str, url: str
    ) -> ServiceRequest:
        """Record an uploaded document against the current step."""
        async with self._locked(request_id) as request:
            self._ensure_active(request)
            user = self._users.get(user_id)
            _, cursor = self._cursor(request)
            now = utcnow()
            document = UploadedDocument(
                id=f"DOC{uuid.uuid4().hex[:8].upper()}",
                name=name,
                url=url,
                uploaded_at=now,
                uploaded_by=user.id,
            )
            event = WorkflowHistoryEvent(
                step_id=cursor.current.id,
                step_name=cursor.current.name,
                actor_user_id=user.id,
                actor_name=user.name,
                timestamp=now,
                action=HistoryAction.DOCUMENT_UPLOADED,
                comment=f"Document uploaded: {name}",
                documents=[document],
            )
            stored = await self._store.append_history(
                request_id, event, expected_version=request.version
            )
        logger.info(f"User {user_id} attached {name!r} to {request_id}")
        return stored

    # ------------------------------------------------------------------
    # Queries
    async def get_service_request(self, request_id: str) -> ServiceRequest:
        request = await self._store.get_request(request_id)
        if request is None:
            raise NotFoundError("Service request", request_id)
        return request
