"""Core record contracts for the caseflow workflow system."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    """Lifecycle states of a service request."""

    NEW = "New"
    IN_PROGRESS = "InProgress"
    PENDING_REVIEW = "PendingReview"
    PENDING_APPROVAL = "PendingApproval"
    CORRECTION_REQUESTED = "CorrectionRequested"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED})
CLAIMABLE_STATUSES = frozenset({RequestStatus.NEW, RequestStatus.CORRECTION_REQUESTED})
AWAITING_DECISION_STATUSES = frozenset(
    {RequestStatus.PENDING_REVIEW, RequestStatus.PENDING_APPROVAL}
)


class ApprovalType(str, Enum):
    NONE = "None"
    SECTION_HEAD = "SectionHead"
    DEPARTMENT_HEAD = "DepartmentHead"


class UserRole(str, Enum):
    FRONT_DESK = "FrontDesk"
    OFFICER = "Officer"
    SECTION_HEAD = "SectionHead"
    DEPARTMENT_HEAD = "DepartmentHead"
    ADMIN = "Admin"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    TEXTAREA = "textarea"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    EMAIL = "email"
    PHONE = "phone"
    FILE = "file"


class HistoryAction(str, Enum):
    """Closed vocabulary of audit actions."""

    CREATED = "Created"
    TASK_CLAIMED = "Task Claimed"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    FORWARDED = "Forwarded to Next Step"
    REJECTED = "Rejected"
    CORRECTION_REQUESTED = "Correction Requested"
    DOCUMENT_UPLOADED = "Document Uploaded"
    COMPLETED = "Completed"
    # Simulation runs only
    STARTED = "Started"
    PAUSED = "Paused"
    RESUMED = "Resumed"
    CANCELLED = "Cancelled"
    APPROVAL_REQUESTED = "Approval Requested"


class ValidationRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None


class FieldOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    label: str


class FieldDefinition(BaseModel):
    """One form field captured during a workflow step."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    name: str = Field(..., description="Key under which the value is stored")
    type: FieldType = FieldType.TEXT
    required: bool = False
    placeholder: Optional[str] = None
    validation_rules: Optional[ValidationRules] = None
    options: List[FieldOption] = Field(default_factory=list)
    default_value: Any = None
    help_text: Optional[str] = None


class WorkflowStepDefinition(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    section_id: str = ""
    office_id: str = ""
    form_fields: List[FieldDefinition] = Field(default_factory=list)
    required_documents: List[str] = Field(default_factory=list)
    approval_type: ApprovalType = ApprovalType.NONE
    assignable_to_office_ids: List[str] = Field(default_factory=list)
    estimated_duration: Optional[float] = Field(default=None, description="Hours")
    is_parallel: bool = False

    @property
    def first_assignable_office(self) -> Optional[str]:
        return self.assignable_to_office_ids[0] if self.assignable_to_office_ids else None


class WorkflowDefinition(BaseModel):
    """Ordered template of steps for one subject/category of request."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    subject_id: str
    steps: List[WorkflowStepDefinition] = Field(default_factory=list)
    is_active: bool = True
    version: str = "1.0"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None

    def step_index(self, step_id: str) -> Optional[int]:
        """Return the position of ``step_id`` or ``None`` when absent."""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return None

    def get_step(self, step_id: str) -> Optional[WorkflowStepDefinition]:
        index = self.step_index(step_id)
        return self.steps[index] if index is not None else None

    @property
    def first_step(self) -> Optional[WorkflowStepDefinition]:
        return self.steps[0] if self.steps else None


class UploadedDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    url: str
    uploaded_at: datetime = Field(default_factory=utcnow)
    uploaded_by: str


class WorkflowHistoryEvent(BaseModel):
    """Immutable audit record of one action taken against a request."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    step_name: str
    actor_user_id: str
    actor_name: str
    timestamp: datetime = Field(default_factory=utcnow)
    action: HistoryAction
    comment: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    documents: List[UploadedDocument] = Field(default_factory=list)
    to_office_id: Optional[str] = None


class ServiceRequestCreationData(BaseModel):
    """Data captured at intake by the front desk."""

    model_config = ConfigDict(frozen=True, extra="allow")

    nic_number: str
    citizen_name: str
    citizen_address: str = ""
    citizen_contact: str = ""
    subject_id: str
    preferred_date_time: Optional[str] = None
    initial_documents_present: bool = False


class ServiceRequest(BaseModel):
    """One citizen's in-flight instance of a workflow definition."""

    id: str
    creation_data: ServiceRequestCreationData
    data: Dict[str, Any] = Field(default_factory=dict)
    status: RequestStatus = RequestStatus.NEW
    current_step_id: str
    assigned_to_office_id: Optional[str] = None
    assigned_to_user_id: Optional[str] = None
    workflow_definition_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    history: List[WorkflowHistoryEvent] = Field(default_factory=list)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def subject_id(self) -> str:
        return self.creation_data.subject_id

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ServiceRequest":
        return cls.model_validate_json(data)


class Principal(BaseModel):
    """Already-authenticated acting user."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role: UserRole
    office_id: Optional[str] = None


class TaskSummary(BaseModel):
    """Work-queue row derived from a service request."""

    service_request_id: str
    nic_number: str
    subject_id: str
    current_step_id: str
    current_step_name: str
    assigned_office_id: Optional[str] = None
    assigned_office_name: Optional[str] = None
    assigned_user_id: Optional[str] = None
    status: RequestStatus
    last_update: datetime
