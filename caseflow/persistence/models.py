"""Query models understood by every request store backend."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..contracts import RequestStatus, ServiceRequest


class RequestFilter(BaseModel):
    """Equality and date-range filters over service requests."""

    status: Optional[RequestStatus] = None
    subject_id: Optional[str] = None
    office_id: Optional[str] = None
    user_id: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def matches(self, request: ServiceRequest) -> bool:
        if self.status is not None and request.status != self.status:
            return False
        if self.subject_id is not None and request.subject_id != self.subject_id:
            return False
        if self.office_id is not None and request.assigned_to_office_id != self.office_id:
            return False
        if self.user_id is not None and request.assigned_to_user_id != self.user_id:
            return False
        if self.created_from is not None and request.created_at < self.created_from:
            return False
        if self.created_to is not None and request.created_at > self.created_to:
            return False
        return True
