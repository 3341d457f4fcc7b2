"""Error taxonomy raised by the workflow engine and its collaborators."""

from __future__ import annotations

from typing import List, Optional


class CaseflowError(Exception):
    """Base class for every caller-visible failure."""


class NotFoundError(CaseflowError):
    """A workflow, step, request or user could not be resolved."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier!r} not found")


class UnauthorizedError(CaseflowError):
    """The acting principal's role or office does not permit the operation."""


class InvalidStateError(CaseflowError):
    """The operation is not valid for the request's current status."""


class AlreadyClaimedError(CaseflowError):
    """The task is held by a different user."""

    def __init__(self, request_id: str, holder_id: str) -> None:
        self.request_id = request_id
        self.holder_id = holder_id
        super().__init__(
            f"Service request {request_id} is already claimed by another user"
        )


class ValidationFailedError(CaseflowError):
    """Submitted step data violates the step's field definitions."""

    def __init__(self, errors: List[str], message: Optional[str] = None) -> None:
        self.errors = list(errors)
        super().__init__(message or f"Validation failed: {', '.join(self.errors)}")


class ConcurrencyError(CaseflowError):
    """A write was attempted against a stale record version."""

    def __init__(self, request_id: str, expected: int, actual: int) -> None:
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Service request {request_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )


__all__ = [
    "CaseflowError",
    "NotFoundError",
    "UnauthorizedError",
    "InvalidStateError",
    "AlreadyClaimedError",
    "ValidationFailedError",
    "ConcurrencyError",
]
