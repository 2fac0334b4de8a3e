"""Error taxonomy shared by every engine.

Routers map each kind to one HTTP status; engines never raise HTTP errors
themselves.
"""
from typing import Optional


class TaskboardError(Exception):
    """Base class for domain errors with a human-readable message."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TaskboardError):
    """Referenced task, list, requirement, edge or link does not exist."""

    status_code = 404


class ConflictError(TaskboardError):
    """Duplicate edge or link, or a stale version/counter race."""

    status_code = 409


class ValidationFailedError(TaskboardError):
    """Input rejected: reorder set mismatch, cycle, malformed patch."""

    status_code = 400


class CircularDependencyError(ValidationFailedError):
    """Raised when a new dependency edge would close a cycle."""

    def __init__(
        self,
        message: str,
        dependent_id: str,
        depends_on_id: str,
        cycle: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.dependent_id = dependent_id
        self.depends_on_id = depends_on_id
        self.cycle = cycle or []


class AccessDeniedError(TaskboardError):
    """Caller is not a member of the workspace or lacks the permission."""

    status_code = 403


class PreconditionFailedError(TaskboardError):
    """Delete blocked by existing children or links."""

    status_code = 412
