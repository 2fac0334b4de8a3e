"""State machine for requirement status transitions.

Transitions are only validated when ``enforce_requirement_transitions`` is
enabled in settings; by default any status may be set from any other.

Lifecycle: draft → under_review → approved → implemented, with rejected
and deprecated reachable from every non-implemented state.
"""
import logging

from .errors import ValidationFailedError
from .models import RequirementStatus

logger = logging.getLogger("taskboard-core.state_machine")


class StateTransitionError(ValidationFailedError):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_status: RequirementStatus,
        requested_status: RequirementStatus,
        allowed_transitions: list[RequirementStatus]
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# Maps current status → allowed next statuses
TRANSITION_MATRIX: dict[RequirementStatus, list[RequirementStatus]] = {
    RequirementStatus.DRAFT: [
        RequirementStatus.UNDER_REVIEW,
        RequirementStatus.REJECTED,
        RequirementStatus.DEPRECATED,
    ],
    RequirementStatus.UNDER_REVIEW: [
        RequirementStatus.DRAFT,        # Back: needs more work
        RequirementStatus.APPROVED,
        RequirementStatus.REJECTED,
        RequirementStatus.DEPRECATED,
    ],
    RequirementStatus.APPROVED: [
        RequirementStatus.DRAFT,        # Back: reopen for major changes
        RequirementStatus.IMPLEMENTED,
        RequirementStatus.REJECTED,
        RequirementStatus.DEPRECATED,
    ],
    RequirementStatus.IMPLEMENTED: [],
    RequirementStatus.REJECTED: [],
    RequirementStatus.DEPRECATED: [],
}


def is_transition_valid(
    current_status: RequirementStatus,
    new_status: RequirementStatus
) -> bool:
    """
    Check if a status transition is valid.

    Setting the same status is always valid.
    """
    if current_status == new_status:
        return True
    return new_status in TRANSITION_MATRIX.get(current_status, [])


def validate_transition(
    current_status: RequirementStatus,
    new_status: RequirementStatus
) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Args:
        current_status: Current requirement status
        new_status: Requested requirement status

    Raises:
        StateTransitionError: If the transition is not allowed
    """
    if is_transition_valid(current_status, new_status):
        return

    allowed = get_allowed_transitions(current_status)
    if allowed:
        allowed_names = ", ".join(s.value for s in allowed)
        error_msg = (
            f"Invalid status transition: {current_status.value} → {new_status.value}. "
            f"From {current_status.value}, you can only transition to: {allowed_names}."
        )
    else:
        error_msg = (
            f"Invalid status transition: {current_status.value} → {new_status.value}. "
            f"{current_status.value} is a terminal status."
        )
    if current_status == RequirementStatus.DRAFT and new_status == RequirementStatus.APPROVED:
        error_msg += " Requirements must be reviewed before approval. Transition to 'under_review' first."

    logger.warning(f"Blocked transition: {error_msg}")
    raise StateTransitionError(
        message=error_msg,
        current_status=current_status,
        requested_status=new_status,
        allowed_transitions=allowed,
    )


def get_allowed_transitions(current_status: RequirementStatus) -> list[RequirementStatus]:
    """Statuses reachable in one step from ``current_status`` (excluding itself)."""
    return list(TRANSITION_MATRIX.get(current_status, []))
