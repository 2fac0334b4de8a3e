"""Tests for the requirement status state machine."""
import pytest

from taskboard_core.errors import ValidationFailedError
from taskboard_core.models import RequirementStatus
from taskboard_core.state_machine import (
    StateTransitionError,
    get_allowed_transitions,
    is_transition_valid,
    validate_transition,
)


class TestTransitionMatrix:
    """Allowed transitions between requirement statuses."""

    @pytest.mark.parametrize("current, new", [
        (RequirementStatus.DRAFT, RequirementStatus.UNDER_REVIEW),
        (RequirementStatus.UNDER_REVIEW, RequirementStatus.APPROVED),
        (RequirementStatus.UNDER_REVIEW, RequirementStatus.DRAFT),
        (RequirementStatus.APPROVED, RequirementStatus.IMPLEMENTED),
        (RequirementStatus.APPROVED, RequirementStatus.DRAFT),
        (RequirementStatus.DRAFT, RequirementStatus.REJECTED),
        (RequirementStatus.APPROVED, RequirementStatus.DEPRECATED),
    ])
    def test_valid(self, current, new):
        assert is_transition_valid(current, new)

    @pytest.mark.parametrize("current, new", [
        (RequirementStatus.DRAFT, RequirementStatus.APPROVED),
        (RequirementStatus.DRAFT, RequirementStatus.IMPLEMENTED),
        (RequirementStatus.UNDER_REVIEW, RequirementStatus.IMPLEMENTED),
        (RequirementStatus.IMPLEMENTED, RequirementStatus.DRAFT),
        (RequirementStatus.REJECTED, RequirementStatus.UNDER_REVIEW),
    ])
    def test_invalid(self, current, new):
        assert not is_transition_valid(current, new)

    @pytest.mark.parametrize("status", list(RequirementStatus))
    def test_same_status_always_valid(self, status):
        assert is_transition_valid(status, status)

    @pytest.mark.parametrize("status", [
        RequirementStatus.IMPLEMENTED,
        RequirementStatus.REJECTED,
        RequirementStatus.DEPRECATED,
    ])
    def test_terminal_statuses(self, status):
        assert get_allowed_transitions(status) == []


class TestValidateTransition:
    """Error messages guide the caller to a legal next step."""

    def test_valid_transition_passes(self):
        validate_transition(RequirementStatus.DRAFT, RequirementStatus.UNDER_REVIEW)

    def test_skipping_review(self):
        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(RequirementStatus.DRAFT, RequirementStatus.APPROVED)

        error = exc_info.value
        assert error.current_status == RequirementStatus.DRAFT
        assert error.requested_status == RequirementStatus.APPROVED
        assert RequirementStatus.UNDER_REVIEW in error.allowed_transitions
        assert "must be reviewed before approval" in error.message
        assert error.status_code == 400

    def test_terminal_message(self):
        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(RequirementStatus.IMPLEMENTED, RequirementStatus.DRAFT)

        assert "implemented is a terminal status" in exc_info.value.message
        assert exc_info.value.allowed_transitions == []

    def test_is_a_validation_error(self):
        with pytest.raises(ValidationFailedError):
            validate_transition(RequirementStatus.REJECTED, RequirementStatus.APPROVED)

    def test_allowed_transitions_is_a_copy(self):
        allowed = get_allowed_transitions(RequirementStatus.DRAFT)
        allowed.clear()
        assert get_allowed_transitions(RequirementStatus.DRAFT)
