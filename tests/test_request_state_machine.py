"""Unit tests for the RequestStateMachine."""

import pytest

from fixit_platform.domain.enums import RequestStatus
from fixit_platform.domain.errors import ValidationError
from fixit_platform.services.request_state_machine import (
    CANCELLABLE_STATES,
    TERMINAL_STATES,
    TRANSITION_MAP,
    InvalidTransitionError,
    RequestStateMachine,
)

S = RequestStatus


@pytest.fixture
def sm():
    return RequestStateMachine()


# ---------------------------------------------------------------------------
# Test every valid transition in the transition map
# ---------------------------------------------------------------------------


class TestValidTransitions:
    """Every transition in TRANSITION_MAP succeeds for management."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [(from_s, to_s) for from_s, targets in TRANSITION_MAP.items() for to_s in targets],
    )
    def test_all_valid_transitions_for_management(self, sm, from_status, to_status):
        assert sm.validate_transition(from_status, to_status, is_management=True) is True

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (from_s, to_s)
            for from_s, targets in TRANSITION_MAP.items()
            for to_s, needs_management in targets.items()
            if not needs_management
        ],
    )
    def test_worker_transitions_allowed_without_management(self, sm, from_status, to_status):
        assert sm.validate_transition(from_status, to_status, is_management=False) is True

    def test_full_lifecycle(self, sm):
        path = [
            (S.NEW, S.ASSIGNED, True),
            (S.ASSIGNED, S.IN_PROGRESS, False),
            (S.IN_PROGRESS, S.COMPLETED, False),
            (S.COMPLETED, S.VERIFIED, True),
            (S.VERIFIED, S.REOPENED, True),
            (S.REOPENED, S.IN_PROGRESS, False),
            (S.IN_PROGRESS, S.COMPLETED, False),
            (S.COMPLETED, S.ARCHIVED, True),
        ]
        for current, target, management in path:
            assert sm.validate_transition(current, target, management) is True

    def test_accepts_plain_strings(self, sm):
        assert sm.validate_transition("assigned", "in_progress") is True


# ---------------------------------------------------------------------------
# Invalid transitions
# ---------------------------------------------------------------------------


class TestInvalidTransitions:

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (S.NEW, S.COMPLETED),
            (S.NEW, S.IN_PROGRESS),
            (S.ASSIGNED, S.COMPLETED),
            (S.IN_PROGRESS, S.VERIFIED),
            (S.VERIFIED, S.COMPLETED),
            (S.COMPLETED, S.IN_PROGRESS),
        ],
    )
    def test_skipping_states_rejected(self, sm, from_status, to_status):
        with pytest.raises(InvalidTransitionError):
            sm.validate_transition(from_status, to_status, is_management=True)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (S.NEW, S.ASSIGNED),
            (S.COMPLETED, S.VERIFIED),
            (S.COMPLETED, S.REOPENED),
            (S.VERIFIED, S.ARCHIVED),
            (S.REOPENED, S.ASSIGNED),
        ],
    )
    def test_management_only_transitions_rejected_for_others(self, sm, from_status, to_status):
        with pytest.raises(InvalidTransitionError, match="Only admins"):
            sm.validate_transition(from_status, to_status, is_management=False)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_have_no_exits(self, sm, terminal):
        for target in RequestStatus:
            with pytest.raises(InvalidTransitionError):
                sm.validate_transition(terminal, target, is_management=True)

    def test_invalid_transition_is_a_validation_error(self, sm):
        with pytest.raises(ValidationError) as exc_info:
            sm.validate_transition(S.NEW, S.COMPLETED)
        assert exc_info.value.status_code == 400
        assert exc_info.value.current_status == S.NEW
        assert exc_info.value.target_status == S.COMPLETED


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:

    @pytest.mark.parametrize("status", sorted(CANCELLABLE_STATES, key=lambda s: s.value))
    def test_management_can_cancel_any_non_terminal(self, sm, status):
        assert sm.validate_transition(status, S.CANCELLED, is_management=True) is True

    def test_non_management_cannot_cancel(self, sm):
        with pytest.raises(InvalidTransitionError, match="cancel"):
            sm.validate_transition(S.IN_PROGRESS, S.CANCELLED, is_management=False)

    def test_cannot_cancel_archived(self, sm):
        with pytest.raises(InvalidTransitionError, match="terminal"):
            sm.validate_transition(S.ARCHIVED, S.CANCELLED, is_management=True)


# ---------------------------------------------------------------------------
# Public-link transitions
# ---------------------------------------------------------------------------


class TestPublicTransitions:

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (S.ASSIGNED, S.IN_PROGRESS),
            (S.ASSIGNED, S.COMPLETED),
            (S.IN_PROGRESS, S.COMPLETED),
            (S.REOPENED, S.IN_PROGRESS),
            (S.REOPENED, S.COMPLETED),
        ],
    )
    def test_allowed(self, sm, from_status, to_status):
        assert sm.validate_public_transition(from_status, to_status) is True

    @pytest.mark.parametrize("target", [S.VERIFIED, S.ARCHIVED, S.CANCELLED, S.ASSIGNED])
    def test_only_in_progress_or_completed_targets(self, sm, target):
        with pytest.raises(InvalidTransitionError, match="in_progress or completed"):
            sm.validate_public_transition(S.IN_PROGRESS, target)

    @pytest.mark.parametrize("source", [S.NEW, S.COMPLETED, S.VERIFIED, S.ARCHIVED, S.CANCELLED])
    def test_rejected_sources(self, sm, source):
        with pytest.raises(InvalidTransitionError):
            sm.validate_public_transition(source, S.COMPLETED)

    def test_same_status_rejected(self, sm):
        with pytest.raises(InvalidTransitionError):
            sm.validate_public_transition(S.IN_PROGRESS, S.IN_PROGRESS)
