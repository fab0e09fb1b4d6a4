"""Maintenance request state machine: validates transitions and role rules."""

from fixit_platform.domain.enums import RequestStatus
from fixit_platform.domain.errors import ValidationError


class InvalidTransitionError(ValidationError):
    """Raised when a request status transition is not allowed."""

    def __init__(
        self,
        current_status: RequestStatus,
        target_status: RequestStatus,
        reason: str,
    ):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_status.value} to {target_status.value}: {reason}"
        )


# ---------------------------------------------------------------------------
# Transition map: from_status -> {to_status: requires_management}
# ---------------------------------------------------------------------------

S = RequestStatus

TRANSITION_MAP: dict[RequestStatus, dict[RequestStatus, bool]] = {
    S.NEW: {
        S.ASSIGNED: True,
    },
    S.ASSIGNED: {
        S.IN_PROGRESS: False,
    },
    S.IN_PROGRESS: {
        S.COMPLETED: False,
    },
    S.COMPLETED: {
        S.VERIFIED: True,
        S.REOPENED: True,
        S.ARCHIVED: True,
    },
    S.VERIFIED: {
        S.REOPENED: True,
        S.ARCHIVED: True,
    },
    S.REOPENED: {
        S.IN_PROGRESS: False,
        S.ASSIGNED: True,
        S.ARCHIVED: True,
    },
}

TERMINAL_STATES: set[RequestStatus] = {S.ARCHIVED, S.CANCELLED}

# Any non-terminal request can be cancelled by management
CANCELLABLE_STATES: set[RequestStatus] = {s for s in RequestStatus if s not in TERMINAL_STATES}

REOPENABLE_STATES: set[RequestStatus] = {S.COMPLETED, S.VERIFIED}
ARCHIVABLE_STATES: set[RequestStatus] = {S.COMPLETED, S.VERIFIED, S.REOPENED}
FEEDBACK_STATES: set[RequestStatus] = {S.COMPLETED, S.VERIFIED}

# Statuses an external vendor may set through a public link
PUBLIC_UPDATE_STATUSES: set[RequestStatus] = {S.IN_PROGRESS, S.COMPLETED}
PUBLIC_SOURCE_STATES: set[RequestStatus] = {S.ASSIGNED, S.IN_PROGRESS, S.REOPENED}


class RequestStateMachine:
    """Validates request state transitions."""

    def validate_transition(
        self,
        current_status: RequestStatus,
        target_status: RequestStatus,
        is_management: bool = False,
    ) -> bool:
        """Return True if the transition is valid. Raise InvalidTransitionError if not.

        Checks:
        1. Cancellation from any non-terminal state by management.
        2. The transition is in the allowed map.
        3. Management-only transitions are made by management.
        """
        current_status = RequestStatus(current_status)
        target_status = RequestStatus(target_status)

        if target_status == S.CANCELLED:
            if current_status not in CANCELLABLE_STATES:
                raise InvalidTransitionError(
                    current_status, target_status, f"{current_status.value} is terminal"
                )
            if not is_management:
                raise InvalidTransitionError(
                    current_status, target_status, "Only admins or property managers can cancel"
                )
            return True

        allowed_targets = TRANSITION_MAP.get(current_status)
        if allowed_targets is None:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"No transitions allowed from {current_status.value}",
            )

        if target_status not in allowed_targets:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"Transition from {current_status.value} to {target_status.value} is not allowed",
            )

        if allowed_targets[target_status] and not is_management:
            raise InvalidTransitionError(
                current_status,
                target_status,
                "Only admins, landlords or property managers may make this transition",
            )

        return True

    def validate_public_transition(
        self,
        current_status: RequestStatus,
        target_status: RequestStatus,
    ) -> bool:
        """Validate a status change made by an external vendor through a public link.

        Vendors may start or finish work that has been handed to them, so
        ``assigned`` and ``reopened`` may jump straight to ``completed``.
        """
        current_status = RequestStatus(current_status)
        target_status = RequestStatus(target_status)

        if target_status not in PUBLIC_UPDATE_STATUSES:
            raise InvalidTransitionError(
                current_status,
                target_status,
                "Public updates may only set in_progress or completed",
            )
        if current_status not in PUBLIC_SOURCE_STATES or current_status == target_status:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"Request in {current_status.value} cannot be updated through a public link",
            )
        return True
