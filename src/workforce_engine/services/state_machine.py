"""Leave request and salary record state machines with transition validation."""

from __future__ import annotations

from workforce_engine.exceptions import InvalidTransitionError
from workforce_engine.models.leave import LeaveRequestStatus
from workforce_engine.models.payroll import SalaryRecordStatus


class LeaveRequestStateMachine:
    """State machine for leave request status transitions.

    Allowed transitions:
    - pending → approved
    - pending → rejected
    - pending → cancelled

    Approved, rejected and cancelled are terminal. Reopening a rejected or
    cancelled request creates a new pending request instead of a transition;
    approved requests already hold their days and cannot be reopened.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        LeaveRequestStatus.PENDING.value: [
            LeaveRequestStatus.APPROVED.value,
            LeaveRequestStatus.REJECTED.value,
            LeaveRequestStatus.CANCELLED.value,
        ],
        LeaveRequestStatus.APPROVED.value: [],
        LeaveRequestStatus.REJECTED.value: [],
        LeaveRequestStatus.CANCELLED.value: [],
    }

    # Statuses whose days count against the balance
    BALANCE_AFFECTING = {
        LeaveRequestStatus.PENDING.value,
        LeaveRequestStatus.APPROVED.value,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = None
            if cls.is_terminal(from_status):
                reason = f"request is already {from_status}"
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.VALID_TRANSITIONS and not cls.VALID_TRANSITIONS[status]

    # Terminal statuses that may be reopened into a new pending copy
    REOPENABLE = {
        LeaveRequestStatus.REJECTED.value,
        LeaveRequestStatus.CANCELLED.value,
    }

    @classmethod
    def can_reopen(cls, status: str) -> bool:
        return status in cls.REOPENABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        return cls.VALID_TRANSITIONS.get(current_status, [])


class SalaryRecordStateMachine:
    """State machine for salary record locking.

    Allowed transitions:
    - draft → locked
    - locked → draft (unlock; admin only, requires a reason)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SalaryRecordStatus.DRAFT.value: [SalaryRecordStatus.LOCKED.value],
        SalaryRecordStatus.LOCKED.value: [SalaryRecordStatus.DRAFT.value],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(
        cls, from_status: str, to_status: str, reason: str | None = None
    ) -> None:
        """Validate a transition; unlocking needs a non-empty reason."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)
        if cls.is_unlock(from_status, to_status) and not (reason and reason.strip()):
            raise InvalidTransitionError(from_status, to_status, "Unlock requires a reason")

    @classmethod
    def is_unlock(cls, from_status: str, to_status: str) -> bool:
        return (
            from_status == SalaryRecordStatus.LOCKED.value
            and to_status == SalaryRecordStatus.DRAFT.value
        )
