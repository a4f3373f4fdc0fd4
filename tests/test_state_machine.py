"""Tests for leave request and salary record state machines."""

import pytest

from workforce_engine.exceptions import InvalidStateError, InvalidTransitionError
from workforce_engine.services.state_machine import (
    LeaveRequestStateMachine,
    SalaryRecordStateMachine,
)


class TestLeaveRequestStateMachine:
    """Test leave request transitions."""

    def test_valid_transitions(self):
        """Pending is the only state that moves."""
        assert LeaveRequestStateMachine.can_transition("pending", "approved") is True
        assert LeaveRequestStateMachine.can_transition("pending", "rejected") is True
        assert LeaveRequestStateMachine.can_transition("pending", "cancelled") is True

    def test_terminal_states(self):
        for status in ("approved", "rejected", "cancelled"):
            assert LeaveRequestStateMachine.is_terminal(status) is True
            assert LeaveRequestStateMachine.get_next_statuses(status) == []
        assert LeaveRequestStateMachine.is_terminal("pending") is False

    def test_invalid_transitions(self):
        # Terminal states never move
        assert LeaveRequestStateMachine.can_transition("approved", "cancelled") is False
        assert LeaveRequestStateMachine.can_transition("rejected", "approved") is False
        assert LeaveRequestStateMachine.can_transition("cancelled", "pending") is False

        # Unknown statuses
        assert LeaveRequestStateMachine.can_transition("draft", "pending") is False

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            LeaveRequestStateMachine.validate_transition("approved", "rejected")

        assert exc_info.value.from_status == "approved"
        assert exc_info.value.to_status == "rejected"
        assert "already approved" in str(exc_info.value)
        assert isinstance(exc_info.value, InvalidStateError)

    def test_can_reopen(self):
        assert LeaveRequestStateMachine.can_reopen("rejected") is True
        assert LeaveRequestStateMachine.can_reopen("cancelled") is True
        assert LeaveRequestStateMachine.can_reopen("approved") is False
        assert LeaveRequestStateMachine.can_reopen("pending") is False


class TestSalaryRecordStateMachine:
    """Test salary record lock transitions."""

    def test_lock_and_unlock(self):
        assert SalaryRecordStateMachine.can_transition("draft", "locked") is True
        assert SalaryRecordStateMachine.can_transition("locked", "draft") is True
        assert SalaryRecordStateMachine.can_transition("locked", "locked") is False

    def test_unlock_requires_reason(self):
        with pytest.raises(InvalidTransitionError):
            SalaryRecordStateMachine.validate_transition("locked", "draft")
        with pytest.raises(InvalidTransitionError):
            SalaryRecordStateMachine.validate_transition("locked", "draft", "   ")

        SalaryRecordStateMachine.validate_transition("locked", "draft", "Late timesheet")

    def test_is_unlock(self):
        assert SalaryRecordStateMachine.is_unlock("locked", "draft") is True
        assert SalaryRecordStateMachine.is_unlock("draft", "locked") is False
