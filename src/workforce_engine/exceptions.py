"""Error taxonomy for the workforce engine.

Validation and state errors are raised before any mutation. Bulk operations
catch these per item and report them in their result lists instead.
"""

from __future__ import annotations

from typing import Any


class WorkforceError(Exception):
    """Base class for all engine errors."""

    code = "workforce_error"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and per-item results."""
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(WorkforceError):
    """Malformed or missing input."""

    code = "validation_error"


class NotFoundError(WorkforceError):
    """Referenced entity does not exist."""

    code = "not_found"


class InsufficientBalanceError(WorkforceError):
    """Leave request exceeds the available days."""

    code = "insufficient_balance"

    def __init__(self, requested: Any, available: Any, period: str):
        self.requested = requested
        self.available = available
        self.period = period
        super().__init__(
            f"Requested {requested} day(s) but only {available} available in {period}",
            requested=str(requested),
            available=str(available),
            period=period,
        )


class LockedPeriodError(WorkforceError):
    """Mutation attempted on a locked payroll period."""

    code = "locked_period"

    def __init__(self, employee_id: str, period: str):
        self.employee_id = employee_id
        self.period = period
        super().__init__(
            f"Payroll period {period} is locked for employee {employee_id}",
            employee_id=employee_id,
            period=period,
        )


class InvalidStateError(WorkforceError):
    """Operation not valid for the entity's current state."""

    code = "invalid_state"


class InvalidTransitionError(InvalidStateError):
    """Raised when an invalid state transition is attempted."""

    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, from_status=from_status, to_status=to_status)


class ConcurrencyConflict(WorkforceError):
    """Write based on a stale read."""

    code = "concurrency_conflict"


class PermissionDeniedError(WorkforceError):
    """Actor is not allowed to perform the action."""

    code = "permission_denied"
