"""Domain event types for attendance, leave and payroll operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for logging and replay
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    ATTENDANCE = "attendance"
    LEAVE = "leave"
    PAYROLL = "payroll"
    AUDIT = "audit"
    RECORDS = "records"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links related events
    actor_id: str | None  # User or system that triggered
    source_service: str  # Service that emitted
    version: int = 1  # Schema version for evolution

    @classmethod
    def create(
        cls,
        actor_id: str | None = None,
        source_service: str = "workforce_engine",
        correlation_id: UUID | None = None,
        timestamp: datetime | None = None,
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=timestamp or datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor_id=actor_id,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        return _serialize_dict(asdict(self))


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Attendance events
# =============================================================================


@dataclass(frozen=True)
class AttendanceCheckedIn(DomainEvent):
    user_id: str
    day: date
    is_late: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.ATTENDANCE


@dataclass(frozen=True)
class AttendanceCheckedOut(DomainEvent):
    user_id: str
    day: date
    total_hours: Decimal
    is_early_checkout: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.ATTENDANCE


@dataclass(frozen=True)
class AttendanceMarked(DomainEvent):
    """Administrative marking of one or more attendance days."""

    status: str
    succeeded: int
    failed: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.ATTENDANCE


# =============================================================================
# Leave events
# =============================================================================


@dataclass(frozen=True)
class LeaveRequestEvent(DomainEvent):
    """Common payload for leave request transitions."""

    leave_request_id: UUID
    user_id: str
    start_date: date
    end_date: date
    total_days: Decimal
    status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEAVE


@dataclass(frozen=True)
class LeaveRequestSubmitted(LeaveRequestEvent):
    pass


@dataclass(frozen=True)
class LeaveRequestApproved(LeaveRequestEvent):
    reviewer: str = ""


@dataclass(frozen=True)
class LeaveRequestRejected(LeaveRequestEvent):
    reviewer: str = ""
    comments: str | None = None


@dataclass(frozen=True)
class LeaveRequestCancelled(LeaveRequestEvent):
    pass


@dataclass(frozen=True)
class LeaveRequestReopened(LeaveRequestEvent):
    reopened_from_id: UUID | None = None


# =============================================================================
# Payroll events
# =============================================================================


@dataclass(frozen=True)
class PayrollPeriodLocked(DomainEvent):
    period: str
    locked_count: int
    failed_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL


@dataclass(frozen=True)
class PayrollPeriodUnlocked(DomainEvent):
    employee_id: str
    period: str
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL


@dataclass(frozen=True)
class PayrollPeriodCleared(DomainEvent):
    employee_id: str
    period: str
    attendance_deleted: int
    salary_deleted: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL


# =============================================================================
# Audit / records events
# =============================================================================


@dataclass(frozen=True)
class EntityRolledBack(DomainEvent):
    entity_type: str
    entity_id: str
    from_version: int
    to_version: int
    new_version: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.AUDIT


@dataclass(frozen=True)
class RecordsDeduplicated(DomainEvent):
    strict_deleted: int
    legacy_deleted: int
    dry_run: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECORDS
