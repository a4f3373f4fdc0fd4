"""Domain events emitted by the engine services."""

from workforce_engine.events.emitter import EventBatch, EventEmitter, log_event
from workforce_engine.events.notifications import NotificationRelay
from workforce_engine.events.types import (
    AttendanceCheckedIn,
    AttendanceCheckedOut,
    AttendanceMarked,
    DomainEvent,
    EntityRolledBack,
    EventCategory,
    EventMetadata,
    LeaveRequestApproved,
    LeaveRequestCancelled,
    LeaveRequestEvent,
    LeaveRequestRejected,
    LeaveRequestReopened,
    LeaveRequestSubmitted,
    PayrollPeriodCleared,
    PayrollPeriodLocked,
    PayrollPeriodUnlocked,
    RecordsDeduplicated,
)

__all__ = [
    "EventBatch",
    "EventEmitter",
    "log_event",
    "NotificationRelay",
    "AttendanceCheckedIn",
    "AttendanceCheckedOut",
    "AttendanceMarked",
    "DomainEvent",
    "EntityRolledBack",
    "EventCategory",
    "EventMetadata",
    "LeaveRequestApproved",
    "LeaveRequestCancelled",
    "LeaveRequestEvent",
    "LeaveRequestRejected",
    "LeaveRequestReopened",
    "LeaveRequestSubmitted",
    "PayrollPeriodCleared",
    "PayrollPeriodLocked",
    "PayrollPeriodUnlocked",
    "RecordsDeduplicated",
]
