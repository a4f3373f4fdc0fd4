"""ORM models for the workforce engine."""

from workforce_engine.models.base import Base, TimestampMixin
from workforce_engine.models.attendance import (
    ADMIN_MARKABLE_STATUSES,
    AttendanceRecord,
    AttendanceSource,
    AttendanceStatus,
)
from workforce_engine.models.leave import (
    LeaveBalance,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
)
from workforce_engine.models.payroll import SalaryRecord, SalaryRecordStatus
from workforce_engine.models.audit import AuditLogEntry, VersionSnapshot
from workforce_engine.models.records import ImportedRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "ADMIN_MARKABLE_STATUSES",
    "AttendanceRecord",
    "AttendanceSource",
    "AttendanceStatus",
    "LeaveBalance",
    "LeaveRequest",
    "LeaveRequestStatus",
    "LeaveType",
    "SalaryRecord",
    "SalaryRecordStatus",
    "AuditLogEntry",
    "VersionSnapshot",
    "ImportedRecord",
]
