"""Workforce engine services."""

from workforce_engine.services.attendance_service import (
    AttendanceClassifier,
    AttendanceSummary,
    classify_daily_status,
)
from workforce_engine.services.audit_store import AuditVersionStore, RollbackResult
from workforce_engine.services.authorization import Authorizer, LockOverride, Role, is_allowed
from workforce_engine.services.deduplication import DedupReport, RecordDeduplicator, plan_deduplication
from workforce_engine.services.leave_ledger import LeaveBalanceLedger, count_leave_days
from workforce_engine.services.leave_workflow import LeaveApprovalWorkflow
from workforce_engine.services.locking_service import ClearResult, LockResult, SalaryLockManager
from workforce_engine.services.results import ItemResult
from workforce_engine.services.state_machine import LeaveRequestStateMachine, SalaryRecordStateMachine

__all__ = [
    "AttendanceClassifier",
    "AttendanceSummary",
    "classify_daily_status",
    "AuditVersionStore",
    "RollbackResult",
    "Authorizer",
    "LockOverride",
    "Role",
    "is_allowed",
    "DedupReport",
    "RecordDeduplicator",
    "plan_deduplication",
    "LeaveBalanceLedger",
    "count_leave_days",
    "LeaveApprovalWorkflow",
    "ClearResult",
    "LockResult",
    "SalaryLockManager",
    "ItemResult",
    "LeaveRequestStateMachine",
    "SalaryRecordStateMachine",
]
