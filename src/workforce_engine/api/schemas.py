"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error payload produced by the WorkforceError handler."""

    code: str
    message: str


class ItemResultResponse(BaseModel):
    """One item of a bulk operation."""

    model_config = ConfigDict(from_attributes=True)

    key: dict[str, Any]
    outcome: str
    entity_id: str | None = None
    error: dict[str, Any] | None = None


class BulkResultResponse(BaseModel):
    items: list[ItemResultResponse]
    succeeded: int
    failed: int

    @classmethod
    def from_results(cls, results: list[Any]) -> "BulkResultResponse":
        items = [ItemResultResponse.model_validate(r) for r in results]
        failed = sum(1 for r in results if not r.ok)
        return cls(items=items, succeeded=len(results) - failed, failed=failed)


# ============================================================================
# Attendance
# ============================================================================


class CheckInRequest(BaseModel):
    day: date
    timestamp: datetime | None = None


class CheckOutRequest(BaseModel):
    day: date
    timestamp: datetime | None = None


class BulkMarkRequest(BaseModel):
    """Mark one status for every (user, date) pair."""

    user_ids: list[str] = Field(min_length=1)
    dates: list[date] = Field(min_length=1)
    status: str = "weekoff"
    notes: str | None = None


class AttendanceEditRequest(BaseModel):
    status: str | None = None
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    notes: str | None = None
    expected_version: int | None = None


class AttendanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attendance_record_id: UUID
    user_id: str
    date: date
    status: str
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    total_hours: Decimal
    is_late: bool
    late_minutes: int
    is_early_checkout: bool
    source: str
    marked_by: str | None = None
    notes: str | None = None
    row_version: int


# ============================================================================
# Leave
# ============================================================================


class LeaveTypeCreate(BaseModel):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    default_annual_allocation: Decimal = Decimal("0")
    is_half_day: bool = False
    carry_forward: bool = False


class LeaveTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_type_id: UUID
    code: str
    name: str
    default_annual_allocation: Decimal
    is_half_day: bool
    carry_forward: bool


class LeaveRequestCreate(BaseModel):
    leave_type_id: UUID
    start_date: date
    end_date: date
    reason: str | None = None


class ReviewRequest(BaseModel):
    comments: str | None = None


class ReopenRequest(BaseModel):
    reason: str = Field(min_length=1)


class LeaveRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_request_id: UUID
    user_id: str
    leave_type_id: UUID
    start_date: date
    end_date: date
    total_days: Decimal
    reason: str | None = None
    status: str
    reviewed_by: str | None = None
    review_comments: str | None = None
    reviewed_at: datetime | None = None
    reopened_from_id: UUID | None = None


class AllocationRequest(BaseModel):
    user_ids: list[str] = Field(min_length=1)
    leave_type_id: UUID
    period: str
    total_allocated: Decimal = Field(ge=0)
    carried_forward: Decimal | None = Field(default=None, ge=0)


class LeaveBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_balance_id: UUID
    user_id: str
    leave_type_id: UUID
    period: str
    total_allocated: Decimal
    carried_forward: Decimal
    used: Decimal
    pending: Decimal
    available: Decimal


# ============================================================================
# Payroll
# ============================================================================


class LockPeriodRequest(BaseModel):
    employee_ids: list[str] = Field(min_length=1)


class LockPeriodResponse(BaseModel):
    period: str
    locked: int
    already_locked: int
    failed: int
    items: list[ItemResultResponse]


class UnlockPeriodRequest(BaseModel):
    employee_id: str
    reason: str


class ClearPeriodRequest(BaseModel):
    employee_id: str
    confirmation_token: str


class ClearPeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: str
    period: str
    attendance_deleted: int
    salary_deleted: int


class SalaryRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    salary_record_id: UUID
    employee_id: str
    period: str
    status: str
    locked: bool
    locked_by: str | None = None
    locked_at: datetime | None = None
    unlock_reason: str | None = None
    total_paid_days: Decimal
    total_hours: Decimal


# ============================================================================
# Audit and records
# ============================================================================


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    audit_log_id: int
    entity_type: str
    entity_id: str
    action: str
    actor: str
    field_changed: str | None = None
    before_value: str | None = None
    after_value: str | None = None
    timestamp: datetime
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_json")


class VersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version_number: int
    full_snapshot: dict[str, Any]
    changed_by: str
    changed_at: datetime
    diff: dict[str, Any] | None = None


class RollbackRequest(BaseModel):
    target_version: int = Field(ge=1)


class RollbackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_type: str
    entity_id: str
    from_version: int
    to_version: int
    new_version: int
    state: dict[str, Any]


class ImportRecordsRequest(BaseModel):
    records: list[dict[str, Any]] = Field(min_length=1)


class ImportedRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    imported_record_id: int
    external_id: str | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    source: str | None = None
    created_at: datetime


class DeduplicateRequest(BaseModel):
    dry_run: bool = False


class DedupReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    strict_deleted: int
    legacy_deleted: int
    dry_run: bool
    strict_ids: list[int]
    legacy_ids: list[int]
