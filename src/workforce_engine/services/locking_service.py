"""Payroll period locking service.

Locking a (employee, period) freezes the attendance summary and leave balance
snapshot into the SalaryRecord. While locked, attendance and leave writes for
that employee and period fail with LockedPeriodError unless an authorized
LockOverride is supplied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from workforce_engine.collaborators import Clock, SystemClock
from workforce_engine.config import CLEAR_CONFIRMATION_TOKEN, AttendancePolicy, EngineConfig
from workforce_engine.events.emitter import EventEmitter
from workforce_engine.events.types import (
    EventMetadata,
    PayrollPeriodCleared,
    PayrollPeriodLocked,
    PayrollPeriodUnlocked,
)
from workforce_engine.exceptions import (
    InvalidStateError,
    LockedPeriodError,
    NotFoundError,
    ValidationError,
)
from workforce_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    LeaveBalance,
    LeaveRequest,
    LeaveRequestStatus,
    SalaryRecord,
    SalaryRecordStatus,
)
from workforce_engine.periods import parse_period, period_bounds
from workforce_engine.services.attendance_service import AttendanceSummary, classify_daily_status
from workforce_engine.services.audit_store import AuditVersionStore
from workforce_engine.services.authorization import Authorizer, LockOverride
from workforce_engine.services.results import ItemResult, run_item
from workforce_engine.services.state_machine import SalaryRecordStateMachine

logger = logging.getLogger(__name__)

ENTITY_TYPE = "salary_record"


@dataclass(frozen=True)
class LockResult:
    """Result of locking a period for a set of employees."""

    period: str
    locked: int
    already_locked: int
    failed: int
    results: list[ItemResult] = field(default_factory=list)


@dataclass(frozen=True)
class ClearResult:
    """Rows removed by clear_period_data."""

    employee_id: str
    period: str
    attendance_deleted: int
    salary_deleted: int


class SalaryLockManager:
    """Owns SalaryRecord status and lock enforcement."""

    def __init__(
        self,
        db: Session,
        audit: AuditVersionStore,
        authorizer: Authorizer | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
        policy: AttendancePolicy | None = None,
        config: EngineConfig | None = None,
    ):
        self.db = db
        self.audit = audit
        self.authorizer = authorizer
        self.clock = clock or SystemClock()
        self.emitter = emitter
        self.policy = policy or AttendancePolicy()
        self.config = config or EngineConfig()

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def get_record(self, employee_id: str, period: str) -> SalaryRecord | None:
        return self.db.execute(
            select(SalaryRecord).where(
                SalaryRecord.employee_id == employee_id,
                SalaryRecord.period == period,
            )
        ).scalar_one_or_none()

    def is_locked(self, employee_id: str, period: str) -> bool:
        record = self.get_record(employee_id, period)
        return record is not None and record.locked

    def ensure_unlocked(
        self,
        employee_id: str,
        period: str,
        override: LockOverride | None = None,
    ) -> None:
        """Raise LockedPeriodError if the period is locked for the employee.

        An override lets the write through only when its actor holds the
        ``override_lock`` permission; each use is audited as ``lock_override``.
        """
        record = self.get_record(employee_id, period)
        if record is None or not record.locked:
            return
        if override is None or self.authorizer is None:
            raise LockedPeriodError(employee_id, period)

        self.authorizer.require(override.actor, ENTITY_TYPE, "override_lock")
        if not (override.reason or "").strip():
            raise ValidationError("Lock override requires a reason", field="reason")

        logger.warning(
            "Lock override by %s for %s in %s: %s",
            override.actor,
            employee_id,
            period,
            override.reason,
        )
        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=record.salary_record_id,
            action="lock_override",
            actor=override.actor,
            metadata={"employee_id": employee_id, "period": period, "reason": override.reason},
        )

    # ------------------------------------------------------------------
    # Period preparation and locking
    # ------------------------------------------------------------------

    def prepare_period(
        self,
        employee_ids: Iterable[str],
        period: str,
        actor: str,
    ) -> list[ItemResult]:
        """Compute draft attendance summaries; locked records are skipped."""
        parse_period(period)
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "lock")

        results = []
        for employee_id in dict.fromkeys(employee_ids):
            key = {"employee_id": employee_id, "period": period}
            results.append(
                run_item(
                    self.db,
                    key,
                    lambda employee_id=employee_id, key=key: self._prepare_one(
                        employee_id, period, actor, key
                    ),
                )
            )
        return results

    def _prepare_one(self, employee_id: str, period: str, actor: str, key: dict) -> ItemResult:
        record = self.get_record(employee_id, period)
        if record is not None and record.locked:
            return ItemResult(key=key, outcome="skipped_locked", entity_id=str(record.salary_record_id))

        created = record is None
        if record is None:
            record = SalaryRecord(employee_id=employee_id, period=period, status=SalaryRecordStatus.DRAFT.value)
            self.db.add(record)
            self.db.flush()

        before = record.snapshot_state()
        self._freeze(record, employee_id, period)
        self.db.flush()
        after = record.snapshot_state()
        if created:
            outcome = "created"
            self.audit.append(
                entity_type=ENTITY_TYPE,
                entity_id=record.salary_record_id,
                action="prepare",
                actor=actor,
                after_value=after,
            )
        elif before == after:
            outcome = "unchanged"
        else:
            outcome = "updated"
            self.audit.log_changes(
                entity_type=ENTITY_TYPE,
                entity_id=record.salary_record_id,
                action="prepare",
                actor=actor,
                before=before,
                after=after,
            )
        return ItemResult(key=key, outcome=outcome, entity_id=str(record.salary_record_id))

    def lock_period(
        self,
        employee_ids: Iterable[str],
        period: str,
        actor: str,
    ) -> LockResult:
        """Lock the period for each employee independently.

        One employee failing (open check-ins, pending leave, a conflicting
        write) never blocks the others.
        """
        parse_period(period)
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "lock")

        results = []
        for employee_id in dict.fromkeys(employee_ids):
            key = {"employee_id": employee_id, "period": period}
            results.append(
                run_item(
                    self.db,
                    key,
                    lambda employee_id=employee_id, key=key: self._lock_one(
                        employee_id, period, actor, key
                    ),
                )
            )

        result = LockResult(
            period=period,
            locked=sum(1 for r in results if r.outcome == "locked"),
            already_locked=sum(1 for r in results if r.outcome == "already_locked"),
            failed=sum(1 for r in results if not r.ok),
            results=results,
        )
        logger.info(
            "Locked period %s by %s: %d locked, %d already locked, %d failed",
            period,
            actor,
            result.locked,
            result.already_locked,
            result.failed,
        )
        if self.emitter is not None:
            self.emitter.emit(
                PayrollPeriodLocked(
                    metadata=self._metadata(actor),
                    period=period,
                    locked_count=result.locked,
                    failed_count=result.failed,
                )
            )
        return result

    def _lock_one(self, employee_id: str, period: str, actor: str, key: dict) -> ItemResult:
        record = self.get_record(employee_id, period)
        if record is not None and record.locked:
            return ItemResult(key=key, outcome="already_locked", entity_id=str(record.salary_record_id))

        if self.config.require_stable_inputs:
            self._check_stable_inputs(employee_id, period)

        if record is None:
            record = SalaryRecord(employee_id=employee_id, period=period, status=SalaryRecordStatus.DRAFT.value)
            self.db.add(record)
            self.db.flush()

        SalaryRecordStateMachine.validate_transition(record.status, SalaryRecordStatus.LOCKED.value)
        summary = self._freeze(record, employee_id, period)
        record.status = SalaryRecordStatus.LOCKED.value
        record.locked = True
        record.locked_by = actor
        record.locked_at = self.clock.now()
        record.unlock_reason = None
        self.db.flush()

        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=record.salary_record_id,
            action="lock",
            actor=actor,
            before_value=SalaryRecordStatus.DRAFT.value,
            after_value=SalaryRecordStatus.LOCKED.value,
            metadata={
                "employee_id": employee_id,
                "period": period,
                "paid_days": str(summary.paid_days),
            },
        )
        self.audit.snapshot_entity(ENTITY_TYPE, record, actor)
        return ItemResult(
            key=key,
            outcome="locked",
            entity_id=str(record.salary_record_id),
            details={"paid_days": str(summary.paid_days)},
        )

    def _check_stable_inputs(self, employee_id: str, period: str) -> None:
        start, end = period_bounds(period)
        self.db.flush()
        open_check_ins = self.db.execute(
            select(func.count())
            .select_from(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == employee_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
                AttendanceRecord.status == AttendanceStatus.CHECKED_IN.value,
            )
        ).scalar_one()
        if open_check_ins:
            raise InvalidStateError(
                f"{employee_id} has {open_check_ins} open check-in(s) in {period}",
                employee_id=employee_id,
                period=period,
            )
        pending_leave = self.db.execute(
            select(func.count())
            .select_from(LeaveRequest)
            .where(
                LeaveRequest.user_id == employee_id,
                LeaveRequest.status == LeaveRequestStatus.PENDING.value,
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        ).scalar_one()
        if pending_leave:
            raise InvalidStateError(
                f"{employee_id} has {pending_leave} pending leave request(s) in {period}",
                employee_id=employee_id,
                period=period,
            )

    def _freeze(self, record: SalaryRecord, employee_id: str, period: str) -> AttendanceSummary:
        summary = self.live_summary(employee_id, period)
        record.total_working_days = summary.total_working_days
        record.present_days = summary.present
        record.absent_days = summary.absent
        record.half_days = summary.half_day
        record.leave_days = summary.leave
        record.weekoff_days = summary.weekoff
        record.holiday_days = summary.holiday
        record.wfh_days = summary.work_from_home
        record.late_count = summary.late
        record.early_checkout_count = summary.early_checkout
        record.not_marked_days = summary.not_marked
        record.total_paid_days = summary.paid_days
        record.total_hours = summary.total_hours
        record.details = {
            "attendance": summary.to_dict(),
            "leave_balances": self.leave_balance_snapshot(employee_id, period),
        }
        return summary

    # ------------------------------------------------------------------
    # Unlock and clear
    # ------------------------------------------------------------------

    def unlock(self, employee_id: str, period: str, actor: str, reason: str) -> SalaryRecord:
        """Return a locked period to draft. Admin only; a reason is required."""
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "unlock")
        record = self.get_record(employee_id, period)
        if record is None:
            raise NotFoundError(
                f"No salary record for {employee_id} in {period}",
                employee_id=employee_id,
                period=period,
            )
        SalaryRecordStateMachine.validate_transition(
            record.status, SalaryRecordStatus.DRAFT.value, reason
        )

        before = record.snapshot_state()
        record.status = SalaryRecordStatus.DRAFT.value
        record.locked = False
        record.locked_by = None
        record.locked_at = None
        record.unlock_reason = reason.strip()
        self.db.flush()

        self.audit.log_changes(
            entity_type=ENTITY_TYPE,
            entity_id=record.salary_record_id,
            action="unlock",
            actor=actor,
            before=before,
            after=record.snapshot_state(),
            metadata={"reason": record.unlock_reason},
        )
        self.audit.snapshot_entity(ENTITY_TYPE, record, actor)
        logger.warning("Period %s unlocked for %s by %s: %s", period, employee_id, actor, reason)
        if self.emitter is not None:
            self.emitter.emit(
                PayrollPeriodUnlocked(
                    metadata=self._metadata(actor),
                    employee_id=employee_id,
                    period=period,
                    reason=record.unlock_reason,
                )
            )
        return record

    def clear_period_data(
        self,
        employee_id: str,
        period: str,
        confirmation_token: str,
        actor: str,
    ) -> ClearResult:
        """Delete the employee's attendance and salary rows for an unlocked period."""
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "clear")
        if confirmation_token != CLEAR_CONFIRMATION_TOKEN:
            raise ValidationError(
                f"Confirmation token must be exactly {CLEAR_CONFIRMATION_TOKEN!r}",
                field="confirmation_token",
            )
        start, end = period_bounds(period)
        if self.is_locked(employee_id, period):
            raise LockedPeriodError(employee_id, period)

        self.db.flush()
        attendance_deleted = self.db.execute(
            delete(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == employee_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
            )
            .execution_options(synchronize_session="evaluate")
        ).rowcount
        salary_deleted = self.db.execute(
            delete(SalaryRecord)
            .where(
                SalaryRecord.employee_id == employee_id,
                SalaryRecord.period == period,
            )
            .execution_options(synchronize_session="evaluate")
        ).rowcount

        self.audit.append(
            entity_type="payroll_period",
            entity_id=f"{employee_id}:{period}",
            action="clear_period",
            actor=actor,
            metadata={
                "employee_id": employee_id,
                "period": period,
                "attendance_deleted": attendance_deleted,
                "salary_deleted": salary_deleted,
            },
        )
        logger.warning(
            "Cleared %s for %s by %s: %d attendance, %d salary rows",
            period,
            employee_id,
            actor,
            attendance_deleted,
            salary_deleted,
        )
        if self.emitter is not None:
            self.emitter.emit(
                PayrollPeriodCleared(
                    metadata=self._metadata(actor),
                    employee_id=employee_id,
                    period=period,
                    attendance_deleted=attendance_deleted,
                    salary_deleted=salary_deleted,
                )
            )
        return ClearResult(
            employee_id=employee_id,
            period=period,
            attendance_deleted=attendance_deleted,
            salary_deleted=salary_deleted,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def live_summary(self, employee_id: str, period: str) -> AttendanceSummary:
        start, end = period_bounds(period)
        self.db.flush()
        records = self.db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.user_id == employee_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
            )
        ).scalars()
        return classify_daily_status(records, self.policy, period)

    def leave_balance_snapshot(self, employee_id: str, period: str) -> list[dict[str, Any]]:
        """Leave balances for the period in JSON form."""
        self.db.flush()
        balances = self.db.execute(
            select(LeaveBalance).where(
                LeaveBalance.user_id == employee_id,
                LeaveBalance.period == period,
            )
        ).scalars()
        return [
            {
                "leave_type_id": str(b.leave_type_id),
                "leave_type": b.leave_type.code,
                "total_allocated": str(b.total_allocated),
                "carried_forward": str(b.carried_forward),
                "used": str(b.used),
                "pending": str(b.pending),
                "available": str(b.available),
            }
            for b in balances
        ]

    def period_summary(self, employee_id: str, period: str) -> dict[str, Any]:
        """Frozen figures for a locked period, live figures otherwise."""
        parse_period(period)
        record = self.get_record(employee_id, period)
        if record is not None and record.locked and record.details:
            attendance = record.details.get("attendance", {})
            balances = record.details.get("leave_balances", [])
        else:
            attendance = self.live_summary(employee_id, period).to_dict()
            balances = self.leave_balance_snapshot(employee_id, period)
        return {
            "employee_id": employee_id,
            "period": period,
            "status": record.status if record is not None else SalaryRecordStatus.DRAFT.value,
            "locked": bool(record is not None and record.locked),
            "locked_by": record.locked_by if record is not None else None,
            "attendance": attendance,
            "leave_balances": balances,
        }

    def _metadata(self, actor: str) -> EventMetadata:
        return EventMetadata.create(actor_id=actor, source_service="payroll", timestamp=self.clock.now())
