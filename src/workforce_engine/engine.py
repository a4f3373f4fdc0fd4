"""Workforce Engine facade - single integration path.

Usage:
    engine = WorkforceEngine(session, directory)

    engine.check_in("alice", date(2024, 3, 4), timestamp)
    request = engine.submit_leave("alice", sick.leave_type_id, start, end)
    engine.approve_leave(request.leave_request_id, reviewer="hr")
    engine.lock_period(["alice"], "2024-03", actor="hr")

The facade:
- Wires services together around one session, clock and emitter
- Shares one lock manager so every write path honours payroll locks
- Forwards leave and unlock events to the notification service
- Leaves transaction boundaries (commit/rollback) to the caller; wrap the
  calls and the commit in deferred_events() so events follow the commit
"""

from __future__ import annotations

from contextlib import AbstractContextManager, nullcontext
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from workforce_engine.collaborators import Clock, NotificationService, SystemClock, UserDirectory
from workforce_engine.config import AttendancePolicy, EngineConfig
from workforce_engine.events.emitter import EventBatch, EventEmitter, log_event
from workforce_engine.events.notifications import NotificationRelay
from workforce_engine.models import AttendanceRecord, Base, LeaveRequest, SalaryRecord
from workforce_engine.periods import period_of
from workforce_engine.services.attendance_service import AttendanceClassifier, AttendanceSummary
from workforce_engine.services.audit_store import AuditVersionStore, RollbackResult
from workforce_engine.services.authorization import Authorizer, LockOverride
from workforce_engine.services.deduplication import DedupReport, RecordDeduplicator
from workforce_engine.services.leave_ledger import LeaveBalanceLedger
from workforce_engine.services.leave_workflow import LeaveApprovalWorkflow
from workforce_engine.services.locking_service import ClearResult, LockResult, SalaryLockManager
from workforce_engine.services.results import ItemResult


class WorkforceEngine:
    """Synchronous facade over the attendance, leave, payroll and audit services."""

    def __init__(
        self,
        session: Session,
        directory: UserDirectory,
        notifications: NotificationService | None = None,
        policy: AttendancePolicy | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        event_emitter: EventEmitter | None = None,
    ) -> None:
        self._session = session
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._policy = policy or AttendancePolicy()

        emitter = None
        if self._config.emit_events:
            emitter = event_emitter or EventEmitter()
            emitter.on_all(log_event)
            if notifications is not None:
                NotificationRelay(notifications).register(emitter)
        self._emitter = emitter

        # Wire up services
        self.authorizer = Authorizer(directory)
        self.audit = AuditVersionStore(session, self._clock, emitter)
        self.locks = SalaryLockManager(
            session,
            self.audit,
            authorizer=self.authorizer,
            clock=self._clock,
            emitter=emitter,
            policy=self._policy,
            config=self._config,
        )
        self.ledger = LeaveBalanceLedger(session, self.audit, self.locks)
        self.attendance = AttendanceClassifier(
            session,
            self.audit,
            locks=self.locks,
            policy=self._policy,
            clock=self._clock,
            emitter=emitter,
            authorizer=self.authorizer,
        )
        self.leave = LeaveApprovalWorkflow(
            session,
            self.ledger,
            self.audit,
            locks=self.locks,
            authorizer=self.authorizer,
            clock=self._clock,
            emitter=emitter,
        )
        self.records = RecordDeduplicator(
            session,
            self.audit,
            authorizer=self.authorizer,
            clock=self._clock,
            emitter=emitter,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def emitter(self) -> EventEmitter | None:
        return self._emitter

    def deferred_events(self) -> AbstractContextManager[EventBatch | None]:
        """Hold domain events until the block exits cleanly.

        Put the service calls and the commit inside the block: handlers
        (notifications included) then only see committed work, and a block
        that raises drops its events.
        """
        if self._emitter is None:
            return nullcontext()
        return self._emitter.batch()

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    def check_in(
        self,
        user_id: str,
        day: date,
        timestamp: datetime | None = None,
        override: LockOverride | None = None,
    ) -> AttendanceRecord:
        return self.attendance.record_check_in(user_id, day, timestamp, override=override)

    def check_out(
        self,
        user_id: str,
        day: date,
        timestamp: datetime | None = None,
        override: LockOverride | None = None,
    ) -> AttendanceRecord:
        return self.attendance.record_check_out(user_id, day, timestamp, override=override)

    def bulk_mark_weekoff(
        self,
        user_ids: Iterable[str],
        dates: Iterable[date],
        actor: str,
    ) -> list[ItemResult]:
        return self.attendance.bulk_mark_weekoff(user_ids, dates, actor)

    def attendance_summary(self, user_id: str, period: str) -> AttendanceSummary:
        return self.attendance.summarize(user_id, period)

    # ------------------------------------------------------------------
    # Leave
    # ------------------------------------------------------------------

    def submit_leave(
        self,
        user_id: str,
        leave_type_id: UUID,
        start_date: date,
        end_date: date,
        reason: str | None = None,
    ) -> LeaveRequest:
        return self.leave.submit(user_id, leave_type_id, start_date, end_date, reason)

    def approve_leave(
        self,
        request_id: UUID,
        reviewer: str,
        comments: str | None = None,
        override: LockOverride | None = None,
    ) -> LeaveRequest:
        return self.leave.approve(request_id, reviewer, comments, override=override)

    def reject_leave(self, request_id: UUID, reviewer: str, comments: str | None = None) -> LeaveRequest:
        return self.leave.reject(request_id, reviewer, comments)

    def cancel_leave(self, request_id: UUID, actor: str) -> LeaveRequest:
        return self.leave.cancel(request_id, actor)

    def reopen_leave(self, request_id: UUID, actor: str, reason: str) -> LeaveRequest:
        return self.leave.reopen(request_id, actor, reason)

    def available_days(self, user_id: str, leave_type_id: UUID, period: str) -> Decimal:
        return self.ledger.available_days(user_id, leave_type_id, period)

    def allocate_leave(
        self,
        user_ids: Iterable[str],
        leave_type_id: UUID,
        period: str,
        total_allocated: Decimal | int,
        actor: str,
        carried_forward: Decimal | int | None = None,
    ) -> list[ItemResult]:
        self.authorizer.require(actor, "leave_balance", "allocate")
        return self.ledger.allocate(
            user_ids, leave_type_id, period, total_allocated, actor, carried_forward
        )

    # ------------------------------------------------------------------
    # Payroll
    # ------------------------------------------------------------------

    def lock_period(self, employee_ids: Iterable[str], period: str, actor: str) -> LockResult:
        return self.locks.lock_period(employee_ids, period, actor)

    def unlock_period(self, employee_id: str, period: str, actor: str, reason: str) -> SalaryRecord:
        return self.locks.unlock(employee_id, period, actor, reason)

    def clear_period_data(
        self,
        employee_id: str,
        period: str,
        confirmation_token: str,
        actor: str,
    ) -> ClearResult:
        return self.locks.clear_period_data(employee_id, period, confirmation_token, actor)

    def period_summary(self, employee_id: str, period: str) -> dict[str, Any]:
        return self.locks.period_summary(employee_id, period)

    # ------------------------------------------------------------------
    # Audit and records
    # ------------------------------------------------------------------

    def rollback(
        self,
        entity_type: str,
        entity_id: str | UUID | int,
        target_version: int,
        actor: str,
        override: LockOverride | None = None,
    ) -> RollbackResult:
        """Restore a versioned entity; attendance rollbacks honour payroll locks."""
        self.authorizer.require(actor, "audit", "rollback")

        # Runs on the current and the restored state; each period is checked once
        checked: set[tuple[str, str]] = set()

        def guard(entity: Base) -> None:
            if not isinstance(entity, AttendanceRecord):
                return
            key = (entity.user_id, period_of(entity.date))
            if key not in checked:
                checked.add(key)
                self.locks.ensure_unlocked(*key, override=override)

        return self.audit.rollback(entity_type, entity_id, target_version, actor, guard=guard)

    def deduplicate_records(self, actor: str, dry_run: bool = False) -> DedupReport:
        return self.records.run(actor, dry_run=dry_run)
