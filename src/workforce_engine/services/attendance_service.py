"""Attendance classification from check-in/check-out events and admin marking."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workforce_engine.collaborators import Clock, SystemClock
from workforce_engine.config import AttendancePolicy
from workforce_engine.events.emitter import EventEmitter
from workforce_engine.events.types import (
    AttendanceCheckedIn,
    AttendanceCheckedOut,
    AttendanceMarked,
    EventMetadata,
)
from workforce_engine.exceptions import (
    ConcurrencyConflict,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from workforce_engine.models import (
    ADMIN_MARKABLE_STATUSES,
    AttendanceRecord,
    AttendanceSource,
    AttendanceStatus,
)
from workforce_engine.periods import days_in_period, iter_days, period_bounds, period_of
from workforce_engine.services.results import ItemResult, run_item

if TYPE_CHECKING:
    from workforce_engine.services.audit_store import AuditVersionStore
    from workforce_engine.services.authorization import Authorizer, LockOverride
    from workforce_engine.services.locking_service import SalaryLockManager

logger = logging.getLogger(__name__)

ENTITY_TYPE = "attendance_record"

TWO_PLACES = Decimal("0.01")

# Statuses counted as a full worked day
PRESENT_STATUSES = frozenset(
    {
        AttendanceStatus.PRESENT.value,
        AttendanceStatus.CHECKED_OUT.value,
        AttendanceStatus.WORK_FROM_HOME.value,
    }
)

# Non-working statuses that are still paid
PAID_OFF_STATUSES = frozenset(
    {
        AttendanceStatus.WEEKOFF.value,
        AttendanceStatus.HOLIDAY.value,
        AttendanceStatus.LEAVE.value,
    }
)

# Marking one of these clears worked hours and punctuality flags
NON_WORKING_STATUSES = frozenset(
    {
        AttendanceStatus.ABSENT.value,
        AttendanceStatus.WEEKOFF.value,
        AttendanceStatus.HOLIDAY.value,
        AttendanceStatus.LEAVE.value,
    }
)

EDITABLE_FIELDS = frozenset({"status", "check_in_time", "check_out_time", "notes"})


@dataclass(frozen=True)
class AttendanceSummary:
    """Aggregate attendance counts for reporting and payroll."""

    total_days: int = 0
    total_working_days: int = 0
    present: int = 0
    absent: int = 0
    half_day: int = 0
    leave: int = 0
    work_from_home: int = 0
    weekoff: int = 0
    holiday: int = 0
    late: int = 0
    early_checkout: int = 0
    open_check_ins: int = 0
    short_days: int = 0
    not_marked: int = 0
    total_hours: Decimal = Decimal("0.00")
    paid_days: Decimal = Decimal("0.0")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_hours"] = str(self.total_hours)
        data["paid_days"] = str(self.paid_days)
        return data


def classify_daily_status(
    records: Iterable[AttendanceRecord],
    policy: AttendancePolicy | None = None,
    period: str | None = None,
) -> AttendanceSummary:
    """Aggregate daily records into counts. Pure; nothing is written.

    Present, checked-out and work-from-home days count as present and paid;
    half days pay 0.5; weekoff, holiday and leave days are paid but not
    present. Open check-ins are reported but not paid. Checked-out days under
    the policy's minimum work hours are counted as short. With a period, days
    without a record are counted as not marked and working days exclude the
    policy's weekly offs.
    """
    policy = policy or AttendancePolicy()
    counts = {
        "present": 0,
        "absent": 0,
        "half_day": 0,
        "leave": 0,
        "work_from_home": 0,
        "weekoff": 0,
        "holiday": 0,
        "late": 0,
        "early_checkout": 0,
        "open_check_ins": 0,
        "short_days": 0,
    }
    total_hours = Decimal("0")
    paid_days = Decimal("0")
    full_day = Decimal(str(policy.minimum_work_hours))
    seen = 0

    for record in records:
        seen += 1
        status = record.status
        if status in PRESENT_STATUSES:
            counts["present"] += 1
            paid_days += 1
            if status == AttendanceStatus.WORK_FROM_HOME.value:
                counts["work_from_home"] += 1
            elif record.check_out_time is not None and Decimal(record.total_hours or 0) < full_day:
                counts["short_days"] += 1
        elif status == AttendanceStatus.HALF_DAY.value:
            counts["half_day"] += 1
            paid_days += Decimal("0.5")
        elif status in PAID_OFF_STATUSES:
            counts[status] += 1
            paid_days += 1
        elif status == AttendanceStatus.ABSENT.value:
            counts["absent"] += 1
        elif status == AttendanceStatus.CHECKED_IN.value:
            counts["open_check_ins"] += 1

        if record.is_late:
            counts["late"] += 1
        if record.is_early_checkout:
            counts["early_checkout"] += 1
        total_hours += Decimal(record.total_hours or 0)

    total_days = seen
    working_days = seen
    not_marked = 0
    if period is not None:
        total_days = days_in_period(period)
        start, end = period_bounds(period)
        working_days = sum(1 for d in iter_days(start, end) if d.weekday() not in policy.week_off_days)
        not_marked = max(0, total_days - seen)

    return AttendanceSummary(
        total_days=total_days,
        total_working_days=working_days,
        not_marked=not_marked,
        total_hours=total_hours.quantize(TWO_PLACES),
        paid_days=paid_days.quantize(Decimal("0.1")),
        **counts,
    )


def to_local_time(timestamp: datetime, policy: AttendancePolicy) -> datetime:
    """Naive local wall-clock time for a timestamp."""
    if timestamp.tzinfo is None:
        return timestamp
    if policy.timezone:
        timestamp = timestamp.astimezone(ZoneInfo(policy.timezone))
    return timestamp.replace(tzinfo=None)


def hours_between(start: datetime, end: datetime) -> Decimal:
    """Fractional hours between two times, rounded to 2 decimals."""
    seconds = Decimal(int((end - start).total_seconds()))
    return (seconds / Decimal(3600)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def lateness(check_in: datetime, day: date, policy: AttendancePolicy) -> tuple[bool, int]:
    """Return (is_late, minutes past the start of the working day)."""
    start = datetime.combine(day, policy.work_start_time)
    grace_end = start + timedelta(minutes=policy.late_threshold_minutes)
    if check_in <= grace_end:
        return False, 0
    return True, int((check_in - start).total_seconds() // 60)


class AttendanceClassifier:
    """Owns AttendanceRecord writes.

    Every mutation checks the payroll lock for the record's period, is
    audited and snapshotted, and publishes a domain event.
    """

    def __init__(
        self,
        db: Session,
        audit: AuditVersionStore,
        locks: SalaryLockManager | None = None,
        policy: AttendancePolicy | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
        authorizer: Authorizer | None = None,
    ):
        self.db = db
        self.audit = audit
        self.locks = locks
        self.policy = policy or AttendancePolicy()
        self.clock = clock or SystemClock()
        self.emitter = emitter
        self.authorizer = authorizer

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_record(self, user_id: str, day: date) -> AttendanceRecord | None:
        return self.db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.date == day,
            )
        ).scalar_one_or_none()

    def get_record_by_id(self, record_id: UUID) -> AttendanceRecord:
        record = self.db.get(AttendanceRecord, record_id)
        if record is None:
            raise NotFoundError(f"Attendance record {record_id} not found", record_id=str(record_id))
        return record

    def list_records(self, user_id: str, period: str) -> list[AttendanceRecord]:
        start, end = period_bounds(period)
        self.db.flush()
        result = self.db.execute(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
            )
            .order_by(AttendanceRecord.date)
        )
        return list(result.scalars().all())

    def summarize(self, user_id: str, period: str) -> AttendanceSummary:
        return classify_daily_status(self.list_records(user_id, period), self.policy, period)

    # ------------------------------------------------------------------
    # Check-in / check-out
    # ------------------------------------------------------------------

    def record_check_in(
        self,
        user_id: str,
        day: date,
        timestamp: datetime | None = None,
        policy: AttendancePolicy | None = None,
        override: LockOverride | None = None,
    ) -> AttendanceRecord:
        """Open the day for a user, classifying lateness against the policy."""
        self._resolve_user(user_id)
        policy = policy or self.policy
        local = to_local_time(timestamp or self.clock.now(), policy)
        if local.date() != day:
            raise ValidationError(
                f"Check-in time {local.isoformat()} does not fall on {day.isoformat()}",
                field="timestamp",
            )
        self._ensure_unlocked(user_id, day, override)

        record = self.get_record(user_id, day)
        before = record.snapshot_state() if record is not None else None

        if record is None:
            is_late, late_minutes = lateness(local, day, policy)
            record = AttendanceRecord(
                user_id=user_id,
                date=day,
                status=AttendanceStatus.CHECKED_IN.value,
                check_in_time=local,
                total_hours=Decimal("0"),
                is_late=is_late,
                late_minutes=late_minutes,
                is_early_checkout=False,
                source=AttendanceSource.SELF.value,
                marked_by=user_id,
            )
            self.db.add(record)
        elif record.status == AttendanceStatus.CHECKED_IN.value:
            raise InvalidStateError(
                f"{user_id} is already checked in on {day.isoformat()}",
                user_id=user_id,
                date=day.isoformat(),
            )
        elif record.status == AttendanceStatus.CHECKED_OUT.value:
            if not policy.allow_multiple_checkins:
                raise InvalidStateError(
                    f"{user_id} already checked out on {day.isoformat()}",
                    user_id=user_id,
                    date=day.isoformat(),
                )
            # Re-open the day; the first check-in time stands
            record.status = AttendanceStatus.CHECKED_IN.value
            record.check_out_time = None
            record.is_early_checkout = False
        else:
            # Working on a day that was marked administratively
            is_late, late_minutes = lateness(local, day, policy)
            record.status = AttendanceStatus.CHECKED_IN.value
            record.check_in_time = local
            record.check_out_time = None
            record.total_hours = Decimal("0")
            record.is_late = is_late
            record.late_minutes = late_minutes
            record.is_early_checkout = False
            record.source = AttendanceSource.SELF.value
            record.marked_by = user_id

        self._flush(record)
        self._record_write(record, "check_in", user_id, before)
        logger.info(
            "Check-in user=%s day=%s at=%s late=%s",
            user_id,
            day,
            local.time().isoformat(timespec="minutes"),
            record.is_late,
        )
        self._emit(
            AttendanceCheckedIn(
                metadata=self._metadata(user_id),
                user_id=user_id,
                day=day,
                is_late=record.is_late,
            )
        )
        return record

    def record_check_out(
        self,
        user_id: str,
        day: date,
        timestamp: datetime | None = None,
        policy: AttendancePolicy | None = None,
        override: LockOverride | None = None,
    ) -> AttendanceRecord:
        """Close the day, deriving total hours and the early-checkout flag."""
        self._resolve_user(user_id)
        policy = policy or self.policy
        record = self.get_record(user_id, day)
        if record is None or record.status != AttendanceStatus.CHECKED_IN.value:
            raise InvalidStateError(
                f"{user_id} has no open check-in on {day.isoformat()}",
                user_id=user_id,
                date=day.isoformat(),
            )
        check_in_time = record.check_in_time
        if check_in_time is None:
            raise InvalidStateError(
                f"{user_id} has no check-in time on {day.isoformat()}",
                user_id=user_id,
                date=day.isoformat(),
            )
        local = to_local_time(timestamp or self.clock.now(), policy)
        if local < check_in_time:
            raise ValidationError(
                "Check-out time precedes check-in time",
                field="timestamp",
                check_in_time=check_in_time.isoformat(),
            )
        self._ensure_unlocked(user_id, day, override)

        before = record.snapshot_state()
        total_hours = hours_between(check_in_time, local)
        record.check_out_time = local
        record.total_hours = total_hours
        record.is_early_checkout = total_hours < Decimal(str(policy.early_checkout_threshold_hours))
        record.status = AttendanceStatus.CHECKED_OUT.value

        self._flush(record)
        self._record_write(record, "check_out", user_id, before)
        logger.info(
            "Check-out user=%s day=%s hours=%s early=%s",
            user_id,
            day,
            total_hours,
            record.is_early_checkout,
        )
        self._emit(
            AttendanceCheckedOut(
                metadata=self._metadata(user_id),
                user_id=user_id,
                day=day,
                total_hours=total_hours,
                is_early_checkout=record.is_early_checkout,
            )
        )
        return record

    # ------------------------------------------------------------------
    # Administrative marking
    # ------------------------------------------------------------------

    def bulk_mark_weekoff(
        self,
        user_ids: Iterable[str],
        dates: Iterable[date],
        actor: str,
        override: LockOverride | None = None,
    ) -> list[ItemResult]:
        """Mark weekly offs; rerunning with the same input changes nothing."""
        return self.bulk_mark_status(
            user_ids, dates, AttendanceStatus.WEEKOFF.value, actor, override=override
        )

    def bulk_mark_status(
        self,
        user_ids: Iterable[str],
        dates: Iterable[date],
        status: str,
        actor: str,
        notes: str | None = None,
        override: LockOverride | None = None,
    ) -> list[ItemResult]:
        """Upsert one status for every (user, date) pair.

        Each pair runs in its own savepoint: a failing pair is reported in
        the result list and never undoes the pairs before it.
        """
        status = _coerce_status(status)
        if status not in {s.value for s in ADMIN_MARKABLE_STATUSES}:
            raise ValidationError(f"Status {status!r} cannot be marked administratively", field="status")
        if self.authorizer is not None:
            self.authorizer.require(actor, "attendance", "mark")

        user_ids = list(dict.fromkeys(user_ids))
        dates = sorted(set(dates))
        if not user_ids or not dates:
            raise ValidationError("At least one user and one date are required")

        results = []
        for user_id in user_ids:
            for day in dates:
                key = {"user_id": user_id, "date": day.isoformat()}
                results.append(
                    run_item(
                        self.db,
                        key,
                        lambda user_id=user_id, day=day, key=key: self._mark_one(
                            user_id, day, status, actor, notes, override, key
                        ),
                    )
                )

        succeeded = sum(1 for r in results if r.ok)
        failed = len(results) - succeeded
        logger.info(
            "Bulk marked %s by %s: %d ok, %d failed",
            status,
            actor,
            succeeded,
            failed,
        )
        self._emit(
            AttendanceMarked(
                metadata=self._metadata(actor),
                status=status,
                succeeded=succeeded,
                failed=failed,
            )
        )
        return results

    def _mark_one(
        self,
        user_id: str,
        day: date,
        status: str,
        actor: str,
        notes: str | None,
        override: LockOverride | None,
        key: dict[str, Any],
    ) -> ItemResult:
        self._ensure_unlocked(user_id, day, override)
        record = self.get_record(user_id, day)

        if record is None:
            record = AttendanceRecord(
                user_id=user_id,
                date=day,
                status=status,
                total_hours=Decimal("0"),
                is_late=False,
                late_minutes=0,
                is_early_checkout=False,
                source=AttendanceSource.BULK.value,
                marked_by=actor,
                notes=notes,
            )
            self.db.add(record)
            self._flush(record)
            self._record_write(record, "mark", actor, None)
            return ItemResult(key=key, outcome="created", entity_id=str(record.attendance_record_id))

        updates: dict[str, Any] = {"status": status}
        if status in NON_WORKING_STATUSES:
            updates.update(
                total_hours=Decimal("0"),
                is_late=False,
                late_minutes=0,
                is_early_checkout=False,
            )
        if notes is not None:
            updates["notes"] = notes

        if all(getattr(record, name) == value for name, value in updates.items()):
            return ItemResult(key=key, outcome="unchanged", entity_id=str(record.attendance_record_id))

        before = record.snapshot_state()
        for name, value in updates.items():
            setattr(record, name, value)
        record.source = AttendanceSource.BULK.value
        record.marked_by = actor
        self._flush(record)
        self._record_write(record, "mark", actor, before)
        return ItemResult(key=key, outcome="updated", entity_id=str(record.attendance_record_id))

    def edit_record(
        self,
        record_id: UUID,
        changes: dict[str, Any],
        actor: str,
        expected_version: int | None = None,
        override: LockOverride | None = None,
    ) -> AttendanceRecord:
        """Administrative edit with optimistic concurrency.

        ``expected_version`` is the row_version the editor read; a mismatch
        raises ConcurrencyConflict without writing.
        """
        if self.authorizer is not None:
            self.authorizer.require(actor, "attendance", "edit")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields not editable: {', '.join(sorted(unknown))}",
                fields=sorted(unknown),
            )
        if not changes:
            raise ValidationError("No changes supplied")

        record = self.get_record_by_id(record_id)
        if expected_version is not None and record.row_version != expected_version:
            raise ConcurrencyConflict(
                f"Attendance record {record_id} is at version {record.row_version}, "
                f"not {expected_version}",
                record_id=str(record_id),
                expected_version=expected_version,
                actual_version=record.row_version,
            )
        self._ensure_unlocked(record.user_id, record.date, override)

        status = _coerce_status(changes.get("status", record.status))
        check_in = changes.get("check_in_time", record.check_in_time)
        check_out = changes.get("check_out_time", record.check_out_time)
        if check_in is not None:
            check_in = to_local_time(check_in, self.policy)
        if check_out is not None:
            check_out = to_local_time(check_out, self.policy)
        if check_in is not None and check_out is not None and check_out < check_in:
            raise ValidationError("check_out_time precedes check_in_time", field="check_out_time")
        if check_out is not None and check_in is None:
            raise ValidationError("check_out_time requires check_in_time", field="check_out_time")

        before = record.snapshot_state()
        record.status = status
        record.check_in_time = check_in
        record.check_out_time = check_out
        if "notes" in changes:
            record.notes = changes["notes"]

        if status in NON_WORKING_STATUSES:
            record.total_hours = Decimal("0")
            record.is_late = False
            record.late_minutes = 0
            record.is_early_checkout = False
        else:
            if check_in is not None:
                record.is_late, record.late_minutes = lateness(check_in, record.date, self.policy)
            if check_in is not None and check_out is not None:
                record.total_hours = hours_between(check_in, check_out)
                record.is_early_checkout = record.total_hours < Decimal(
                    str(self.policy.early_checkout_threshold_hours)
                )
        record.source = AttendanceSource.ADMIN.value
        record.marked_by = actor

        self._flush(record)
        self._record_write(record, "edit", actor, before)
        logger.info("Attendance record %s edited by %s", record_id, actor)
        return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_user(self, user_id: str) -> None:
        # Unknown and inactive users cannot punch in or out
        if self.authorizer is not None:
            self.authorizer.resolve(user_id)

    def _ensure_unlocked(self, user_id: str, day: date, override: LockOverride | None) -> None:
        if self.locks is not None:
            self.locks.ensure_unlocked(user_id, period_of(day), override=override)

    def _flush(self, record: AttendanceRecord) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyConflict(
                f"Attendance record for {record.user_id} on {record.date} changed concurrently",
                user_id=record.user_id,
                date=record.date.isoformat(),
            ) from e

    def _record_write(
        self,
        record: AttendanceRecord,
        action: str,
        actor: str,
        before: dict[str, Any] | None,
    ) -> None:
        after = record.snapshot_state()
        if before is None:
            self.audit.append(
                entity_type=ENTITY_TYPE,
                entity_id=record.attendance_record_id,
                action=action,
                actor=actor,
                after_value=after,
                metadata={"user_id": record.user_id, "date": record.date.isoformat()},
            )
        else:
            self.audit.log_changes(
                entity_type=ENTITY_TYPE,
                entity_id=record.attendance_record_id,
                action=action,
                actor=actor,
                before=before,
                after=after,
                metadata={"user_id": record.user_id, "date": record.date.isoformat()},
            )
        self.audit.snapshot(ENTITY_TYPE, record.attendance_record_id, after, actor)

    def _metadata(self, actor: str) -> EventMetadata:
        return EventMetadata.create(
            actor_id=actor,
            source_service="attendance",
            timestamp=self.clock.now(),
        )

    def _emit(self, event: Any) -> None:
        if self.emitter is not None:
            self.emitter.emit(event)


def _coerce_status(status: Any) -> str:
    value = status.value if isinstance(status, AttendanceStatus) else str(status)
    try:
        return AttendanceStatus(value).value
    except ValueError as e:
        raise ValidationError(f"Unknown attendance status {value!r}", field="status") from e
