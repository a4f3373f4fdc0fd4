"""Tests for attendance classification, marking and edits."""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest
from sqlalchemy import text

from conftest import MONDAY, PERIOD, SUNDAY, at
from workforce_engine.config import AttendancePolicy
from workforce_engine.exceptions import (
    ConcurrencyConflict,
    InvalidStateError,
    LockedPeriodError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from workforce_engine.models import AttendanceRecord
from workforce_engine.services.attendance_service import (
    AttendanceClassifier,
    classify_daily_status,
    hours_between,
    lateness,
    to_local_time,
)
from workforce_engine.services.authorization import LockOverride


class TestCheckInOut:
    """Check-in and check-out classification."""

    def test_on_time_day(self, engine):
        """09:05 with a ten minute grace window is on time; 17:00 gives 7.92 hours."""
        policy = AttendancePolicy(work_start_time=time(9, 0), late_threshold_minutes=10)
        record = engine.attendance.record_check_in("alice", MONDAY, at(MONDAY, 9, 5), policy=policy)

        assert record.status == "checked_in"
        assert record.is_late is False
        assert record.late_minutes == 0

        record = engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

        assert record.status == "checked_out"
        assert record.total_hours == Decimal("7.92")
        assert record.is_early_checkout is True

    def test_late_check_in(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 20))

        assert record.is_late is True
        assert record.late_minutes == 20

    def test_check_in_at_grace_boundary_is_not_late(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 15))
        assert record.is_late is False

    def test_full_day_is_not_early(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        record = engine.check_out("alice", MONDAY, at(MONDAY, 18, 0))

        assert record.total_hours == Decimal("9.00")
        assert record.is_early_checkout is False

    def test_check_in_uses_clock_when_no_timestamp(self, engine):
        """The fixed clock reads 09:05 UTC on the Monday."""
        record = engine.check_in("alice", MONDAY)
        assert record.check_in_time == datetime(2024, 3, 4, 9, 5)

    def test_second_check_in_rejected(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))

        with pytest.raises(InvalidStateError):
            engine.check_in("alice", MONDAY, at(MONDAY, 10, 0))

    def test_check_in_after_check_out_rejected_by_default(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        engine.check_out("alice", MONDAY, at(MONDAY, 13, 0))

        with pytest.raises(InvalidStateError):
            engine.check_in("alice", MONDAY, at(MONDAY, 14, 0))

    def test_multiple_check_ins_reopen_the_day(self, session, engine):
        classifier = AttendanceClassifier(
            session,
            engine.audit,
            locks=engine.locks,
            policy=AttendancePolicy(allow_multiple_checkins=True),
        )
        classifier.record_check_in("alice", MONDAY, at(MONDAY, 9, 0))
        classifier.record_check_out("alice", MONDAY, at(MONDAY, 12, 0))
        record = classifier.record_check_in("alice", MONDAY, at(MONDAY, 13, 0))

        assert record.status == "checked_in"
        assert record.check_in_time == at(MONDAY, 9, 0)
        assert record.check_out_time is None

        record = classifier.record_check_out("alice", MONDAY, at(MONDAY, 18, 0))
        assert record.total_hours == Decimal("9.00")

    def test_check_out_without_check_in(self, engine):
        with pytest.raises(InvalidStateError):
            engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

    def test_check_out_with_missing_check_in_time(self, engine, session):
        session.add(AttendanceRecord(user_id="alice", date=MONDAY, status="checked_in"))
        session.flush()

        with pytest.raises(InvalidStateError):
            engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

    def test_check_out_before_check_in(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))

        with pytest.raises(ValidationError):
            engine.check_out("alice", MONDAY, at(MONDAY, 8, 0))

    def test_timestamp_on_another_day(self, engine):
        with pytest.raises(ValidationError):
            engine.check_in("alice", MONDAY, at(SUNDAY, 23, 0))

    def test_check_in_on_marked_day_replaces_status(self, engine):
        engine.bulk_mark_weekoff(["alice"], [MONDAY], "hr")
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 30))

        assert record.status == "checked_in"
        assert record.is_late is True
        assert record.source == "self"

    def test_aware_timestamp_read_in_policy_zone(self, session, engine):
        try:
            ZoneInfo("Asia/Kolkata")
        except ZoneInfoNotFoundError:
            pytest.skip("tz database not available")
        classifier = AttendanceClassifier(
            session, engine.audit, policy=AttendancePolicy(timezone="Asia/Kolkata")
        )
        record = classifier.record_check_in(
            "alice", MONDAY, datetime(2024, 3, 4, 3, 35, tzinfo=timezone.utc)
        )

        assert record.check_in_time == at(MONDAY, 9, 5)
        assert record.is_late is False

    def test_check_out_uses_same_policy_as_check_in(self, engine):
        try:
            ZoneInfo("Asia/Kolkata")
        except ZoneInfoNotFoundError:
            pytest.skip("tz database not available")
        kolkata = AttendancePolicy(timezone="Asia/Kolkata")

        engine.attendance.record_check_in(
            "alice", MONDAY, datetime(2024, 3, 4, 3, 30, tzinfo=timezone.utc), policy=kolkata
        )
        record = engine.attendance.record_check_out(
            "alice", MONDAY, datetime(2024, 3, 4, 12, 30, tzinfo=timezone.utc), policy=kolkata
        )

        assert record.check_out_time == at(MONDAY, 18, 0)
        assert record.total_hours == Decimal("9.00")
        assert record.is_early_checkout is False

    @pytest.mark.parametrize("user_id", ["gone", "nobody-at-all"])
    def test_unknown_or_inactive_user_cannot_check_in(self, engine, user_id):
        with pytest.raises(NotFoundError):
            engine.check_in(user_id, MONDAY, at(MONDAY, 9, 0))

        assert engine.attendance.get_record(user_id, MONDAY) is None

    def test_unknown_user_cannot_check_out(self, engine):
        with pytest.raises(NotFoundError):
            engine.check_out("nobody-at-all", MONDAY, at(MONDAY, 17, 0))

    def test_check_in_writes_audit_and_version(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

        history = engine.audit.history("attendance_record", record.attendance_record_id)
        assert [e.action for e in history][0] == "check_in"
        assert {e.action for e in history} == {"check_in", "check_out"}

        versions = engine.audit.versions("attendance_record", record.attendance_record_id)
        assert [v.version_number for v in versions] == [1, 2]
        assert versions[1].diff["status"] == {"before": "checked_in", "after": "checked_out"}


class TestPayrollLockEnforcement:
    """Attendance writes against locked periods."""

    def test_locked_period_blocks_check_in(self, engine):
        result = engine.lock_period(["alice"], PERIOD, "hr")
        assert result.locked == 1

        with pytest.raises(LockedPeriodError) as exc_info:
            engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))

        assert exc_info.value.employee_id == "alice"
        assert exc_info.value.period == PERIOD
        assert engine.attendance.get_record("alice", MONDAY) is None

    def test_lock_only_applies_to_that_employee(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        record = engine.check_in("bob", MONDAY, at(MONDAY, 9, 0))
        assert record.status == "checked_in"

    def test_lock_only_applies_to_that_period(self, engine):
        engine.lock_period(["alice"], "2024-02", "hr")

        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        assert record.status == "checked_in"

    def test_admin_override_lets_write_through(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")
        salary = engine.locks.get_record("alice", PERIOD)

        record = engine.check_in(
            "alice",
            MONDAY,
            at(MONDAY, 9, 0),
            override=LockOverride(actor="admin", reason="badge reader outage"),
        )

        assert record.status == "checked_in"
        actions = [e.action for e in engine.audit.history("salary_record", salary.salary_record_id)]
        assert "lock_override" in actions

    def test_override_requires_permission(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        with pytest.raises(PermissionDeniedError):
            engine.check_in(
                "alice",
                MONDAY,
                at(MONDAY, 9, 0),
                override=LockOverride(actor="hr", reason="please"),
            )

    def test_override_requires_reason(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        with pytest.raises(ValidationError):
            engine.check_in(
                "alice",
                MONDAY,
                at(MONDAY, 9, 0),
                override=LockOverride(actor="admin", reason="  "),
            )


class TestBulkMarking:
    """Administrative bulk marking."""

    def test_bulk_weekoff_creates_records(self, engine):
        results = engine.bulk_mark_weekoff(["alice", "bob"], [SUNDAY], "hr")

        assert [r.outcome for r in results] == ["created", "created"]
        record = engine.attendance.get_record("alice", SUNDAY)
        assert record.status == "weekoff"
        assert record.total_hours == Decimal("0")
        assert record.source == "bulk"
        assert record.marked_by == "hr"

    def test_bulk_weekoff_is_idempotent(self, engine):
        engine.bulk_mark_weekoff(["alice", "bob"], [SUNDAY, date(2024, 3, 10)], "hr")
        record = engine.attendance.get_record("alice", SUNDAY)
        history_before = len(engine.audit.history("attendance_record", record.attendance_record_id))
        versions_before = engine.audit.latest_version_number(
            "attendance_record", record.attendance_record_id
        )
        row_version_before = record.row_version

        results = engine.bulk_mark_weekoff(["alice", "bob"], [SUNDAY, date(2024, 3, 10)], "hr")

        assert {r.outcome for r in results} == {"unchanged"}
        assert len(results) == 4
        assert record.row_version == row_version_before
        assert len(engine.audit.history("attendance_record", record.attendance_record_id)) == history_before
        assert (
            engine.audit.latest_version_number("attendance_record", record.attendance_record_id)
            == versions_before
        )

    def test_duplicate_inputs_are_collapsed(self, engine):
        results = engine.bulk_mark_weekoff(["alice", "alice"], [SUNDAY, SUNDAY], "hr")
        assert len(results) == 1

    def test_weekoff_over_worked_day_clears_hours(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 30))
        engine.check_out("alice", MONDAY, at(MONDAY, 12, 0))

        results = engine.bulk_mark_weekoff(["alice"], [MONDAY], "hr")

        assert results[0].outcome == "updated"
        record = engine.attendance.get_record("alice", MONDAY)
        assert record.status == "weekoff"
        assert record.total_hours == Decimal("0")
        assert record.is_late is False
        assert record.is_early_checkout is False

    def test_locked_item_fails_alone(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        results = engine.bulk_mark_weekoff(["alice", "bob"], [SUNDAY], "hr")

        by_user = {r.key["user_id"]: r for r in results}
        assert by_user["alice"].ok is False
        assert by_user["alice"].error_code == "locked_period"
        assert by_user["bob"].outcome == "created"
        assert engine.attendance.get_record("bob", SUNDAY) is not None
        assert engine.attendance.get_record("alice", SUNDAY) is None

    def test_mark_holiday(self, engine):
        results = engine.attendance.bulk_mark_status(
            ["alice"], [date(2024, 3, 8)], "holiday", "admin", notes="Festival"
        )

        assert results[0].outcome == "created"
        record = engine.attendance.get_record("alice", date(2024, 3, 8))
        assert record.status == "holiday"
        assert record.notes == "Festival"

    def test_employee_cannot_mark(self, engine):
        with pytest.raises(PermissionDeniedError):
            engine.bulk_mark_weekoff(["bob"], [SUNDAY], "alice")

    def test_checked_in_is_not_markable(self, engine):
        with pytest.raises(ValidationError):
            engine.attendance.bulk_mark_status(["alice"], [SUNDAY], "checked_in", "hr")

    def test_unknown_status(self, engine):
        with pytest.raises(ValidationError):
            engine.attendance.bulk_mark_status(["alice"], [SUNDAY], "vacation", "hr")

    def test_empty_input(self, engine):
        with pytest.raises(ValidationError):
            engine.bulk_mark_weekoff([], [SUNDAY], "hr")


class TestEditRecord:
    """Administrative edits with optimistic concurrency."""

    def test_edit_recomputes_hours(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

        edited = engine.attendance.edit_record(
            record.attendance_record_id,
            {"check_out_time": at(MONDAY, 18, 30), "notes": "Forgot to check out"},
            "hr",
            expected_version=record.row_version,
        )

        assert edited.total_hours == Decimal("9.50")
        assert edited.is_early_checkout is False
        assert edited.source == "admin"
        history = engine.audit.history("attendance_record", record.attendance_record_id)
        edited_fields = {e.field_changed for e in history if e.action == "edit"}
        assert {"check_out_time", "total_hours", "notes"} <= edited_fields

    def test_stale_expected_version(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        stale = record.row_version
        engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

        with pytest.raises(ConcurrencyConflict):
            engine.attendance.edit_record(
                record.attendance_record_id, {"notes": "x"}, "hr", expected_version=stale
            )
        assert record.notes is None

    def test_concurrent_writer_detected_on_flush(self, session, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        session.execute(text("UPDATE attendance_records SET row_version = 99"))

        with pytest.raises(ConcurrencyConflict):
            engine.attendance.edit_record(record.attendance_record_id, {"notes": "x"}, "hr")

    def test_unknown_field(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))

        with pytest.raises(ValidationError):
            engine.attendance.edit_record(record.attendance_record_id, {"total_hours": 12}, "hr")

    def test_employee_cannot_edit(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))

        with pytest.raises(PermissionDeniedError):
            engine.attendance.edit_record(record.attendance_record_id, {"notes": "x"}, "alice")

    def test_edit_to_absent_clears_hours(self, engine):
        record = engine.check_in("alice", MONDAY, at(MONDAY, 9, 40))
        engine.check_out("alice", MONDAY, at(MONDAY, 17, 0))

        edited = engine.attendance.edit_record(
            record.attendance_record_id,
            {"status": "absent", "check_in_time": None, "check_out_time": None},
            "hr",
        )

        assert edited.status == "absent"
        assert edited.total_hours == Decimal("0")
        assert edited.is_late is False


class TestClassifyDailyStatus:
    """Pure aggregation of daily records."""

    def _record(self, day: int, status: str, **kwargs) -> AttendanceRecord:
        return AttendanceRecord(user_id="alice", date=date(2024, 3, day), status=status, **kwargs)

    def test_counts_and_paid_days(self):
        records = [
            self._record(4, "checked_out", total_hours=Decimal("8.00"), is_late=True),
            self._record(5, "half_day", total_hours=Decimal("4.00")),
            self._record(6, "work_from_home"),
            self._record(7, "absent"),
            self._record(8, "holiday"),
            self._record(10, "weekoff"),
            self._record(11, "leave"),
            self._record(12, "checked_in"),
        ]

        summary = classify_daily_status(records)

        assert summary.present == 2
        assert summary.work_from_home == 1
        assert summary.half_day == 1
        assert summary.absent == 1
        assert summary.holiday == 1
        assert summary.weekoff == 1
        assert summary.leave == 1
        assert summary.open_check_ins == 1
        assert summary.late == 1
        assert summary.total_hours == Decimal("12.00")
        # 2 present + 0.5 half day + holiday + weekoff + leave
        assert summary.paid_days == Decimal("5.5")

    def test_short_days_use_minimum_work_hours(self):
        out = datetime(2024, 3, 4, 17, 0)
        records = [
            self._record(4, "checked_out", total_hours=Decimal("7.50"), check_out_time=out),
            self._record(5, "checked_out", total_hours=Decimal("8.00"), check_out_time=out),
            self._record(6, "present"),
        ]

        assert classify_daily_status(records).short_days == 1
        assert classify_daily_status(records, AttendancePolicy(minimum_work_hours=7.0)).short_days == 0

    def test_period_counts_unmarked_and_working_days(self):
        records = [self._record(4, "present"), self._record(5, "present")]

        summary = classify_daily_status(records, AttendancePolicy(), PERIOD)

        assert summary.total_days == 31
        # March 2024 has five Sundays
        assert summary.total_working_days == 26
        assert summary.not_marked == 29

    def test_summary_through_engine(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        engine.check_out("alice", MONDAY, at(MONDAY, 17, 30))
        engine.bulk_mark_weekoff(["alice"], [SUNDAY], "hr")

        summary = engine.attendance_summary("alice", PERIOD)

        assert summary.present == 1
        assert summary.weekoff == 1
        assert summary.paid_days == Decimal("2.0")
        assert summary.to_dict()["total_hours"] == "8.50"


class TestHelpers:
    """Time arithmetic helpers."""

    def test_hours_between_rounds_half_up(self):
        assert hours_between(at(MONDAY, 9, 5), at(MONDAY, 17, 0)) == Decimal("7.92")
        assert hours_between(at(MONDAY, 9, 0), at(MONDAY, 9, 0)) == Decimal("0.00")

    def test_lateness(self):
        policy = AttendancePolicy(late_threshold_minutes=10)
        assert lateness(at(MONDAY, 9, 10), MONDAY, policy) == (False, 0)
        assert lateness(at(MONDAY, 9, 11), MONDAY, policy) == (True, 11)

    def test_naive_times_are_local(self):
        assert to_local_time(at(MONDAY, 9, 0), AttendancePolicy(timezone="UTC")) == at(MONDAY, 9, 0)

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            AttendancePolicy(late_threshold_minutes=-1)
        with pytest.raises(ValueError):
            AttendancePolicy(week_off_days=(7,))
