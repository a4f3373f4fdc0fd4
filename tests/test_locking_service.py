"""Tests for payroll period locking, unlocking and clearing."""

from datetime import date
from decimal import Decimal

import pytest

from conftest import MONDAY, PERIOD, SUNDAY, at
from workforce_engine.config import EngineConfig
from workforce_engine.exceptions import (
    InvalidStateError,
    LockedPeriodError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from workforce_engine.engine import WorkforceEngine
from workforce_engine.services.authorization import LockOverride


def worked_day(engine, user_id="alice", day=MONDAY):
    engine.check_in(user_id, day, at(day, 9, 0))
    return engine.check_out(user_id, day, at(day, 17, 30))


class TestLockPeriod:
    """Locking freezes the period per employee."""

    def test_lock_freezes_summary(self, engine, casual):
        worked_day(engine)
        engine.bulk_mark_weekoff(["alice"], [SUNDAY], "hr")
        request = engine.submit_leave("alice", casual.leave_type_id, date(2024, 3, 11), date(2024, 3, 12))
        engine.approve_leave(request.leave_request_id, "hr")

        result = engine.lock_period(["alice"], PERIOD, "hr")

        assert (result.locked, result.already_locked, result.failed) == (1, 0, 0)
        record = engine.locks.get_record("alice", PERIOD)
        assert record.status == "locked"
        assert record.locked is True
        assert record.locked_by == "hr"
        assert record.present_days == 1
        assert record.weekoff_days == 1
        assert record.not_marked_days == 29
        assert record.total_paid_days == Decimal("2.0")
        assert record.total_hours == Decimal("8.50")
        (balance,) = record.details["leave_balances"]
        assert balance["leave_type"] == "casual"
        assert Decimal(balance["used"]) == 2

    def test_lock_writes_one_audit_entry_and_snapshot(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")
        record = engine.locks.get_record("alice", PERIOD)

        history = engine.audit.history("salary_record", record.salary_record_id)
        versions = engine.audit.versions("salary_record", record.salary_record_id)

        assert [e.action for e in history] == ["lock"]
        assert [v.version_number for v in versions] == [1]
        assert versions[0].full_snapshot["locked"] is True

    def test_lock_twice(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        result = engine.lock_period(["alice"], PERIOD, "hr")

        assert result.already_locked == 1
        assert result.results[0].outcome == "already_locked"

    def test_open_check_in_fails_only_that_employee(self, engine):
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))
        worked_day(engine, "bob")

        result = engine.lock_period(["alice", "bob"], PERIOD, "hr")

        assert (result.locked, result.failed) == (1, 1)
        by_employee = {r.key["employee_id"]: r for r in result.results}
        assert by_employee["alice"].error_code == "invalid_state"
        assert by_employee["bob"].outcome == "locked"
        assert engine.locks.is_locked("alice", PERIOD) is False
        assert engine.locks.is_locked("bob", PERIOD) is True

    def test_pending_leave_blocks_lock(self, engine, casual):
        engine.submit_leave("alice", casual.leave_type_id, date(2024, 3, 11), date(2024, 3, 12))

        result = engine.lock_period(["alice"], PERIOD, "hr")

        assert result.failed == 1
        assert result.results[0].error["code"] == "invalid_state"

    def test_unstable_inputs_allowed_when_configured(self, session, directory, clock):
        engine = WorkforceEngine(
            session, directory, clock=clock, config=EngineConfig(require_stable_inputs=False)
        )
        engine.check_in("alice", MONDAY, at(MONDAY, 9, 0))

        result = engine.lock_period(["alice"], PERIOD, "hr")

        assert result.locked == 1

    def test_employee_cannot_lock(self, engine):
        with pytest.raises(PermissionDeniedError):
            engine.lock_period(["alice"], PERIOD, "alice")

    def test_invalid_period(self, engine):
        with pytest.raises(ValidationError):
            engine.lock_period(["alice"], "2024-13", "hr")

    def test_period_summary_stays_frozen(self, engine):
        worked_day(engine)
        engine.lock_period(["alice"], PERIOD, "hr")
        override = LockOverride(actor="admin", reason="Missed punch")
        engine.check_in("alice", date(2024, 3, 5), at(date(2024, 3, 5), 9, 0), override=override)
        engine.check_out("alice", date(2024, 3, 5), at(date(2024, 3, 5), 17, 0), override=override)

        summary = engine.period_summary("alice", PERIOD)

        assert summary["locked"] is True
        assert summary["attendance"]["present"] == 1
        assert engine.attendance_summary("alice", PERIOD).present == 2


class TestPreparePeriod:
    """Draft summaries before locking."""

    def test_prepare_then_unchanged(self, engine):
        worked_day(engine)

        first = engine.locks.prepare_period(["alice"], PERIOD, "hr")
        second = engine.locks.prepare_period(["alice"], PERIOD, "hr")

        assert first[0].outcome == "created"
        assert second[0].outcome == "unchanged"
        assert engine.locks.get_record("alice", PERIOD).status == "draft"

    def test_prepare_updates_after_new_attendance(self, engine):
        engine.locks.prepare_period(["alice"], PERIOD, "hr")
        worked_day(engine)

        results = engine.locks.prepare_period(["alice"], PERIOD, "hr")

        assert results[0].outcome == "updated"
        assert engine.locks.get_record("alice", PERIOD).present_days == 1

    def test_prepare_skips_locked(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        results = engine.locks.prepare_period(["alice", "bob"], PERIOD, "hr")

        assert [r.outcome for r in results] == ["skipped_locked", "created"]


class TestUnlock:
    """Unlocking a period."""

    def test_admin_unlock_reopens_writes(self, engine, notifications):
        engine.lock_period(["alice"], PERIOD, "hr")

        record = engine.unlock_period("alice", PERIOD, "admin", "Late timesheet")

        assert record.status == "draft"
        assert record.locked is False
        assert record.unlock_reason == "Late timesheet"
        assert engine.check_in("alice", MONDAY, at(MONDAY, 9, 0)).status == "checked_in"
        assert notifications.types_for("alice") == ["payroll_unlocked"]

        history = engine.audit.history("salary_record", record.salary_record_id)
        assert "unlock" in [e.action for e in history]
        assert engine.audit.latest_version_number("salary_record", record.salary_record_id) == 2

    def test_hr_cannot_unlock(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        with pytest.raises(PermissionDeniedError):
            engine.unlock_period("alice", PERIOD, "hr", "Please")

    def test_unlock_requires_reason(self, engine):
        engine.lock_period(["alice"], PERIOD, "hr")

        with pytest.raises(InvalidStateError):
            engine.unlock_period("alice", PERIOD, "admin", "")

    def test_unlock_draft_rejected(self, engine):
        engine.locks.prepare_period(["alice"], PERIOD, "hr")

        with pytest.raises(InvalidStateError):
            engine.unlock_period("alice", PERIOD, "admin", "Nothing to unlock")

    def test_unlock_missing_record(self, engine):
        with pytest.raises(NotFoundError):
            engine.unlock_period("alice", PERIOD, "admin", "Nothing there")


class TestClearPeriodData:
    """Destructive period clear."""

    def test_clear_deletes_attendance_and_salary(self, engine):
        worked_day(engine)
        engine.bulk_mark_weekoff(["alice", "bob"], [SUNDAY], "hr")
        engine.locks.prepare_period(["alice"], PERIOD, "hr")

        result = engine.clear_period_data("alice", PERIOD, "DELETE", "admin")

        assert (result.attendance_deleted, result.salary_deleted) == (2, 1)
        assert engine.attendance.list_records("alice", PERIOD) == []
        assert engine.locks.get_record("alice", PERIOD) is None
        # Other employees are untouched
        assert len(engine.attendance.list_records("bob", PERIOD)) == 1

        history = engine.audit.history("payroll_period", f"alice:{PERIOD}")
        assert [e.action for e in history] == ["clear_period"]
        assert history[0].metadata_json["attendance_deleted"] == 2

    def test_token_must_match_exactly(self, engine):
        worked_day(engine)

        for token in ("delete", "DELETE ", ""):
            with pytest.raises(ValidationError):
                engine.clear_period_data("alice", PERIOD, token, "admin")
        assert len(engine.attendance.list_records("alice", PERIOD)) == 1

    def test_locked_period_cannot_be_cleared(self, engine):
        worked_day(engine)
        engine.lock_period(["alice"], PERIOD, "hr")

        with pytest.raises(LockedPeriodError):
            engine.clear_period_data("alice", PERIOD, "DELETE", "admin")

    def test_hr_cannot_clear(self, engine):
        with pytest.raises(PermissionDeniedError):
            engine.clear_period_data("alice", PERIOD, "DELETE", "hr")
