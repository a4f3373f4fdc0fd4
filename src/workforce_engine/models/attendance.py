"""Attendance record model."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from workforce_engine.models.base import Base, TimestampMixin


class AttendanceStatus(str, Enum):
    """Daily attendance status values."""

    PRESENT = "present"
    ABSENT = "absent"
    HALF_DAY = "half_day"
    LEAVE = "leave"
    WORK_FROM_HOME = "work_from_home"
    WEEKOFF = "weekoff"
    HOLIDAY = "holiday"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


# Statuses an administrator may set directly
ADMIN_MARKABLE_STATUSES = frozenset(
    {
        AttendanceStatus.PRESENT,
        AttendanceStatus.ABSENT,
        AttendanceStatus.HALF_DAY,
        AttendanceStatus.LEAVE,
        AttendanceStatus.WORK_FROM_HOME,
        AttendanceStatus.WEEKOFF,
        AttendanceStatus.HOLIDAY,
    }
)


class AttendanceSource(str, Enum):
    """How an attendance record was produced."""

    SELF = "self"
    ADMIN = "admin"
    BULK = "bulk"


class AttendanceRecord(Base, TimestampMixin):
    """One attendance day for one user."""

    __tablename__ = "attendance_records"

    attendance_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    check_in_time: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    check_out_time: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("0"))
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_early_checkout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default=AttendanceSource.SELF.value)
    marked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="attendance_user_date_unique"),
        CheckConstraint(
            "status IN ('present', 'absent', 'half_day', 'leave', 'work_from_home', "
            "'weekoff', 'holiday', 'checked_in', 'checked_out')",
            name="attendance_status_check",
        ),
        CheckConstraint("total_hours >= 0", name="attendance_hours_check"),
    )

    __mapper_args__ = {"version_id_col": row_version}

    @property
    def period(self) -> str:
        """Payroll period (YYYY-MM) this day belongs to."""
        return self.date.strftime("%Y-%m")
