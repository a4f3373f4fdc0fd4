"""Salary record model used for payroll period locking."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
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


class SalaryRecordStatus(str, Enum):
    """Salary record status values."""

    DRAFT = "draft"
    LOCKED = "locked"


class SalaryRecord(Base, TimestampMixin):
    """Per-employee payroll period record; ``locked`` freezes the period."""

    __tablename__ = "salary_records"

    salary_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=SalaryRecordStatus.DRAFT.value
    )
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    locked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unlock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Attendance summary frozen at lock time
    total_working_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    present_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    absent_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    half_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leave_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weekoff_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    holiday_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wfh_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    early_checkout_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    not_marked_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paid_days: Mapped[Decimal] = mapped_column(Numeric(6, 1), nullable=False, default=Decimal("0"))
    total_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("employee_id", "period", name="salary_record_employee_period_unique"),
        CheckConstraint("status IN ('draft', 'locked')", name="salary_record_status_check"),
    )

    __mapper_args__ = {"version_id_col": row_version}
