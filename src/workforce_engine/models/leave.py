"""Leave type, balance, and request models."""

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
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workforce_engine.models.base import Base, TimestampMixin


class LeaveRequestStatus(str, Enum):
    """Leave request status values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class LeaveType(Base, TimestampMixin):
    """Leave type reference data (sick, casual, ...)."""

    __tablename__ = "leave_types"

    leave_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    default_annual_allocation: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=Decimal("0")
    )
    is_half_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    carry_forward: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("default_annual_allocation >= 0", name="leave_type_allocation_check"),
    )


class LeaveBalance(Base):
    """Leave balance for one user, leave type and period.

    Only LeaveBalanceLedger writes used/pending, always by full recompute.
    """

    __tablename__ = "leave_balances"

    leave_balance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_types.leave_type_id", ondelete="RESTRICT"),
        nullable=False,
    )
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    total_allocated: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    used: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    pending: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    carried_forward: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "leave_type_id", "period", name="leave_balance_unique"),
        CheckConstraint("used >= 0 AND pending >= 0", name="leave_balance_nonnegative_check"),
    )

    __mapper_args__ = {"version_id_col": row_version}

    leave_type: Mapped[LeaveType] = relationship()

    @property
    def raw_available(self) -> Decimal:
        """Unclamped available days; negative only if the invariant is broken."""
        return (
            Decimal(self.total_allocated or 0)
            + Decimal(self.carried_forward or 0)
            - Decimal(self.used or 0)
            - Decimal(self.pending or 0)
        )

    @property
    def available(self) -> Decimal:
        """Available days, never negative."""
        return max(Decimal("0"), self.raw_available)


class LeaveRequest(Base, TimestampMixin):
    """A request for leave over an inclusive date range."""

    __tablename__ = "leave_requests"

    leave_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_types.leave_type_id", ondelete="RESTRICT"),
        nullable=False,
    )
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=LeaveRequestStatus.PENDING.value
    )
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    review_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_from_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("leave_requests.leave_request_id"), nullable=True
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="leave_request_status_check",
        ),
        CheckConstraint("end_date >= start_date", name="leave_request_dates_check"),
        CheckConstraint("total_days > 0", name="leave_request_days_check"),
    )

    __mapper_args__ = {"version_id_col": row_version}

    leave_type: Mapped[LeaveType] = relationship()
