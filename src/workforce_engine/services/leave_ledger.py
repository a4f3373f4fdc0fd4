"""Leave balance ledger.

Balances are never patched incrementally. Every write path calls
recompute_balance, which rebuilds used/pending from the authoritative set of
leave requests overlapping the period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workforce_engine.exceptions import NotFoundError, ValidationError
from workforce_engine.models import LeaveBalance, LeaveRequest, LeaveRequestStatus, LeaveType
from workforce_engine.periods import iter_days, overlap_days, parse_period, period_bounds
from workforce_engine.services.results import ItemResult, run_item

if TYPE_CHECKING:
    from workforce_engine.services.audit_store import AuditVersionStore
    from workforce_engine.services.authorization import LockOverride
    from workforce_engine.services.locking_service import SalaryLockManager

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
FULL_DAY = Decimal("1")
HALF_DAY = Decimal("0.5")
CENT = Decimal("0.01")
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class LeaveTally:
    """Approved and pending days for one (user, leave type, period)."""

    used: Decimal
    pending: Decimal


def day_unit(leave_type: LeaveType) -> Decimal:
    """Days contributed by one calendar day of leave."""
    return HALF_DAY if leave_type.is_half_day else FULL_DAY


def monthly_allocation(leave_type: LeaveType) -> Decimal:
    """Default allocation seeded into one monthly balance.

    The annual allocation is spread over twelve periods and rounded down to
    the cent, so a year of defaults never exceeds the annual quota.
    """
    annual = Decimal(leave_type.default_annual_allocation)
    return (annual / MONTHS_PER_YEAR).quantize(CENT, rounding=ROUND_DOWN)


def count_leave_days(
    leave_type: LeaveType,
    start_date: date,
    end_date: date,
    period: str | None = None,
) -> Decimal:
    """Count leave days in [start_date, end_date], optionally within a period.

    One unit per calendar day, both endpoints inclusive; half-day types count
    0.5 per day.
    """
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date", field="end_date")
    if period is None:
        days = sum(1 for _ in iter_days(start_date, end_date))
    else:
        days = overlap_days(start_date, end_date, period)
    return day_unit(leave_type) * days


class LeaveBalanceLedger:
    """Sole writer of LeaveBalance rows."""

    def __init__(
        self,
        db: Session,
        audit: AuditVersionStore | None = None,
        locks: SalaryLockManager | None = None,
    ):
        self.db = db
        self.audit = audit
        self.locks = locks

    # ------------------------------------------------------------------
    # Leave types
    # ------------------------------------------------------------------

    def get_leave_type(self, leave_type_id: UUID) -> LeaveType:
        leave_type = self.db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundError(f"Leave type {leave_type_id} not found", leave_type_id=str(leave_type_id))
        return leave_type

    def find_leave_type(self, code: str) -> LeaveType | None:
        return self.db.execute(
            select(LeaveType).where(LeaveType.code == code)
        ).scalar_one_or_none()

    def list_leave_types(self) -> list[LeaveType]:
        result = self.db.execute(select(LeaveType).order_by(LeaveType.code))
        return list(result.scalars().all())

    def create_leave_type(
        self,
        code: str,
        name: str,
        default_annual_allocation: Decimal | int = 0,
        is_half_day: bool = False,
        carry_forward: bool = False,
        actor: str = "system",
    ) -> LeaveType:
        """Create a leave type; a duplicate code is a ValidationError."""
        code = (code or "").strip()
        if not code or not (name or "").strip():
            raise ValidationError("Leave type code and name are required", field="code")
        allocation = Decimal(default_annual_allocation)
        if allocation < 0:
            raise ValidationError(
                "default_annual_allocation must not be negative",
                field="default_annual_allocation",
            )
        self.db.flush()
        if self.find_leave_type(code) is not None:
            raise ValidationError(f"Leave type {code!r} already exists", field="code", code_value=code)

        leave_type = LeaveType(
            code=code,
            name=name.strip(),
            default_annual_allocation=allocation,
            is_half_day=is_half_day,
            carry_forward=carry_forward,
        )
        self.db.add(leave_type)
        self.db.flush()
        if self.audit is not None:
            self.audit.append(
                entity_type="leave_type",
                entity_id=leave_type.leave_type_id,
                action="create",
                actor=actor,
                after_value=leave_type.snapshot_state(),
            )
        return leave_type

    def get_or_create_leave_type(
        self,
        code: str,
        name: str,
        default_annual_allocation: Decimal | int = 0,
        is_half_day: bool = False,
        carry_forward: bool = False,
        actor: str = "system",
    ) -> LeaveType:
        """Return the leave type with this code, creating it if missing."""
        self.db.flush()
        existing = self.find_leave_type((code or "").strip())
        if existing is not None:
            return existing
        return self.create_leave_type(
            code, name, default_annual_allocation, is_half_day, carry_forward, actor
        )

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str, leave_type_id: UUID, period: str) -> LeaveBalance | None:
        parse_period(period)
        return self.db.execute(
            select(LeaveBalance).where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.period == period,
            )
        ).scalar_one_or_none()

    def list_balances(self, user_id: str, period: str | None = None) -> list[LeaveBalance]:
        query = select(LeaveBalance).where(LeaveBalance.user_id == user_id)
        if period is not None:
            query = query.where(LeaveBalance.period == period)
        result = self.db.execute(query.order_by(LeaveBalance.period))
        return list(result.scalars().all())

    def _get_or_create_balance(self, user_id: str, leave_type: LeaveType, period: str) -> LeaveBalance:
        balance = self.get_balance(user_id, leave_type.leave_type_id, period)
        if balance is None:
            balance = LeaveBalance(
                user_id=user_id,
                leave_type_id=leave_type.leave_type_id,
                period=period,
                total_allocated=monthly_allocation(leave_type),
                used=ZERO,
                pending=ZERO,
                carried_forward=ZERO,
            )
            self.db.add(balance)
            self.db.flush()
        return balance

    def tally(
        self,
        user_id: str,
        leave_type_id: UUID,
        period: str,
        exclude_request_id: UUID | None = None,
    ) -> LeaveTally:
        """Sum approved and pending days overlapping the period."""
        leave_type = self.get_leave_type(leave_type_id)
        period_start, period_end = period_bounds(period)
        self.db.flush()
        query = select(LeaveRequest).where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.leave_type_id == leave_type_id,
            LeaveRequest.status.in_(
                [LeaveRequestStatus.APPROVED.value, LeaveRequestStatus.PENDING.value]
            ),
            LeaveRequest.start_date <= period_end,
            LeaveRequest.end_date >= period_start,
        )
        if exclude_request_id is not None:
            query = query.where(LeaveRequest.leave_request_id != exclude_request_id)

        used = ZERO
        pending = ZERO
        for request in self.db.execute(query).scalars():
            days = count_leave_days(leave_type, request.start_date, request.end_date, period)
            if request.status == LeaveRequestStatus.APPROVED.value:
                used += days
            else:
                pending += days
        return LeaveTally(used=used, pending=pending)

    def recompute_balance(
        self,
        user_id: str,
        leave_type_id: UUID,
        period: str,
        actor: str = "system",
    ) -> LeaveBalance:
        """Rebuild used/pending for one balance from its leave requests."""
        leave_type = self.get_leave_type(leave_type_id)
        balance = self._get_or_create_balance(user_id, leave_type, period)
        tally = self.tally(user_id, leave_type_id, period)

        before = balance.snapshot_state()
        balance.used = tally.used
        balance.pending = tally.pending
        self.db.flush()

        if self.audit is not None:
            self.audit.log_changes(
                entity_type="leave_balance",
                entity_id=balance.leave_balance_id,
                action="recompute",
                actor=actor,
                before=before,
                after=balance.snapshot_state(),
            )
        logger.debug(
            "Recomputed balance user=%s type=%s period=%s used=%s pending=%s",
            user_id,
            leave_type.code,
            period,
            tally.used,
            tally.pending,
        )
        return balance

    def available_days(self, user_id: str, leave_type_id: UUID, period: str) -> Decimal:
        """Available days, clamped at zero."""
        leave_type = self.get_leave_type(leave_type_id)
        balance = self.get_balance(user_id, leave_type_id, period)
        if balance is not None:
            return balance.available
        return max(ZERO, monthly_allocation(leave_type))

    def headroom_for(self, request: LeaveRequest, period: str) -> Decimal:
        """Days this request may take in the period without breaking the balance.

        Counts every other approved or pending request against the allocation
        but not the request itself, so it can be compared to the request's
        own days. Reads only; the stored balance is untouched.
        """
        leave_type = self.get_leave_type(request.leave_type_id)
        balance = self.get_balance(request.user_id, request.leave_type_id, period)
        if balance is None:
            allocated = monthly_allocation(leave_type)
            carried = ZERO
        else:
            allocated = Decimal(balance.total_allocated)
            carried = Decimal(balance.carried_forward)
        others = self.tally(
            request.user_id,
            request.leave_type_id,
            period,
            exclude_request_id=request.leave_request_id,
        )
        return allocated + carried - others.used - others.pending

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(
        self,
        user_ids: Iterable[str],
        leave_type_id: UUID,
        period: str,
        total_allocated: Decimal | int,
        actor: str,
        carried_forward: Decimal | int | None = None,
        override: LockOverride | None = None,
    ) -> list[ItemResult]:
        """Assign an allocation to many users, one savepoint per user."""
        parse_period(period)
        leave_type = self.get_leave_type(leave_type_id)
        allocation = Decimal(total_allocated)
        if allocation < 0:
            raise ValidationError("total_allocated must not be negative", field="total_allocated")
        carried = None if carried_forward is None else Decimal(carried_forward)
        if carried is not None and carried < 0:
            raise ValidationError("carried_forward must not be negative", field="carried_forward")

        results = []
        for user_id in user_ids:
            key = {"user_id": user_id, "period": period}
            results.append(
                run_item(
                    self.db,
                    key,
                    lambda user_id=user_id, key=key: self._allocate_one(
                        user_id, leave_type, period, allocation, carried, actor, override, key
                    ),
                )
            )
        logger.info(
            "Allocated %s %s for %s: %d ok, %d failed",
            allocation,
            leave_type.code,
            period,
            sum(1 for r in results if r.ok),
            sum(1 for r in results if not r.ok),
        )
        return results

    def _allocate_one(
        self,
        user_id: str,
        leave_type: LeaveType,
        period: str,
        allocation: Decimal,
        carried: Decimal | None,
        actor: str,
        override: LockOverride | None,
        key: dict,
    ) -> ItemResult:
        if self.locks is not None:
            self.locks.ensure_unlocked(user_id, period, override=override)

        existing = self.get_balance(user_id, leave_type.leave_type_id, period)
        balance = self._get_or_create_balance(user_id, leave_type, period)
        tally = self.tally(user_id, leave_type.leave_type_id, period)
        new_carried = Decimal(balance.carried_forward) if carried is None else carried
        if allocation + new_carried < tally.used + tally.pending:
            raise ValidationError(
                f"Allocation {allocation + new_carried} is below committed days "
                f"{tally.used + tally.pending}",
                user_id=user_id,
                period=period,
            )

        before = balance.snapshot_state()
        balance.total_allocated = allocation
        balance.carried_forward = new_carried
        balance.used = tally.used
        balance.pending = tally.pending
        self.db.flush()
        after = balance.snapshot_state()

        if self.audit is not None:
            self.audit.log_changes(
                entity_type="leave_balance",
                entity_id=balance.leave_balance_id,
                action="allocate",
                actor=actor,
                before=before,
                after=after,
            )
        if existing is None:
            outcome = "created"
        elif before == after:
            outcome = "unchanged"
        else:
            outcome = "updated"
        return ItemResult(
            key=key,
            outcome=outcome,
            entity_id=str(balance.leave_balance_id),
            details={"available": str(balance.available)},
        )

    def carry_forward(
        self,
        user_id: str,
        leave_type_id: UUID,
        from_period: str,
        to_period: str,
        actor: str,
    ) -> LeaveBalance:
        """Move the unused days of one period into the next period's balance."""
        leave_type = self.get_leave_type(leave_type_id)
        if not leave_type.carry_forward:
            raise ValidationError(
                f"Leave type {leave_type.code!r} does not carry forward",
                leave_type_id=str(leave_type_id),
            )
        if parse_period(to_period) <= parse_period(from_period):
            raise ValidationError("to_period must be after from_period", field="to_period")
        if self.locks is not None:
            self.locks.ensure_unlocked(user_id, to_period)

        source = self.recompute_balance(user_id, leave_type_id, from_period, actor=actor)
        target = self._get_or_create_balance(user_id, leave_type, to_period)
        before = target.snapshot_state()
        target.carried_forward = source.available
        self.db.flush()
        target = self.recompute_balance(user_id, leave_type_id, to_period, actor=actor)

        if self.audit is not None:
            self.audit.log_changes(
                entity_type="leave_balance",
                entity_id=target.leave_balance_id,
                action="carry_forward",
                actor=actor,
                before=before,
                after=target.snapshot_state(),
                metadata={"from_period": from_period},
            )
        return target
