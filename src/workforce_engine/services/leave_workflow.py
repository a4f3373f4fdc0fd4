"""Leave approval workflow.

Requests move pending → approved / rejected / cancelled. Every transition:
1. Checks the payroll lock for each period the request touches
2. Validates the transition against LeaveRequestStateMachine
3. Writes exactly one audit entry
4. Recomputes the affected balances through the ledger
5. Emits a domain event (the notification relay listens for these)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workforce_engine.collaborators import Clock, SystemClock
from workforce_engine.events.emitter import EventEmitter
from workforce_engine.events.types import (
    EventMetadata,
    LeaveRequestApproved,
    LeaveRequestCancelled,
    LeaveRequestEvent,
    LeaveRequestRejected,
    LeaveRequestReopened,
    LeaveRequestSubmitted,
)
from workforce_engine.exceptions import (
    ConcurrencyConflict,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from workforce_engine.models import LeaveRequest, LeaveRequestStatus
from workforce_engine.periods import periods_between
from workforce_engine.services.audit_store import AuditVersionStore
from workforce_engine.services.leave_ledger import LeaveBalanceLedger, count_leave_days
from workforce_engine.services.state_machine import LeaveRequestStateMachine

if TYPE_CHECKING:
    from workforce_engine.services.authorization import Authorizer, LockOverride
    from workforce_engine.services.locking_service import SalaryLockManager

logger = logging.getLogger(__name__)

ENTITY_TYPE = "leave_request"


class LeaveApprovalWorkflow:
    """Owns LeaveRequest status transitions."""

    def __init__(
        self,
        db: Session,
        ledger: LeaveBalanceLedger,
        audit: AuditVersionStore,
        locks: SalaryLockManager | None = None,
        authorizer: Authorizer | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.db = db
        self.ledger = ledger
        self.audit = audit
        self.locks = locks
        self.authorizer = authorizer
        self.clock = clock or SystemClock()
        self.emitter = emitter

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> LeaveRequest:
        request = self.db.get(LeaveRequest, request_id)
        if request is None:
            raise NotFoundError(f"Leave request {request_id} not found", request_id=str(request_id))
        return request

    def list_requests(
        self,
        user_id: str | None = None,
        status: str | None = None,
    ) -> list[LeaveRequest]:
        query = select(LeaveRequest)
        if user_id is not None:
            query = query.where(LeaveRequest.user_id == user_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        self.db.flush()
        result = self.db.execute(query.order_by(LeaveRequest.start_date))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        user_id: str,
        leave_type_id: UUID,
        start_date: date,
        end_date: date,
        reason: str | None = None,
        override: LockOverride | None = None,
    ) -> LeaveRequest:
        """Create a pending request, reserving its days in every touched period."""
        if self.authorizer is not None:
            self.authorizer.resolve(user_id)
        leave_type = self.ledger.get_leave_type(leave_type_id)
        total_days = count_leave_days(leave_type, start_date, end_date)
        self._check_overlap(user_id, start_date, end_date)

        request = LeaveRequest(
            user_id=user_id,
            leave_type_id=leave_type_id,
            start_date=start_date,
            end_date=end_date,
            total_days=total_days,
            reason=reason,
            status=LeaveRequestStatus.PENDING.value,
        )
        self._ensure_unlocked(request, override)
        self._check_balance(request)

        self.db.add(request)
        self._flush(request)
        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=request.leave_request_id,
            action="submit",
            actor=user_id,
            after_value=request.snapshot_state(),
        )
        self._recompute(request, user_id)
        logger.info(
            "Leave submitted user=%s type=%s %s..%s days=%s",
            user_id,
            leave_type.code,
            start_date,
            end_date,
            total_days,
        )
        self._emit(LeaveRequestSubmitted, request, user_id)
        return request

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(
        self,
        request_id: UUID,
        reviewer: str,
        comments: str | None = None,
        override: LockOverride | None = None,
    ) -> LeaveRequest:
        """Approve a pending request if every touched period has headroom.

        On InsufficientBalanceError the request stays pending and no balance
        is written.
        """
        request = self.get_request(request_id)
        self._authorize_review(request, reviewer)
        LeaveRequestStateMachine.validate_transition(request.status, LeaveRequestStatus.APPROVED.value)
        self._ensure_unlocked(request, override)
        self._check_balance(request)

        self._review(request, LeaveRequestStatus.APPROVED.value, reviewer, comments, "approve")
        self._emit(LeaveRequestApproved, request, reviewer, reviewer=reviewer)
        return request

    def reject(
        self,
        request_id: UUID,
        reviewer: str,
        comments: str | None = None,
        override: LockOverride | None = None,
    ) -> LeaveRequest:
        request = self.get_request(request_id)
        self._authorize_review(request, reviewer)
        LeaveRequestStateMachine.validate_transition(request.status, LeaveRequestStatus.REJECTED.value)
        self._ensure_unlocked(request, override)

        self._review(request, LeaveRequestStatus.REJECTED.value, reviewer, comments, "reject")
        self._emit(LeaveRequestRejected, request, reviewer, reviewer=reviewer, comments=comments)
        return request

    def cancel(
        self,
        request_id: UUID,
        actor: str,
        override: LockOverride | None = None,
    ) -> LeaveRequest:
        """Cancel a pending request. Requesters cancel their own; HR/admin any."""
        request = self.get_request(request_id)
        if self.authorizer is not None and actor != request.user_id:
            self.authorizer.require(actor, ENTITY_TYPE, "cancel_any")
        LeaveRequestStateMachine.validate_transition(request.status, LeaveRequestStatus.CANCELLED.value)
        self._ensure_unlocked(request, override)

        previous = request.status
        request.status = LeaveRequestStatus.CANCELLED.value
        self._flush(request)
        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=request.leave_request_id,
            action="cancel",
            actor=actor,
            field_changed="status",
            before_value=previous,
            after_value=request.status,
        )
        self._recompute(request, actor)
        logger.info("Leave request %s cancelled by %s", request.leave_request_id, actor)
        self._emit(LeaveRequestCancelled, request, actor)
        return request

    def reopen(
        self,
        request_id: UUID,
        actor: str,
        reason: str,
        override: LockOverride | None = None,
    ) -> LeaveRequest:
        """Create a new pending copy of a rejected or cancelled request.

        The original row is left untouched; the copy references it through
        ``reopened_from_id``.
        """
        original = self.get_request(request_id)
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "reopen")
        if not (reason or "").strip():
            raise ValidationError("Reopen requires a reason", field="reason")
        if not LeaveRequestStateMachine.can_reopen(original.status):
            raise InvalidStateError(
                f"Cannot reopen a {original.status} leave request",
                request_id=str(request_id),
                status=original.status,
            )
        self._check_overlap(original.user_id, original.start_date, original.end_date)

        leave_type = self.ledger.get_leave_type(original.leave_type_id)
        copy = LeaveRequest(
            user_id=original.user_id,
            leave_type_id=original.leave_type_id,
            start_date=original.start_date,
            end_date=original.end_date,
            total_days=count_leave_days(leave_type, original.start_date, original.end_date),
            reason=original.reason,
            status=LeaveRequestStatus.PENDING.value,
            reopened_from_id=original.leave_request_id,
        )
        self._ensure_unlocked(copy, override)
        self._check_balance(copy)

        self.db.add(copy)
        self._flush(copy)
        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=copy.leave_request_id,
            action="reopen",
            actor=actor,
            after_value=copy.snapshot_state(),
            metadata={
                "reopened_from_id": str(original.leave_request_id),
                "original_status": original.status,
                "reason": reason.strip(),
            },
        )
        self._recompute(copy, actor)
        logger.warning(
            "Leave request %s reopened by %s as %s",
            original.leave_request_id,
            actor,
            copy.leave_request_id,
        )
        self._emit(LeaveRequestReopened, copy, actor, reopened_from_id=original.leave_request_id)
        return copy

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _review(
        self,
        request: LeaveRequest,
        status: str,
        reviewer: str,
        comments: str | None,
        action: str,
    ) -> None:
        previous = request.status
        request.status = status
        request.reviewed_by = reviewer
        request.review_comments = comments
        request.reviewed_at = self.clock.now()
        self._flush(request)
        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=request.leave_request_id,
            action=action,
            actor=reviewer,
            field_changed="status",
            before_value=previous,
            after_value=status,
            metadata={"comments": comments} if comments else None,
        )
        self._recompute(request, reviewer)
        logger.info("Leave request %s %s by %s", request.leave_request_id, status, reviewer)

    def _authorize_review(self, request: LeaveRequest, reviewer: str) -> None:
        if self.authorizer is None:
            return
        user = self.authorizer.require(reviewer, ENTITY_TYPE, "approve")
        if reviewer == request.user_id:
            raise PermissionDeniedError(
                "Users may not review their own leave requests",
                actor=reviewer,
                resource=ENTITY_TYPE,
                action="approve",
            )
        if user.role == "manager":
            requester = self.authorizer.directory.get_user(request.user_id)
            if requester is None or requester.manager_id != reviewer:
                raise PermissionDeniedError(
                    f"{reviewer} does not manage {request.user_id}",
                    actor=reviewer,
                    resource=ENTITY_TYPE,
                    action="approve",
                )

    def _check_overlap(self, user_id: str, start_date: date, end_date: date) -> None:
        self.db.flush()
        clash = self.db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status.in_(list(LeaveRequestStateMachine.BALANCE_AFFECTING)),
                LeaveRequest.start_date <= end_date,
                LeaveRequest.end_date >= start_date,
            )
            .limit(1)
        ).scalar_one_or_none()
        if clash is not None:
            raise ValidationError(
                f"Overlaps {clash.status} leave request {clash.leave_request_id}",
                conflicting_request_id=str(clash.leave_request_id),
            )

    def _check_balance(self, request: LeaveRequest) -> None:
        leave_type = self.ledger.get_leave_type(request.leave_type_id)
        for period in periods_between(request.start_date, request.end_date):
            days = count_leave_days(leave_type, request.start_date, request.end_date, period)
            headroom = self.ledger.headroom_for(request, period)
            if headroom < days:
                raise InsufficientBalanceError(days, max(headroom, 0), period)

    def _ensure_unlocked(self, request: LeaveRequest, override: LockOverride | None) -> None:
        if self.locks is None:
            return
        for period in periods_between(request.start_date, request.end_date):
            self.locks.ensure_unlocked(request.user_id, period, override=override)

    def _recompute(self, request: LeaveRequest, actor: str) -> None:
        for period in periods_between(request.start_date, request.end_date):
            self.ledger.recompute_balance(request.user_id, request.leave_type_id, period, actor=actor)

    def _flush(self, request: LeaveRequest) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyConflict(
                f"Leave request {request.leave_request_id} changed concurrently",
                request_id=str(request.leave_request_id),
            ) from e

    def _emit(
        self,
        event_type: type[LeaveRequestEvent],
        request: LeaveRequest,
        actor: str,
        **extra: object,
    ) -> None:
        if self.emitter is None:
            return
        self.emitter.emit(
            event_type(
                metadata=EventMetadata.create(
                    actor_id=actor,
                    source_service="leave",
                    timestamp=self.clock.now(),
                ),
                leave_request_id=request.leave_request_id,
                user_id=request.user_id,
                start_date=request.start_date,
                end_date=request.end_date,
                total_days=request.total_days,
                status=request.status,
                **extra,
            )
        )
