"""Forwards leave and payroll events to the notification service."""

from __future__ import annotations

import logging

from workforce_engine.collaborators import NotificationService
from workforce_engine.events.emitter import EventEmitter
from workforce_engine.events.types import (
    LeaveRequestApproved,
    LeaveRequestCancelled,
    LeaveRequestEvent,
    LeaveRequestRejected,
    LeaveRequestReopened,
    PayrollPeriodUnlocked,
)

logger = logging.getLogger(__name__)


class NotificationRelay:
    """Turns domain events into requester notifications.

    Delivery is best-effort: failures are logged as warnings and never reach
    the operation that produced the event.
    """

    def __init__(self, service: NotificationService):
        self.service = service

    def register(self, emitter: EventEmitter) -> None:
        emitter.on(
            [LeaveRequestApproved, LeaveRequestRejected, LeaveRequestCancelled, LeaveRequestReopened],
            self.on_leave_event,
        )
        emitter.on(PayrollPeriodUnlocked, self.on_period_unlocked)

    def on_leave_event(self, event: LeaveRequestEvent) -> None:
        message = (
            f"Your leave request {event.start_date.isoformat()} to "
            f"{event.end_date.isoformat()} is {event.status}"
        )
        if isinstance(event, LeaveRequestRejected) and event.comments:
            message += f": {event.comments}"
        self._send(
            event.user_id,
            f"leave_{event.status}",
            message,
            f"/leave/requests/{event.leave_request_id}",
        )

    def on_period_unlocked(self, event: PayrollPeriodUnlocked) -> None:
        self._send(
            event.employee_id,
            "payroll_unlocked",
            f"Payroll period {event.period} was unlocked: {event.reason}",
            None,
        )

    def _send(self, user_id: str, type: str, message: str, link: str | None) -> None:
        try:
            self.service.notify(user_id, type, message, link)
        except Exception:
            logger.warning("Notification to %s failed (type=%s)", user_id, type, exc_info=True)
