"""Event emitter for publishing domain events.

The emitter provides:
- Handler registration with type filtering
- Error isolation (handler failures don't break other handlers or the caller)
- Event batching, used by callers to hold events until their commit succeeds
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from workforce_engine.events.types import DomainEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: Callable[[DomainEvent], None]
    event_types: set[str] | None  # None = all events


def log_event(event: DomainEvent) -> None:
    """Write every dispatched event to the debug log."""
    logger.debug(
        "event %s category=%s actor=%s id=%s",
        event.event_type,
        event.category.value,
        event.metadata.actor_id,
        event.metadata.event_id,
    )


class EventEmitter:
    """Synchronous, best-effort event emitter.

    Usage:
        emitter = EventEmitter()
        emitter.on(LeaveRequestApproved, notify_requester)
        emitter.on_all(log_event)

        with emitter.batch():
            approve(...)
            session.commit()
        # Held events are dispatched only when the block exits without error
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []
        self._batching = False
        self._batch: list[DomainEvent] = []

    def on(
        self,
        event_type: type[T] | list[type[T]],
        handler: Callable[[Any], None],
    ) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}

        self._handlers.append(HandlerRegistration(handler=handler, event_types=types))

    def on_all(self, handler: Callable[[Any], None]) -> None:
        """Register handler for all events."""
        self._handlers.append(HandlerRegistration(handler=handler, event_types=None))

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Inside a batch the event is held and an empty list returned.
        Otherwise returns any exceptions raised by handlers.
        """
        if self._batching:
            self._batch.append(event)
            return []

        return self._dispatch(event)

    def _dispatch(self, event: DomainEvent) -> list[Exception]:
        errors: list[Exception] = []
        event_type = event.event_type

        for reg in self._handlers:
            if reg.event_types and event_type not in reg.event_types:
                continue

            try:
                reg.handler(event)
            except Exception as e:
                logger.warning(
                    "Handler %s failed for event %s",
                    reg.handler,
                    event_type,
                    exc_info=True,
                )
                errors.append(e)

        return errors

    def batch(self) -> EventBatch:
        """Create a batch context that holds events until it exits cleanly."""
        return EventBatch(self)

    def _start_batch(self) -> None:
        self._batching = True
        self._batch = []

    def _discard_batch(self) -> int:
        dropped = len(self._batch)
        self._batching = False
        self._batch = []
        return dropped

    def _end_batch(self) -> None:
        self._batching = False
        events = self._batch
        self._batch = []
        for event in events:
            self._dispatch(event)


class EventBatch:
    """Context manager for batching events."""

    def __init__(self, emitter: EventEmitter) -> None:
        self._emitter = emitter

    def __enter__(self) -> EventBatch:
        self._emitter._start_batch()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self._emitter._end_batch()
            return
        dropped = self._emitter._discard_batch()
        if dropped:
            logger.info("Discarded %d event(s) after %s", dropped, exc_type.__name__)
