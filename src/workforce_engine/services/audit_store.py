"""Audit Version Store - append-only audit log with versioned rollback.

Provides:
- Best-effort audit entries (a failed audit write never undoes the business write)
- Per-entity version snapshots with strictly increasing version numbers
- Rollback that restores an old snapshot as a *new* version
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workforce_engine.collaborators import Clock, SystemClock
from workforce_engine.events.emitter import EventEmitter
from workforce_engine.events.types import EntityRolledBack, EventMetadata
from workforce_engine.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from workforce_engine.logging_config import AUDIT_ERROR_LOGGER
from workforce_engine.models import AttendanceRecord, AuditLogEntry, Base, ImportedRecord, VersionSnapshot

logger = logging.getLogger(__name__)
audit_error_logger = logging.getLogger(AUDIT_ERROR_LOGGER)


@dataclass(frozen=True)
class RollbackResult:
    """Result of a rollback."""

    entity_type: str
    entity_id: str
    from_version: int
    to_version: int
    new_version: int
    state: dict[str, Any]


class AuditVersionStore:
    """Append-only audit trail and version history.

    Notes:
    - audit_log and version_snapshots rows are never updated or deleted.
    - Each write runs in its own SAVEPOINT; database failures are logged on
      the audit error channel and the caller's transaction carries on.
    """

    # Entities whose current state may be restored from a snapshot
    ROLLBACK_MODELS: dict[str, type[Base]] = {
        "attendance_record": AttendanceRecord,
        "imported_record": ImportedRecord,
    }

    def __init__(
        self,
        db: Session,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.emitter = emitter

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def append(
        self,
        *,
        entity_type: str,
        entity_id: str | UUID | int,
        action: str,
        actor: str,
        field_changed: str | None = None,
        before_value: Any = None,
        after_value: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Append one audit entry.

        Returns the entry, or None if the write failed (already logged).
        """
        entry = AuditLogEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor=actor,
            field_changed=field_changed,
            before_value=_stringify(before_value),
            after_value=_stringify(after_value),
            timestamp=self.clock.now(),
            metadata_json=_jsonable(metadata) if metadata else None,
        )
        return self._write(entry, f"audit {action} on {entity_type}:{entity_id}")

    def log_changes(
        self,
        *,
        entity_type: str,
        entity_id: str | UUID | int,
        action: str,
        actor: str,
        before: dict[str, Any],
        after: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> list[AuditLogEntry]:
        """Append one entry per field whose value changed."""
        entries = []
        for field_name, (old, new) in diff_states(before, after).items():
            entry = self.append(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor=actor,
                field_changed=field_name,
                before_value=old,
                after_value=new,
                metadata=metadata,
            )
            if entry is not None:
                entries.append(entry)
        return entries

    def history(self, entity_type: str, entity_id: str | UUID | int) -> list[AuditLogEntry]:
        """Audit entries for an entity in append order."""
        result = self.db.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == str(entity_id),
            )
            .order_by(AuditLogEntry.audit_log_id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def latest_version_number(self, entity_type: str, entity_id: str | UUID | int) -> int:
        """Highest version number recorded for an entity, 0 if none."""
        value = self.db.execute(
            select(func.max(VersionSnapshot.version_number)).where(
                VersionSnapshot.entity_type == entity_type,
                VersionSnapshot.entity_id == str(entity_id),
            )
        ).scalar()
        return int(value or 0)

    def versions(self, entity_type: str, entity_id: str | UUID | int) -> list[VersionSnapshot]:
        result = self.db.execute(
            select(VersionSnapshot)
            .where(
                VersionSnapshot.entity_type == entity_type,
                VersionSnapshot.entity_id == str(entity_id),
            )
            .order_by(VersionSnapshot.version_number)
        )
        return list(result.scalars().all())

    def get_version(
        self, entity_type: str, entity_id: str | UUID | int, version_number: int
    ) -> VersionSnapshot | None:
        return self.db.execute(
            select(VersionSnapshot).where(
                VersionSnapshot.entity_type == entity_type,
                VersionSnapshot.entity_id == str(entity_id),
                VersionSnapshot.version_number == version_number,
            )
        ).scalar_one_or_none()

    def snapshot(
        self,
        entity_type: str,
        entity_id: str | UUID | int,
        full_state: dict[str, Any],
        changed_by: str,
    ) -> VersionSnapshot | None:
        """Record a new version with ``version_number = max(existing) + 1``.

        A failed write is logged and None returned.
        """
        version = self._next_version(entity_type, entity_id, full_state, changed_by)
        return self._write(version, f"snapshot of {entity_type}:{entity_id}")

    def _next_version(
        self,
        entity_type: str,
        entity_id: str | UUID | int,
        full_state: dict[str, Any],
        changed_by: str,
    ) -> VersionSnapshot:
        self.db.flush()
        previous_number = self.latest_version_number(entity_type, entity_id)
        previous = (
            self.get_version(entity_type, entity_id, previous_number) if previous_number else None
        )
        state = _jsonable(full_state)
        diff = {
            name: {"before": old, "after": new}
            for name, (old, new) in diff_states(previous.full_snapshot if previous else {}, state).items()
        }
        return VersionSnapshot(
            entity_type=entity_type,
            entity_id=str(entity_id),
            version_number=previous_number + 1,
            full_snapshot=state,
            changed_by=changed_by,
            changed_at=self.clock.now(),
            diff=diff,
        )

    def snapshot_entity(
        self, entity_type: str, entity: Base, changed_by: str
    ) -> VersionSnapshot | None:
        """Flush an ORM entity and snapshot its current state."""
        self.db.flush()
        return self.snapshot(entity_type, _primary_key(entity), entity.snapshot_state(), changed_by)

    def current_state(self, entity_type: str, entity_id: str | UUID | int) -> dict[str, Any]:
        """Current live state of a rollbackable entity, in snapshot form."""
        entity = self._load_entity(entity_type, entity_id)
        return entity.snapshot_state()

    def rollback(
        self,
        entity_type: str,
        entity_id: str | UUID | int,
        target_version: int,
        actor: str,
        guard: Callable[[Base], None] | None = None,
    ) -> RollbackResult:
        """Restore an entity to a previous version.

        The restored state is recorded as a new version, so the version
        sequence keeps increasing and no history is removed. ``guard`` is
        called with the entity before and after the state is applied (e.g.
        lock checks) and may raise to abort.
        """
        target = self.get_version(entity_type, entity_id, target_version)
        if target is None:
            raise NotFoundError(
                f"Version {target_version} of {entity_type}:{entity_id} not found",
                entity_type=entity_type,
                entity_id=str(entity_id),
            )
        entity = self._load_entity(entity_type, entity_id)
        from_version = self.latest_version_number(entity_type, entity_id)

        if guard is not None:
            guard(entity)

        try:
            with self.db.begin_nested():
                entity.apply_state(target.full_snapshot)
                if guard is not None:
                    guard(entity)
                self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyConflict(
                f"{entity_type}:{entity_id} changed during rollback",
                entity_type=entity_type,
                entity_id=str(entity_id),
            ) from e

        state = entity.snapshot_state()
        # The restored version is part of the rollback, not best-effort
        new_version = self._next_version(entity_type, entity_id, state, actor)
        with self.db.begin_nested():
            self.db.add(new_version)

        self.append(
            entity_type=entity_type,
            entity_id=entity_id,
            action="rollback",
            actor=actor,
            metadata={
                "from_version": from_version,
                "to_version": target_version,
                "new_version": new_version.version_number,
            },
        )
        logger.info(
            "Rolled back %s:%s from v%s to v%s as v%s",
            entity_type,
            entity_id,
            from_version,
            target_version,
            new_version.version_number,
        )
        if self.emitter is not None:
            self.emitter.emit(
                EntityRolledBack(
                    metadata=EventMetadata.create(actor_id=actor, timestamp=self.clock.now()),
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    from_version=from_version,
                    to_version=target_version,
                    new_version=new_version.version_number,
                )
            )

        return RollbackResult(
            entity_type=entity_type,
            entity_id=str(entity_id),
            from_version=from_version,
            to_version=target_version,
            new_version=new_version.version_number,
            state=state,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_entity(self, entity_type: str, entity_id: str | UUID | int) -> Base:
        model = self.ROLLBACK_MODELS.get(entity_type)
        if model is None:
            raise ValidationError(
                f"Entity type {entity_type!r} does not support rollback",
                entity_type=entity_type,
            )
        entity = self.db.get(model, _coerce_key(model, entity_id))
        if entity is None:
            raise NotFoundError(
                f"{entity_type}:{entity_id} not found",
                entity_type=entity_type,
                entity_id=str(entity_id),
            )
        return entity

    def _write(self, obj: Any, description: str) -> Any:
        # Pending business changes flush here so their errors reach the caller
        self.db.flush()
        try:
            with self.db.begin_nested():
                self.db.add(obj)
        except SQLAlchemyError:
            audit_error_logger.exception("Audit write failed: %s", description)
            return None
        return obj


def diff_states(before: dict[str, Any], after: dict[str, Any]) -> dict[str, tuple[Any, Any]]:
    """Fields whose values differ between two states."""
    changed = {}
    for key in sorted(set(before) | set(after)):
        old, new = before.get(key), after.get(key)
        if old != new:
            changed[key] = (old, new)
    return changed


def _primary_key(entity: Base) -> Any:
    (key,) = entity.__mapper__.primary_key_from_instance(entity)
    return key


def _coerce_key(model: type[Base], entity_id: str | UUID | int) -> Any:
    (column,) = model.__mapper__.primary_key
    python_type = column.type.python_type
    if python_type is UUID and not isinstance(entity_id, UUID):
        try:
            return UUID(str(entity_id))
        except ValueError as e:
            raise ValidationError(f"Invalid id {entity_id!r}", entity_id=str(entity_id)) from e
    if python_type is int and not isinstance(entity_id, int):
        try:
            return int(entity_id)
        except ValueError as e:
            raise ValidationError(f"Invalid id {entity_id!r}", entity_id=str(entity_id)) from e
    return entity_id


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)
