"""Deduplication of externally imported contact records.

Two passes:
1. Strict: records sharing an external id collapse to the newest one.
2. Legacy: records without an external id are dropped when their email or
   phone fingerprint matches a record that has one.

Running it again on a deduplicated set deletes nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workforce_engine.collaborators import Clock, SystemClock
from workforce_engine.events.emitter import EventEmitter
from workforce_engine.events.types import EventMetadata, RecordsDeduplicated
from workforce_engine.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from workforce_engine.models import ImportedRecord
from workforce_engine.services.audit_store import AuditVersionStore
from workforce_engine.services.authorization import Authorizer

logger = logging.getLogger(__name__)

ENTITY_TYPE = "imported_record"

EDITABLE_FIELDS = frozenset({"external_id", "name", "phone", "email", "source"})

_NON_DIGITS = re.compile(r"\D")


def as_naive_utc(value: datetime) -> datetime:
    """Naive UTC time; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_email(email: str | None) -> str | None:
    value = (email or "").strip().lower()
    return value or None


def normalize_phone(phone: str | None) -> str | None:
    """Last ten digits of a phone number, ignoring formatting and country code."""
    digits = _NON_DIGITS.sub("", phone or "")
    return digits[-10:] or None


def _external_id(record: ImportedRecord) -> str | None:
    value = (record.external_id or "").strip()
    return value or None


@dataclass(frozen=True)
class DedupPlan:
    """Record ids each pass would delete."""

    strict: list[int] = field(default_factory=list)
    legacy: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.strict) + len(self.legacy)


@dataclass(frozen=True)
class DedupReport:
    """Outcome of a deduplication run."""

    strict_deleted: int
    legacy_deleted: int
    dry_run: bool
    strict_ids: list[int] = field(default_factory=list)
    legacy_ids: list[int] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return self.strict_deleted + self.legacy_deleted


def plan_deduplication(records: Sequence[ImportedRecord]) -> DedupPlan:
    """Decide which records to delete. Pure; works on any loaded records."""
    by_external_id: dict[str, list[ImportedRecord]] = {}
    for record in records:
        ext_id = _external_id(record)
        if ext_id is not None:
            by_external_id.setdefault(ext_id, []).append(record)

    strict: list[int] = []
    for group in by_external_id.values():
        if len(group) < 2:
            continue
        # Latest created_at wins; ties keep the lowest id
        keeper = max(group, key=lambda r: (r.created_at, -r.imported_record_id))
        strict.extend(r.imported_record_id for r in group if r is not keeper)

    removed = set(strict)
    survivors = [r for r in records if r.imported_record_id not in removed]

    emails: set[str] = set()
    phones: set[str] = set()
    for record in survivors:
        if _external_id(record) is None:
            continue
        if (email := normalize_email(record.email)) is not None:
            emails.add(email)
        if (phone := normalize_phone(record.phone)) is not None:
            phones.add(phone)

    legacy = [
        r.imported_record_id
        for r in survivors
        if _external_id(r) is None
        and (normalize_email(r.email) in emails or normalize_phone(r.phone) in phones)
    ]
    return DedupPlan(strict=sorted(strict), legacy=sorted(legacy))


class RecordDeduplicator:
    """Imports, edits and deduplicates ImportedRecord rows."""

    def __init__(
        self,
        db: Session,
        audit: AuditVersionStore,
        authorizer: Authorizer | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.db = db
        self.audit = audit
        self.authorizer = authorizer
        self.clock = clock or SystemClock()
        self.emitter = emitter

    def list_records(self) -> list[ImportedRecord]:
        self.db.flush()
        result = self.db.execute(select(ImportedRecord).order_by(ImportedRecord.imported_record_id))
        return list(result.scalars().all())

    def get_record(self, record_id: int) -> ImportedRecord:
        record = self.db.get(ImportedRecord, record_id)
        if record is None:
            raise NotFoundError(f"Imported record {record_id} not found", record_id=record_id)
        return record

    def import_records(self, rows: Iterable[dict[str, Any]], actor: str) -> list[ImportedRecord]:
        """Insert raw rows as records, each starting at version 1."""
        records = []
        for row in rows:
            unknown = set(row) - EDITABLE_FIELDS - {"created_at"}
            if unknown:
                raise ValidationError(
                    f"Unknown fields: {', '.join(sorted(unknown))}",
                    fields=sorted(unknown),
                )
            created_at = row.get("created_at") or self.clock.now()
            if isinstance(created_at, str):
                created_at = datetime.fromisoformat(created_at)
            record = ImportedRecord(
                external_id=row.get("external_id"),
                name=row.get("name"),
                phone=row.get("phone"),
                email=row.get("email"),
                source=row.get("source"),
                created_at=as_naive_utc(created_at),
            )
            self.db.add(record)
            records.append(record)

        self.db.flush()
        for record in records:
            self.audit.append(
                entity_type=ENTITY_TYPE,
                entity_id=record.imported_record_id,
                action="import",
                actor=actor,
                after_value=record.snapshot_state(),
            )
            self.audit.snapshot(ENTITY_TYPE, record.imported_record_id, record.snapshot_state(), actor)
        logger.info("Imported %d record(s) by %s", len(records), actor)
        return records

    def update_record(
        self,
        record_id: int,
        changes: dict[str, Any],
        actor: str,
        expected_version: int | None = None,
    ) -> ImportedRecord:
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "edit")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields not editable: {', '.join(sorted(unknown))}",
                fields=sorted(unknown),
            )
        record = self.get_record(record_id)
        if expected_version is not None and record.row_version != expected_version:
            raise ConcurrencyConflict(
                f"Imported record {record_id} is at version {record.row_version}, not {expected_version}",
                record_id=record_id,
                expected_version=expected_version,
                actual_version=record.row_version,
            )

        before = record.snapshot_state()
        for name, value in changes.items():
            setattr(record, name, value)
        self._flush(record_id)
        after = record.snapshot_state()
        self.audit.log_changes(
            entity_type=ENTITY_TYPE,
            entity_id=record_id,
            action="edit",
            actor=actor,
            before=before,
            after=after,
        )
        self.audit.snapshot(ENTITY_TYPE, record_id, after, actor)
        return record

    def run(self, actor: str, dry_run: bool = False) -> DedupReport:
        """Run both passes; with ``dry_run`` only report what would go."""
        if self.authorizer is not None:
            self.authorizer.require(actor, ENTITY_TYPE, "deduplicate")

        records = self.list_records()
        plan = plan_deduplication(records)
        logger.info(
            "Dedup over %d record(s): %d strict, %d legacy duplicate(s)%s",
            len(records),
            len(plan.strict),
            len(plan.legacy),
            " (dry run)" if dry_run else "",
        )

        if not dry_run:
            by_id = {r.imported_record_id: r for r in records}
            self._delete_pass("strict", [by_id[i] for i in plan.strict], actor)
            self._delete_pass("legacy", [by_id[i] for i in plan.legacy], actor)

        report = DedupReport(
            strict_deleted=len(plan.strict),
            legacy_deleted=len(plan.legacy),
            dry_run=dry_run,
            strict_ids=plan.strict,
            legacy_ids=plan.legacy,
        )
        if self.emitter is not None and plan.total:
            self.emitter.emit(
                RecordsDeduplicated(
                    metadata=EventMetadata.create(
                        actor_id=actor,
                        source_service="records",
                        timestamp=self.clock.now(),
                    ),
                    strict_deleted=report.strict_deleted,
                    legacy_deleted=report.legacy_deleted,
                    dry_run=dry_run,
                )
            )
        return report

    def _delete_pass(self, name: str, doomed: list[ImportedRecord], actor: str) -> None:
        if not doomed:
            return
        deleted = []
        for record in doomed:
            logger.info(
                "Deleting %s duplicate %s (external_id=%s, email=%s)",
                name,
                record.imported_record_id,
                record.external_id,
                record.email,
            )
            deleted.append(record.snapshot_state())
            self.db.delete(record)
        self._flush(None)
        logger.info("Deleted %d %s duplicate(s)", len(doomed), name)
        self.audit.append(
            entity_type=ENTITY_TYPE,
            entity_id=f"dedup:{name}",
            action=f"dedup_{name}",
            actor=actor,
            metadata={"deleted_count": len(deleted), "deleted": deleted},
        )

    def _flush(self, record_id: int | None) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyConflict(
                "Imported record changed concurrently",
                record_id=record_id,
            ) from e
