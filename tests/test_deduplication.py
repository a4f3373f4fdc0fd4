"""Tests for imported record deduplication."""

from datetime import datetime

import pytest

from workforce_engine.exceptions import ConcurrencyConflict, PermissionDeniedError, ValidationError
from workforce_engine.models import ImportedRecord
from workforce_engine.services.deduplication import (
    normalize_email,
    normalize_phone,
    plan_deduplication,
)


def record(record_id, external_id=None, email=None, phone=None, day=1):
    return ImportedRecord(
        imported_record_id=record_id,
        external_id=external_id,
        email=email,
        phone=phone,
        created_at=datetime(2024, 3, day, 12, 0),
    )


def rows(*specs):
    return [
        {
            "external_id": ext,
            "email": email,
            "phone": phone,
            "created_at": f"2024-03-{day:02d}T12:00:00",
        }
        for (ext, email, phone, day) in specs
    ]


class TestNormalization:
    """Fingerprint helpers."""

    def test_normalize_email(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_email("") is None
        assert normalize_email(None) is None

    def test_normalize_phone(self):
        assert normalize_phone("+91 98765-43210") == "9876543210"
        assert normalize_phone("(987) 654 3210") == "9876543210"
        assert normalize_phone("n/a") is None
        assert normalize_phone(None) is None


class TestPlanDeduplication:
    """Pure planning over loaded records."""

    def test_latest_record_wins(self):
        plan = plan_deduplication(
            [
                record(1, "L-1", day=1),
                record(2, "L-1", day=3),
                record(3, "L-1", day=2),
                record(4, "L-2", day=1),
            ]
        )

        assert plan.strict == [1, 3]
        assert plan.legacy == []

    def test_created_at_tie_keeps_lowest_id(self):
        plan = plan_deduplication([record(5, "L-1"), record(2, "L-1"), record(9, "L-1")])

        assert plan.strict == [5, 9]

    def test_blank_external_id_is_legacy(self):
        plan = plan_deduplication(
            [
                record(1, "L-1", email="a@example.com"),
                record(2, "  ", email="A@example.com"),
                record(3, None, phone="555 000 1111"),
            ]
        )

        assert plan.strict == []
        assert plan.legacy == [2]

    def test_legacy_match_on_phone(self):
        plan = plan_deduplication(
            [
                record(1, "L-1", phone="+1 (555) 000-1111"),
                record(2, None, phone="5550001111"),
                record(3, None, email="other@example.com"),
            ]
        )

        assert plan.legacy == [2]
        assert plan.total == 1

    def test_legacy_records_do_not_match_each_other(self):
        plan = plan_deduplication(
            [record(1, None, email="a@example.com"), record(2, None, email="a@example.com")]
        )

        assert plan.total == 0


class TestRecordDeduplicator:
    """Deduplication against the database."""

    def test_run_deletes_both_passes(self, engine):
        engine.records.import_records(
            rows(
                ("L-1", "a@example.com", None, 1),
                ("L-1", "a@example.com", None, 4),
                ("L-2", None, "555-000-1111", 2),
                (None, "A@Example.com", None, 3),
                (None, None, "+1 555 000 1111", 3),
                (None, "keep@example.com", None, 3),
            ),
            "admin",
        )

        report = engine.deduplicate_records("admin")

        assert (report.strict_deleted, report.legacy_deleted) == (1, 2)
        assert report.total_deleted == 3
        remaining = engine.records.list_records()
        assert sorted((r.external_id, r.email) for r in remaining if r.external_id) == [
            ("L-1", "a@example.com"),
            ("L-2", None),
        ]
        kept_l1 = next(r for r in remaining if r.external_id == "L-1")
        assert kept_l1.created_at == datetime(2024, 3, 4, 12, 0)
        assert [r.email for r in remaining if r.external_id is None] == ["keep@example.com"]

    def test_run_is_idempotent(self, engine):
        engine.records.import_records(
            rows(("L-1", None, None, 1), ("L-1", None, None, 2)), "admin"
        )
        engine.deduplicate_records("admin")
        audit_count = len(engine.audit.history("imported_record", "dedup:strict"))

        second = engine.deduplicate_records("admin")

        assert second.total_deleted == 0
        assert len(engine.records.list_records()) == 1
        assert len(engine.audit.history("imported_record", "dedup:strict")) == audit_count

    def test_dry_run_deletes_nothing(self, engine):
        imported = engine.records.import_records(
            rows(("L-1", None, None, 1), ("L-1", None, None, 2)), "admin"
        )

        report = engine.deduplicate_records("admin", dry_run=True)

        assert report.dry_run is True
        assert report.strict_ids == [imported[0].imported_record_id]
        assert len(engine.records.list_records()) == 2

    def test_deleted_rows_are_audited(self, engine):
        engine.records.import_records(
            rows(("L-1", "x@example.com", None, 1), ("L-1", None, None, 2)), "admin"
        )

        engine.deduplicate_records("admin")

        (entry,) = engine.audit.history("imported_record", "dedup:strict")
        assert entry.action == "dedup_strict"
        assert entry.metadata_json["deleted_count"] == 1
        assert entry.metadata_json["deleted"][0]["email"] == "x@example.com"

    def test_offsets_are_compared_in_utc(self, engine):
        """10:00+05:00 is 05:00Z, earlier than 09:00Z, so the second row survives."""
        older, newer = engine.records.import_records(
            [
                {"external_id": "L-1", "created_at": "2024-01-01T10:00:00+05:00"},
                {"external_id": "L-1", "created_at": "2024-01-01T09:00:00+00:00"},
            ],
            "admin",
        )
        older_id, newer_id = older.imported_record_id, newer.imported_record_id

        report = engine.deduplicate_records("admin")

        assert report.strict_ids == [older_id]
        (survivor,) = engine.records.list_records()
        assert survivor.imported_record_id == newer_id
        assert survivor.created_at == datetime(2024, 1, 1, 9, 0)

    def test_hr_cannot_deduplicate(self, engine):
        with pytest.raises(PermissionDeniedError):
            engine.deduplicate_records("hr")


class TestImportAndEdit:
    """Importing and editing records."""

    def test_import_starts_at_version_one(self, engine):
        (imported,) = engine.records.import_records([{"external_id": "L-9", "name": "Lead"}], "admin")

        assert imported.row_version == 1
        assert engine.audit.latest_version_number("imported_record", imported.imported_record_id) == 1
        assert [e.action for e in engine.audit.history("imported_record", imported.imported_record_id)] == [
            "import"
        ]

    def test_import_rejects_unknown_fields(self, engine):
        with pytest.raises(ValidationError):
            engine.records.import_records([{"external_id": "L-9", "score": 5}], "admin")

    def test_update_with_stale_version(self, engine):
        (imported,) = engine.records.import_records([{"external_id": "L-9"}], "admin")
        engine.records.update_record(imported.imported_record_id, {"name": "First"}, "hr")

        with pytest.raises(ConcurrencyConflict):
            engine.records.update_record(
                imported.imported_record_id, {"name": "Second"}, "hr", expected_version=1
            )
        assert imported.name == "First"

    def test_update_rejects_non_editable_field(self, engine):
        (imported,) = engine.records.import_records([{"external_id": "L-9"}], "admin")

        with pytest.raises(ValidationError):
            engine.records.update_record(imported.imported_record_id, {"created_at": None}, "hr")
