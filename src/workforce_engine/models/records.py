"""Externally imported contact records (lead imports)."""

from __future__ import annotations

import datetime as dt
from typing import ClassVar

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from workforce_engine.models.base import Base


class ImportedRecord(Base):
    """A contact record imported from an external source.

    ``external_id`` is the source's unique id (e.g. an ad-platform lead id);
    legacy rows imported before ids were captured have none.
    """

    __tablename__ = "imported_records"

    # created_at is part of the record's identity for deduplication
    __snapshot_exclude__: ClassVar[frozenset[str]] = frozenset({"row_version"})

    imported_record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}
