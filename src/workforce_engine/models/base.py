"""Base model class for SQLAlchemy ORM."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        UUID: Uuid(as_uuid=True),
        datetime: DateTime(timezone=True),
    }

    # Bookkeeping columns left out of version snapshots
    __snapshot_exclude__: ClassVar[frozenset[str]] = frozenset(
        {"row_version", "created_at", "updated_at"}
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

    def snapshot_state(self) -> dict[str, Any]:
        """JSON-safe copy of the row, used for version snapshots."""
        return {
            c.name: _to_json(getattr(self, c.key), c)
            for c in self.__table__.columns
            if c.name not in self.__snapshot_exclude__
        }

    def apply_state(self, state: dict[str, Any]) -> None:
        """Restore column values from a snapshot, leaving keys untouched."""
        for column in self.__table__.columns:
            if column.primary_key or column.name in self.__snapshot_exclude__:
                continue
            if column.name not in state:
                continue
            setattr(self, column.key, _from_json(column, state[column.name]))


class TimestampMixin:
    """Mixin for models with created_at timestamp."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def _to_json(value: Any, column: Any = None) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        scale = getattr(getattr(column, "type", None), "scale", None)
        if scale is not None:
            # same text whether the value came from Python or the database
            value = value.quantize(Decimal(1).scaleb(-scale))
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    return value


def _from_json(column: Any, value: Any) -> Any:
    if value is None:
        return None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value)
    if python_type is time:
        return time.fromisoformat(value)
    if python_type is Decimal:
        return Decimal(value)
    if python_type is UUID:
        return UUID(value)
    return value
