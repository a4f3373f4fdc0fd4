"""Per-item results for bulk operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workforce_engine.exceptions import ConcurrencyConflict, ValidationError, WorkforceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one item in a bulk operation.

    ``outcome`` is an operation-specific verb (created, updated, unchanged,
    locked, already_locked, skipped_locked) or ``failed``; failures carry the
    error's ``to_dict()`` payload.
    """

    key: dict[str, Any]
    outcome: str
    entity_id: str | None = None
    error: dict[str, Any] | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome != "failed"

    @property
    def error_code(self) -> str | None:
        return self.error["code"] if self.error else None


def run_item(
    db: Session,
    key: dict[str, Any],
    operation: Callable[[], ItemResult],
) -> ItemResult:
    """Run one bulk item inside its own SAVEPOINT.

    Engine errors and write conflicts roll back only this item and come back
    as a failed result; anything else propagates.
    """
    try:
        with db.begin_nested():
            return operation()
    except WorkforceError as e:
        error = e
    except StaleDataError:
        error = ConcurrencyConflict("Row changed by another writer", **_str_values(key))
    except IntegrityError as e:
        error = ValidationError(f"Constraint violated: {e.orig}", **_str_values(key))

    logger.info("Bulk item %s failed: %s", key, error.message)
    return ItemResult(key=key, outcome="failed", error=error.to_dict())


def _str_values(key: dict[str, Any]) -> dict[str, str]:
    return {k: str(v) for k, v in key.items()}
