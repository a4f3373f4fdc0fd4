"""Attendance API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from workforce_engine.api.dependencies import ActorId, DbSession, Engine
from workforce_engine.api.schemas import (
    AttendanceEditRequest,
    AttendanceResponse,
    BulkMarkRequest,
    BulkResultResponse,
    CheckInRequest,
    CheckOutRequest,
    ErrorResponse,
)

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post(
    "/check-in",
    response_model=AttendanceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
def check_in(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: CheckInRequest,
) -> AttendanceResponse:
    """Check the acting user in for a day."""
    record = engine.check_in(actor, payload.day, payload.timestamp)
    db.commit()
    return AttendanceResponse.model_validate(record)


@router.post(
    "/check-out",
    response_model=AttendanceResponse,
    responses={409: {"model": ErrorResponse}},
)
def check_out(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: CheckOutRequest,
) -> AttendanceResponse:
    """Check the acting user out for a day."""
    record = engine.check_out(actor, payload.day, payload.timestamp)
    db.commit()
    return AttendanceResponse.model_validate(record)


@router.post(
    "/bulk-mark",
    response_model=BulkResultResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def bulk_mark(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: BulkMarkRequest,
) -> BulkResultResponse:
    """Upsert a status (weekoff by default) for every user and date.

    Items fail independently; successful items are committed.
    """
    results = engine.attendance.bulk_mark_status(
        payload.user_ids, payload.dates, payload.status, actor, notes=payload.notes
    )
    db.commit()
    return BulkResultResponse.from_results(results)


@router.patch(
    "/records/{record_id}",
    response_model=AttendanceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def edit_record(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    record_id: Annotated[UUID, Path()],
    payload: AttendanceEditRequest,
) -> AttendanceResponse:
    changes = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    record = engine.attendance.edit_record(
        record_id, changes, actor, expected_version=payload.expected_version
    )
    db.commit()
    return AttendanceResponse.model_validate(record)


@router.get("/summary/{user_id}/{period}")
def attendance_summary(
    engine: Engine,
    user_id: Annotated[str, Path()],
    period: Annotated[str, Path()],
) -> dict:
    return engine.attendance_summary(user_id, period).to_dict()
