"""Payroll period locking endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path

from workforce_engine.api.dependencies import ActorId, DbSession, Engine
from workforce_engine.api.schemas import (
    ClearPeriodRequest,
    ClearPeriodResponse,
    ErrorResponse,
    ItemResultResponse,
    LockPeriodRequest,
    LockPeriodResponse,
    SalaryRecordResponse,
    UnlockPeriodRequest,
)

router = APIRouter(prefix="/payroll", tags=["payroll"])

PeriodPath = Annotated[str, Path(pattern=r"^\d{4}-\d{2}$")]


@router.post(
    "/periods/{period}/lock",
    response_model=LockPeriodResponse,
    responses={403: {"model": ErrorResponse}},
)
def lock_period(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    period: PeriodPath,
    payload: LockPeriodRequest,
) -> LockPeriodResponse:
    """Lock the period for each employee; failures are reported per employee."""
    result = engine.lock_period(payload.employee_ids, period, actor)
    db.commit()
    return LockPeriodResponse(
        period=result.period,
        locked=result.locked,
        already_locked=result.already_locked,
        failed=result.failed,
        items=[ItemResultResponse.model_validate(r) for r in result.results],
    )


@router.post(
    "/periods/{period}/unlock",
    response_model=SalaryRecordResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def unlock_period(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    period: PeriodPath,
    payload: UnlockPeriodRequest,
) -> SalaryRecordResponse:
    record = engine.unlock_period(payload.employee_id, period, actor, payload.reason)
    db.commit()
    return SalaryRecordResponse.model_validate(record)


@router.post(
    "/periods/{period}/clear",
    response_model=ClearPeriodResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def clear_period(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    period: PeriodPath,
    payload: ClearPeriodRequest,
) -> ClearPeriodResponse:
    """Delete an employee's attendance and salary rows for an unlocked period."""
    result = engine.clear_period_data(
        payload.employee_id, period, payload.confirmation_token, actor
    )
    db.commit()
    return ClearPeriodResponse.model_validate(result)


@router.get("/periods/{period}/employees/{employee_id}")
def period_summary(
    engine: Engine,
    period: PeriodPath,
    employee_id: Annotated[str, Path()],
) -> dict:
    return engine.period_summary(employee_id, period)
