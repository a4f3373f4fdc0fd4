"""Leave API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from workforce_engine.api.dependencies import ActorId, DbSession, Engine
from workforce_engine.api.schemas import (
    AllocationRequest,
    BulkResultResponse,
    ErrorResponse,
    LeaveBalanceResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
    LeaveTypeCreate,
    LeaveTypeResponse,
    ReopenRequest,
    ReviewRequest,
)

router = APIRouter(prefix="/leave", tags=["leave"])


# ============================================================================
# Leave types and balances
# ============================================================================


@router.post(
    "/types",
    response_model=LeaveTypeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def create_leave_type(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: LeaveTypeCreate,
) -> LeaveTypeResponse:
    engine.authorizer.require(actor, "leave_type", "create")
    leave_type = engine.ledger.create_leave_type(
        payload.code,
        payload.name,
        payload.default_annual_allocation,
        payload.is_half_day,
        payload.carry_forward,
        actor=actor,
    )
    db.commit()
    return LeaveTypeResponse.model_validate(leave_type)


@router.get("/types", response_model=list[LeaveTypeResponse])
def list_leave_types(engine: Engine) -> list[LeaveTypeResponse]:
    return [LeaveTypeResponse.model_validate(t) for t in engine.ledger.list_leave_types()]


@router.post(
    "/allocations",
    response_model=BulkResultResponse,
    responses={403: {"model": ErrorResponse}},
)
def allocate(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: AllocationRequest,
) -> BulkResultResponse:
    results = engine.allocate_leave(
        payload.user_ids,
        payload.leave_type_id,
        payload.period,
        payload.total_allocated,
        actor,
        carried_forward=payload.carried_forward,
    )
    db.commit()
    return BulkResultResponse.from_results(results)


@router.get("/balances/{user_id}", response_model=list[LeaveBalanceResponse])
def list_balances(
    engine: Engine,
    user_id: Annotated[str, Path()],
    period: Annotated[str | None, Query()] = None,
) -> list[LeaveBalanceResponse]:
    balances = engine.ledger.list_balances(user_id, period)
    return [LeaveBalanceResponse.model_validate(b) for b in balances]


# ============================================================================
# Leave requests
# ============================================================================


@router.post(
    "/requests",
    response_model=LeaveRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def submit_leave(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: LeaveRequestCreate,
) -> LeaveRequestResponse:
    """Submit a leave request for the acting user."""
    request = engine.submit_leave(
        actor, payload.leave_type_id, payload.start_date, payload.end_date, payload.reason
    )
    db.commit()
    return LeaveRequestResponse.model_validate(request)


@router.get("/requests", response_model=list[LeaveRequestResponse])
def list_requests(
    engine: Engine,
    user_id: Annotated[str | None, Query()] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[LeaveRequestResponse]:
    requests = engine.leave.list_requests(user_id=user_id, status=status_filter)
    return [LeaveRequestResponse.model_validate(r) for r in requests]


@router.post(
    "/requests/{request_id}/approve",
    response_model=LeaveRequestResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def approve_leave(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    request_id: Annotated[UUID, Path()],
    payload: ReviewRequest | None = None,
) -> LeaveRequestResponse:
    comments = payload.comments if payload else None
    request = engine.approve_leave(request_id, actor, comments)
    db.commit()
    return LeaveRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/reject",
    response_model=LeaveRequestResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def reject_leave(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    request_id: Annotated[UUID, Path()],
    payload: ReviewRequest | None = None,
) -> LeaveRequestResponse:
    comments = payload.comments if payload else None
    request = engine.reject_leave(request_id, actor, comments)
    db.commit()
    return LeaveRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/cancel",
    response_model=LeaveRequestResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def cancel_leave(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    request_id: Annotated[UUID, Path()],
) -> LeaveRequestResponse:
    request = engine.cancel_leave(request_id, actor)
    db.commit()
    return LeaveRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/reopen",
    response_model=LeaveRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def reopen_leave(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    request_id: Annotated[UUID, Path()],
    payload: ReopenRequest,
) -> LeaveRequestResponse:
    """Reopen a rejected or cancelled request as a new pending request."""
    request = engine.reopen_leave(request_id, actor, payload.reason)
    db.commit()
    return LeaveRequestResponse.model_validate(request)
