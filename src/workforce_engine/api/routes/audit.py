"""Audit history and rollback endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path

from workforce_engine.api.dependencies import ActorId, DbSession, Engine
from workforce_engine.api.schemas import (
    AuditEntryResponse,
    ErrorResponse,
    RollbackRequest,
    RollbackResponse,
    VersionResponse,
)

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/{entity_type}/{entity_id}/history", response_model=list[AuditEntryResponse])
def entity_history(
    engine: Engine,
    entity_type: Annotated[str, Path()],
    entity_id: Annotated[str, Path()],
) -> list[AuditEntryResponse]:
    entries = engine.audit.history(entity_type, entity_id)
    return [AuditEntryResponse.model_validate(e) for e in entries]


@router.get("/{entity_type}/{entity_id}/versions", response_model=list[VersionResponse])
def entity_versions(
    engine: Engine,
    entity_type: Annotated[str, Path()],
    entity_id: Annotated[str, Path()],
) -> list[VersionResponse]:
    versions = engine.audit.versions(entity_type, entity_id)
    return [VersionResponse.model_validate(v) for v in versions]


@router.post(
    "/{entity_type}/{entity_id}/rollback",
    response_model=RollbackResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def rollback_entity(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    entity_type: Annotated[str, Path()],
    entity_id: Annotated[str, Path()],
    payload: RollbackRequest,
) -> RollbackResponse:
    """Restore a previous version; the restored state becomes a new version."""
    result = engine.rollback(entity_type, entity_id, payload.target_version, actor)
    db.commit()
    return RollbackResponse.model_validate(result)
