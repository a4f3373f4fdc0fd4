"""Imported record endpoints."""

from fastapi import APIRouter, status

from workforce_engine.api.dependencies import ActorId, DbSession, Engine
from workforce_engine.api.schemas import (
    DeduplicateRequest,
    DedupReportResponse,
    ErrorResponse,
    ImportedRecordResponse,
    ImportRecordsRequest,
)

router = APIRouter(prefix="/records", tags=["records"])


@router.post(
    "/import",
    response_model=list[ImportedRecordResponse],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
def import_records(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: ImportRecordsRequest,
) -> list[ImportedRecordResponse]:
    engine.authorizer.resolve(actor)
    records = engine.records.import_records(payload.records, actor)
    db.commit()
    return [ImportedRecordResponse.model_validate(r) for r in records]


@router.get("", response_model=list[ImportedRecordResponse])
def list_records(engine: Engine) -> list[ImportedRecordResponse]:
    return [ImportedRecordResponse.model_validate(r) for r in engine.records.list_records()]


@router.post(
    "/deduplicate",
    response_model=DedupReportResponse,
    responses={403: {"model": ErrorResponse}},
)
def deduplicate(
    db: DbSession,
    engine: Engine,
    actor: ActorId,
    payload: DeduplicateRequest,
) -> DedupReportResponse:
    report = engine.deduplicate_records(actor, dry_run=payload.dry_run)
    db.commit()
    return DedupReportResponse.model_validate(report)
