"""Batch generation admin API router."""

import logging
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bookgen.db import get_session
from bookgen.schemas.batch import (
    BatchCreateRequest,
    BatchDetail,
    BatchListResponse,
    BatchSummary,
    RegenerateRequest,
    RegenerateResponse,
)
from bookgen.services.intake import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, BatchIntakeService
from bookgen.services.pipeline import get_pipeline
from bookgen.services.queue import Dispatch
from bookgen.services.regeneration import RegenerationService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dispatch() -> Dispatch:
    return get_pipeline().enqueue


def get_intake_service(dispatch: Dispatch = Depends(get_dispatch)) -> BatchIntakeService:
    return BatchIntakeService(dispatch)


def get_regeneration_service(dispatch: Dispatch = Depends(get_dispatch)) -> RegenerationService:
    return RegenerationService(dispatch)


@router.post("", status_code=201)
def create_batch(
    body: BatchCreateRequest,
    db: Session = Depends(get_session),
    svc: BatchIntakeService = Depends(get_intake_service),
) -> dict[str, BatchDetail]:
    batch = svc.create_batch(body, body.owner_id, db)
    return {"batch": BatchDetail.model_validate(batch)}


@router.get("")
def list_batches(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str | None = Query(default=None),
    status: Literal["pending", "processing", "completed", "failed"] | None = Query(default=None),
    db: Session = Depends(get_session),
    svc: BatchIntakeService = Depends(get_intake_service),
) -> BatchListResponse:
    batches, total = svc.list_batches(db, page=page, limit=limit, search=search, status=status)
    return BatchListResponse(
        batches=[BatchSummary.model_validate(b) for b in batches],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{batch_id}")
def get_batch(
    batch_id: uuid.UUID,
    db: Session = Depends(get_session),
    svc: BatchIntakeService = Depends(get_intake_service),
) -> dict[str, BatchDetail]:
    return {"batch": BatchDetail.model_validate(svc.get_batch(batch_id, db))}


@router.delete("/{batch_id}", status_code=204)
def delete_batch(
    batch_id: uuid.UUID,
    db: Session = Depends(get_session),
    svc: BatchIntakeService = Depends(get_intake_service),
) -> None:
    svc.delete_batch(batch_id, db)


@router.post("/{batch_id}/start", status_code=202)
def start_batch(
    batch_id: uuid.UUID,
    db: Session = Depends(get_session),
    svc: BatchIntakeService = Depends(get_intake_service),
) -> dict[str, BatchSummary]:
    """Queue title generation for a batch created without automatic start."""
    batch = svc.start_batch(batch_id, db)
    return {"batch": BatchSummary.model_validate(batch)}


@router.post("/{batch_id}/regenerate", status_code=202)
def regenerate_batch(
    batch_id: uuid.UUID,
    body: RegenerateRequest,
    db: Session = Depends(get_session),
    svc: RegenerationService = Depends(get_regeneration_service),
) -> RegenerateResponse:
    """Re-run the given stages for the batch on the regeneration queue."""
    queued = svc.regenerate(
        batch_id,
        list(body.stages),
        db,
        book_ids=body.book_ids,
        include_completed=body.include_completed,
    )
    logger.info("regeneration requested for batch %s: %s", batch_id, queued)
    return RegenerateResponse(batch_id=batch_id, queued=queued)
