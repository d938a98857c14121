"""Batch job routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Query, Response
from sqlalchemy.orm import Session

from docbench.db.dependencies import get_db
from docbench.models.batch_job import BatchJob
from docbench.schemas.batch import (
    BatchAnalyticsRead,
    BatchJobCreate,
    BatchJobRead,
    BatchStartResult,
    BatchStatusRead,
)
from docbench.schemas.common import ApiResponse
from docbench.schemas.output import DocumentOutputsRead
from docbench.services.background_jobs import run_batch_job
from docbench.services.batches import (
    BatchJobNotFoundError,
    BatchStateError,
    BatchValidationError,
    batch_to_read,
    claim_batch_job,
    create_batch_job,
    delete_batch_job,
    get_batch_analytics,
    get_batch_job,
    get_batch_status,
    list_batch_jobs,
    list_batch_outputs,
)


router = APIRouter(prefix="/batches")


@router.post("", response_model=ApiResponse[BatchJobRead], status_code=201)
def create_batch(
    payload: BatchJobCreate,
    db: Session = Depends(get_db),
) -> ApiResponse[BatchJobRead]:
    """Create a pending batch job."""

    try:
        batch = create_batch_job(db, payload)
    except BatchValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ApiResponse(data=batch_to_read(batch))


@router.get("", response_model=ApiResponse[list[BatchJobRead]])
def get_batches(
    owner: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> ApiResponse[list[BatchJobRead]]:
    """List batch jobs, newest first."""

    return ApiResponse(data=[batch_to_read(batch) for batch in list_batch_jobs(db, owner)])


@router.get("/{batch_job_id}", response_model=ApiResponse[BatchJobRead])
def get_batch(
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BatchJobRead]:
    """Return one batch's configuration."""

    try:
        batch = get_batch_job(db, batch_job_id)
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch job not found") from exc
    return ApiResponse(data=batch_to_read(batch))


@router.post("/{batch_job_id}/start", response_model=ApiResponse[BatchStartResult], status_code=202)
def start_batch(
    background_tasks: BackgroundTasks,
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BatchStartResult]:
    """Claim a pending batch and schedule it for processing."""

    batch = _claim_or_http_error(db, batch_job_id, resume=False)
    background_tasks.add_task(run_batch_job, batch_job_id, lease_token=batch.lease_token)
    return ApiResponse(data=BatchStartResult(batch_job_id=batch.id, status=batch.status, resumed=False))


@router.post("/{batch_job_id}/resume", response_model=ApiResponse[BatchStartResult], status_code=202)
def resume_batch(
    background_tasks: BackgroundTasks,
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BatchStartResult]:
    """Re-run an interrupted batch, skipping (document, model) pairs that already have outputs.

    Refused with 409 while the current job still holds a fresh lease.
    """

    batch = _claim_or_http_error(db, batch_job_id, resume=True)
    background_tasks.add_task(run_batch_job, batch_job_id, lease_token=batch.lease_token)
    return ApiResponse(data=BatchStartResult(batch_job_id=batch.id, status=batch.status, resumed=True))


@router.get("/{batch_job_id}/status", response_model=ApiResponse[BatchStatusRead])
def batch_status(
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BatchStatusRead]:
    """Poll progress counters."""

    try:
        return ApiResponse(data=get_batch_status(db, batch_job_id))
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch job not found") from exc


@router.get("/{batch_job_id}/analytics", response_model=ApiResponse[BatchAnalyticsRead])
def batch_analytics(
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BatchAnalyticsRead]:
    """Return batch analytics and detected patterns."""

    try:
        return ApiResponse(data=get_batch_analytics(db, batch_job_id))
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch job not found") from exc


@router.get("/{batch_job_id}/outputs", response_model=ApiResponse[list[DocumentOutputsRead]])
def batch_outputs(
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[DocumentOutputsRead]]:
    """Return every output of the batch grouped by document."""

    try:
        return ApiResponse(data=list_batch_outputs(db, batch_job_id))
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch job not found") from exc


@router.delete("/{batch_job_id}", status_code=204)
def remove_batch(
    batch_job_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> Response:
    """Delete a batch that is not currently processing."""

    try:
        delete_batch_job(db, batch_job_id)
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch job not found") from exc
    except BatchStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return Response(status_code=204)


def _claim_or_http_error(db: Session, batch_job_id: int, *, resume: bool) -> BatchJob:
    try:
        return claim_batch_job(db, batch_job_id, resume=resume)
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch job not found") from exc
    except BatchStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
