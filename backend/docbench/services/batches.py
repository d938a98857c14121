"""Batch job creation, lifecycle checks and read APIs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from docbench.config import get_settings
from docbench.models.batch_job import BatchJob, BatchStatus
from docbench.models.document import Document
from docbench.models.model_analytics import ModelAnalytics
from docbench.models.output import Output
from docbench.models.run import Run
from docbench.schemas.batch import (
    AttributeFailureRead,
    BatchAnalyticsRead,
    BatchAnalyticsSummary,
    BatchJobCreate,
    BatchJobRead,
    BatchStatusRead,
    DocumentResultRead,
    ModelAnalyticsRead,
    PatternRead,
)
from docbench.schemas.output import DocumentOutputsRead, OutputRead, QualityRead
from docbench.services.analytics import (
    BatchAnalyticsResult,
    ModelAnalyticsResult,
    build_batch_analytics,
    load_output_records,
    model_analytics_from_row,
)
from docbench.services.documents import DocumentNotFoundError, get_documents_in_order
from docbench.services.llm_models import split_model_identifier
from docbench.validation import is_valid_json_schema

logger = logging.getLogger(__name__)


class BatchJobNotFoundError(LookupError):
    """Raised when a batch id does not exist."""


class BatchStateError(RuntimeError):
    """Raised when an operation is not allowed in the batch's current status."""


class BatchValidationError(ValueError):
    """Raised when a batch submission is malformed."""


def create_batch_job(db: Session, payload: BatchJobCreate) -> BatchJob:
    """Validate and store a new pending batch."""

    try:
        get_documents_in_order(db, payload.document_ids)
    except DocumentNotFoundError as exc:
        raise BatchValidationError(str(exc)) from exc
    if len(set(payload.document_ids)) != len(payload.document_ids):
        raise BatchValidationError("Document ids must be unique")

    if not is_valid_json_schema(payload.validation_schema):
        raise BatchValidationError("validation_schema is not a valid draft-07 JSON Schema")

    models: list[str] = []
    for identifier in payload.models:
        try:
            provider, name = split_model_identifier(identifier)
        except ValueError as exc:
            raise BatchValidationError(str(exc)) from exc
        normalized = f"{provider}/{name}"
        if normalized in models:
            raise BatchValidationError(f"Model listed more than once: {normalized}")
        models.append(normalized)

    batch = BatchJob(
        owner=payload.owner,
        name=payload.name,
        system_prompt=payload.system_prompt,
        user_prompt=payload.user_prompt,
        output_format=payload.output_format,
        validation_schema_json=payload.validation_schema,
        models_json=models,
        document_ids_json=list(payload.document_ids),
        total_documents=len(payload.document_ids),
        completed_documents=0,
        successful_runs=0,
        failed_runs=0,
        status=BatchStatus.PENDING.value,
    )
    db.add(batch)
    db.commit()
    db.refresh(batch)
    logger.info(
        "batch.created batch_job_id=%s documents=%d models=%d format=%s",
        batch.id,
        batch.total_documents,
        len(models),
        batch.output_format,
    )
    return batch


def get_batch_job(db: Session, batch_job_id: int) -> BatchJob:
    batch = db.get(BatchJob, batch_job_id)
    if batch is None:
        raise BatchJobNotFoundError(f"Batch job not found: {batch_job_id}")
    return batch


def list_batch_jobs(db: Session, owner: str | None = None) -> list[BatchJob]:
    stmt = select(BatchJob).order_by(BatchJob.created_at.desc(), BatchJob.id.desc())
    if owner:
        stmt = stmt.where(BatchJob.owner == owner)
    return list(db.scalars(stmt).all())


def ensure_startable(db: Session, batch_job_id: int, *, resume: bool = False) -> BatchJob:
    """Check that a batch may be (re)started. A fresh start needs ``pending``, a resume ``processing``."""

    batch = get_batch_job(db, batch_job_id)
    required = BatchStatus.PROCESSING if resume else BatchStatus.PENDING
    if batch.status != required.value:
        action = "resumed" if resume else "started"
        raise BatchStateError(f"Batch {batch_job_id} is {batch.status} and cannot be {action}")
    return batch


def claim_batch_job(
    db: Session,
    batch_job_id: int,
    *,
    resume: bool = False,
    lease_seconds: int | None = None,
) -> BatchJob:
    """Reserve a batch for exactly one orchestrator run and store a fresh lease token.

    The reservation is a single conditional UPDATE, so of two concurrent requests
    only one matches the row. A start needs a ``pending`` batch nobody has claimed
    (or whose claim went stale before its job began). A resume needs a
    ``processing`` batch whose heartbeat is older than the lease, i.e. whose
    worker has stopped writing progress.
    """

    ensure_startable(db, batch_job_id, resume=resume)
    if lease_seconds is None:
        lease_seconds = get_settings().batch_lease_seconds
    now = datetime.now(timezone.utc)
    stale = or_(BatchJob.heartbeat_at.is_(None), BatchJob.heartbeat_at < now - timedelta(seconds=lease_seconds))
    if resume:
        condition = and_(BatchJob.status == BatchStatus.PROCESSING.value, stale)
    else:
        condition = and_(BatchJob.status == BatchStatus.PENDING.value, or_(BatchJob.lease_token.is_(None), stale))

    token = uuid4().hex
    result = db.execute(
        update(BatchJob)
        .where(BatchJob.id == batch_job_id, condition)
        .values(lease_token=token, heartbeat_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise BatchStateError(f"Batch {batch_job_id} is already claimed by a running job")
    db.commit()
    batch = get_batch_job(db, batch_job_id)
    logger.info("batch.claimed batch_job_id=%s resume=%s", batch_job_id, resume)
    return batch


def delete_batch_job(db: Session, batch_job_id: int) -> None:
    """Delete a batch with its runs, outputs and analytics. Refused while processing."""

    batch = get_batch_job(db, batch_job_id)
    if batch.status == BatchStatus.PROCESSING.value:
        raise BatchStateError(f"Batch {batch_job_id} is processing and cannot be deleted")

    run_ids = select(Run.id).where(Run.batch_job_id == batch_job_id)
    db.execute(delete(Output).where(Output.run_id.in_(run_ids)))
    db.execute(delete(Run).where(Run.batch_job_id == batch_job_id))
    db.execute(delete(ModelAnalytics).where(ModelAnalytics.batch_job_id == batch_job_id))
    db.delete(batch)
    db.commit()
    logger.info("batch.deleted batch_job_id=%s", batch_job_id)


def batch_to_read(batch: BatchJob) -> BatchJobRead:
    return BatchJobRead(
        id=batch.id,
        owner=batch.owner,
        name=batch.name,
        system_prompt=batch.system_prompt,
        user_prompt=batch.user_prompt,
        output_format=batch.output_format,
        validation_schema=batch.validation_schema_json or {},
        models=list(batch.models_json or []),
        document_ids=list(batch.document_ids_json or []),
        status=batch.status,
        created_at=batch.created_at,
        updated_at=batch.updated_at,
    )


def get_batch_status(db: Session, batch_job_id: int) -> BatchStatusRead:
    """Latest durable progress counters for a batch."""

    batch = get_batch_job(db, batch_job_id)
    db.refresh(batch)
    return BatchStatusRead(
        batch_job_id=batch.id,
        name=batch.name,
        status=batch.status,
        total_documents=batch.total_documents,
        completed_documents=batch.completed_documents,
        successful_runs=batch.successful_runs,
        failed_runs=batch.failed_runs,
        current_document=batch.current_document,
        error_message=batch.error_message,
        created_at=batch.created_at,
        updated_at=batch.updated_at,
    )


def get_batch_analytics(db: Session, batch_job_id: int) -> BatchAnalyticsRead:
    """Summary, per-model analytics, per-document results, attribute failures and patterns.

    A failure while computing analytics is logged and reported as empty analytics.
    """

    batch = get_batch_job(db, batch_job_id)
    empty_summary = BatchAnalyticsSummary(
        total_documents=batch.total_documents,
        total_runs=0,
        successful_runs=0,
        failed_runs=0,
        success_rate=0.0,
        total_cost=0.0,
        avg_execution_time_ms=0,
    )
    try:
        records, total_documents = load_output_records(db, batch_job_id)
        computed = build_batch_analytics(records, total_documents)
        stored = list(
            db.scalars(
                select(ModelAnalytics)
                .where(ModelAnalytics.batch_job_id == batch_job_id)
                .order_by(ModelAnalytics.model.asc())
            ).all()
        )
        document_results = _document_results(db, batch_job_id)
    except Exception:
        logger.exception("batch.analytics_read_failed batch_job_id=%s", batch_job_id)
        return BatchAnalyticsRead(batch_job_id=batch.id, status=batch.status, summary=empty_summary)

    model_results = [model_analytics_from_row(row) for row in stored] if stored else computed.model_analytics
    passed = sum(1 for record in records if record.validation_passed)
    timings = [record.execution_time_ms for record in records if record.execution_time_ms is not None]
    summary = BatchAnalyticsSummary(
        total_documents=batch.total_documents,
        total_runs=len(records),
        successful_runs=passed,
        failed_runs=len(records) - passed,
        success_rate=round(passed / len(records) * 100, 1) if records else 0.0,
        total_cost=sum((record.cost_in or 0.0) + (record.cost_out or 0.0) for record in records),
        avg_execution_time_ms=round(sum(timings) / len(timings)) if timings else 0,
    )
    return _analytics_read(batch, summary, model_results, computed, document_results)


def list_batch_outputs(db: Session, batch_job_id: int) -> list[DocumentOutputsRead]:
    """Every run of the batch with its per-model outputs, in document order."""

    batch = get_batch_job(db, batch_job_id)
    rows = db.execute(
        select(Run, Document.filename)
        .join(Document, Document.id == Run.document_id)
        .where(Run.batch_job_id == batch.id)
        .order_by(Run.id.asc())
    ).all()
    order = {document_id: index for index, document_id in enumerate(batch.document_ids_json or [])}
    rows = sorted(rows, key=lambda row: order.get(row[0].document_id, len(order)))

    result: list[DocumentOutputsRead] = []
    for run, filename in rows:
        outputs = db.scalars(select(Output).where(Output.run_id == run.id).order_by(Output.id.asc())).all()
        result.append(
            DocumentOutputsRead(
                run_id=run.id,
                document_id=run.document_id,
                filename=filename,
                consensus_analysis=run.consensus_analysis_json,
                outputs=[_output_read(output) for output in outputs],
            )
        )
    return result


def _document_results(db: Session, batch_job_id: int) -> list[DocumentResultRead]:
    rows = db.execute(
        select(Run.id, Run.document_id, Document.filename)
        .join(Document, Document.id == Run.document_id)
        .where(Run.batch_job_id == batch_job_id)
        .order_by(Run.id.asc())
    ).all()
    results: list[DocumentResultRead] = []
    for run_id, document_id, filename in rows:
        outputs = db.execute(
            select(Output.model, Output.validation_passed).where(Output.run_id == run_id).order_by(Output.id.asc())
        ).all()
        passed = [model for model, ok in outputs if ok]
        failed = [model for model, ok in outputs if not ok]
        if passed and not failed:
            status = "all_passed"
        elif passed:
            status = "partial"
        else:
            status = "all_failed"
        results.append(
            DocumentResultRead(
                document_id=document_id,
                filename=filename,
                status=status,
                passed_models=passed,
                failed_models=failed,
            )
        )
    return results


def _analytics_read(
    batch: BatchJob,
    summary: BatchAnalyticsSummary,
    model_results: list[ModelAnalyticsResult],
    computed: BatchAnalyticsResult,
    document_results: list[DocumentResultRead],
) -> BatchAnalyticsRead:
    return BatchAnalyticsRead(
        batch_job_id=batch.id,
        status=batch.status,
        summary=summary,
        model_analytics=[ModelAnalyticsRead(**result.as_dict()) for result in model_results],
        document_results=document_results,
        attribute_failures=[AttributeFailureRead(**failure.as_dict()) for failure in computed.attribute_failures],
        patterns=[PatternRead(**pattern.as_dict()) for pattern in computed.patterns],
    )


def _output_read(output: Output) -> OutputRead:
    read = OutputRead.model_validate(output)
    if output.quality_overall is not None:
        read.quality = QualityRead(
            syntax=output.quality_syntax or 0.0,
            structural=output.quality_structural or 0.0,
            completeness=output.quality_completeness or 0.0,
            content=output.quality_content or 0.0,
            consensus=output.quality_consensus or 0.0,
            overall=output.quality_overall,
            flags=output.quality_flags_json,
            metrics=output.quality_metrics_json,
        )
    return read
