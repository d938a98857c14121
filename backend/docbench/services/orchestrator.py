"""Batch orchestrator: drives one batch job from ``pending`` to a terminal status.

Documents are processed one at a time and, within a document, models one at a
time. Every model call produces exactly one Output row, committed before the
progress counters are written, so a polling reader always sees counters that
are backed by durable outputs. Counters are held in a ``BatchProgress`` value
and written as absolute numbers, which makes each progress write idempotent
and lets a later write repair an earlier one that failed.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docbench.completion.client import CompletionClient, CompletionResult
from docbench.completion.errors import classify_completion_error
from docbench.config import Settings, get_settings
from docbench.models.batch_job import BatchJob, BatchStatus
from docbench.models.document import Document
from docbench.models.output import Output
from docbench.models.run import Run
from docbench.scoring.quality import calculate_quality, count_nulls
from docbench.services.analytics import BatchAnalyticsResult, generate_batch_analytics, persist_model_analytics
from docbench.services.batches import BatchJobNotFoundError, BatchStateError, BatchValidationError
from docbench.services.consensus_backfill import backfill_run_consensus
from docbench.services.documents import get_documents_in_order
from docbench.services.llm_models import ModelSpec, resolve_model_specs
from docbench.validation import generate_guidance, validate_response

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.PROCESSING, BatchStatus.FAILED}),
    BatchStatus.PROCESSING: frozenset({BatchStatus.PROCESSING, BatchStatus.COMPLETED, BatchStatus.FAILED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
}


@dataclass(slots=True)
class BatchProgress:
    """In-memory progress counters, written to the batch row as absolute values."""

    completed_documents: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    current_document: str | None = None

    def record(self, passed: bool) -> None:
        if passed:
            self.successful_runs += 1
        else:
            self.failed_runs += 1


@dataclass(slots=True)
class BatchRunSummary:
    batch_job_id: int
    status: str
    total_documents: int
    successful_runs: int
    failed_runs: int
    models_attempted: list[str] = field(default_factory=list)
    model_analytics_count: int = 0
    attribute_failure_count: int = 0
    pattern_count: int = 0
    error_message: str | None = None

    @property
    def partial_success(self) -> bool:
        return self.successful_runs > 0 and self.failed_runs > 0

    @property
    def all_failed(self) -> bool:
        return self.successful_runs == 0

    @property
    def status_message(self) -> str:
        if self.status == BatchStatus.FAILED.value:
            return f"Batch failed: {self.error_message or 'unknown error'}"
        if self.all_failed:
            return "All models failed"
        if self.failed_runs > 0:
            return "Completed with errors"
        return "Completed successfully"


def transition_batch(batch: BatchJob, target: BatchStatus) -> None:
    """Move ``batch`` to ``target``, refusing transitions the lifecycle does not allow."""

    current = BatchStatus(batch.status)
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise BatchStateError(f"Batch {batch.id} cannot move from {current.value} to {target.value}")
    batch.status = target.value
    logger.info("batch.transition batch_job_id=%s from=%s to=%s", batch.id, current.value, target.value)


def mark_batch_failed(db: Session, batch_job_id: int, message: str) -> None:
    """Record a fatal, pre-loop failure on a non-terminal batch."""

    batch = db.get(BatchJob, batch_job_id)
    if batch is None:
        raise BatchJobNotFoundError(f"Batch job not found: {batch_job_id}")
    transition_batch(batch, BatchStatus.FAILED)
    batch.error_message = message
    batch.current_document = None
    db.commit()
    logger.error("batch.failed batch_job_id=%s error=%s", batch_job_id, message)


class BatchOrchestrator:
    """Runs every (document, model) pair of a batch and generates its analytics."""

    def __init__(self, db: Session, client: CompletionClient, settings: Settings | None = None) -> None:
        self.db = db
        self.client = client
        self.settings = settings or get_settings()

    def run(self, batch_job_id: int, lease_token: str | None = None) -> BatchRunSummary:
        """Process a ``pending`` batch, or resume a ``processing`` one, to completion.

        With ``lease_token`` (issued by ``claim_batch_job``) the run refuses to start
        unless it holds the batch's lease, and stops before the next document once
        another job has taken the lease over.
        """

        total_started = perf_counter()
        batch = self.db.get(BatchJob, batch_job_id)
        if batch is None:
            raise BatchJobNotFoundError(f"Batch job not found: {batch_job_id}")
        if BatchStatus(batch.status).is_terminal:
            raise BatchStateError(f"Batch {batch_job_id} is already {batch.status}")
        if lease_token is not None and batch.lease_token != lease_token:
            raise BatchStateError(f"Batch {batch_job_id} is claimed by another job")
        resuming = batch.status == BatchStatus.PROCESSING.value

        try:
            documents = get_documents_in_order(self.db, list(batch.document_ids_json or []))
            models = resolve_model_specs(self.db, list(batch.models_json or []))
            if not documents or not models:
                raise BatchValidationError("Batch has no documents or no models")
        except (LookupError, ValueError, SQLAlchemyError) as exc:
            self.db.rollback()
            mark_batch_failed(self.db, batch_job_id, str(exc))
            return self._summary(batch, models=[], analytics=None)

        progress = self._derive_progress(batch, documents, models) if resuming else BatchProgress()
        transition_batch(batch, BatchStatus.PROCESSING)
        batch.error_message = None
        self._apply_progress(batch, progress)
        self.db.commit()
        logger.info(
            "batch.started batch_job_id=%s documents=%d models=%d resumed=%s completed_documents=%d",
            batch_job_id,
            len(documents),
            len(models),
            resuming,
            progress.completed_documents,
        )

        for index, document in enumerate(documents):
            if lease_token is not None and not self._holds_lease(batch_job_id, lease_token):
                logger.warning("batch.lease_lost batch_job_id=%s completed_documents=%d", batch_job_id, index)
                return self._summary(
                    batch,
                    models=[model.identifier for model in models],
                    analytics=None,
                    progress=progress,
                )
            document_id = document.id
            attempted: set[str] = set()
            try:
                self._process_document(batch, document, models, progress, attempted)
            except Exception as exc:
                self.db.rollback()
                logger.exception(
                    "batch.document_failed batch_job_id=%s document_id=%s models_attempted=%d",
                    batch_job_id,
                    document_id,
                    len(attempted),
                )
                self._record_unattempted_models(batch, document, models, progress, attempted, exc)
            progress.completed_documents = max(progress.completed_documents, index + 1)
            self._write_progress(batch_job_id, batch, progress)

        progress.current_document = None
        progress.completed_documents = len(documents)
        transition_batch(batch, BatchStatus.COMPLETED)
        self._write_progress(batch_job_id, batch, progress)

        analytics = self._generate_analytics(batch_job_id)
        summary = self._summary(
            batch,
            models=[model.identifier for model in models],
            analytics=analytics,
            progress=progress,
        )
        logger.info(
            "batch.finished batch_job_id=%s status=%s successful_runs=%d failed_runs=%d message=%s total_ms=%.2f",
            batch_job_id,
            summary.status,
            summary.successful_runs,
            summary.failed_runs,
            summary.status_message,
            (perf_counter() - total_started) * 1000.0,
        )
        return summary

    def _process_document(
        self,
        batch: BatchJob,
        document: Document,
        models: list[ModelSpec],
        progress: BatchProgress,
        attempted: set[str],
    ) -> None:
        progress.current_document = document.filename
        run = self._get_or_create_run(batch, document, models, progress)
        done = set(self.db.scalars(select(Output.model).where(Output.run_id == run.id)).all())
        user_prompt = (
            f"{batch.user_prompt}\n\nDocument text:\n{(document.full_text or '')[: self.settings.document_char_limit]}"
        )

        for model in models:
            if model.identifier in done:
                attempted.add(model.identifier)
                logger.info(
                    "batch.model_skipped batch_job_id=%s document_id=%s model=%s",
                    batch.id,
                    document.id,
                    model.identifier,
                )
                continue
            output = self._execute_model(batch, run.id, document, model, user_prompt)
            attempted.add(model.identifier)
            if self._persist_output(batch.id, output):
                progress.record(output.validation_passed)
            self._write_progress(batch.id, batch, progress)

        self._backfill_consensus(batch.id, run.id)

    def _get_or_create_run(
        self,
        batch: BatchJob,
        document: Document,
        models: list[ModelSpec],
        progress: BatchProgress,
    ) -> Run:
        run = self._find_or_add_run(batch, document, models)
        self._apply_progress(batch, progress)
        self.db.commit()
        return run

    def _find_or_add_run(self, batch: BatchJob, document: Document, models: list[ModelSpec]) -> Run:
        run = self.db.scalar(
            select(Run)
            .where(Run.batch_job_id == batch.id, Run.document_id == document.id)
            .order_by(Run.id.asc())
        )
        if run is None:
            run = Run(
                batch_job_id=batch.id,
                document_id=document.id,
                system_prompt=batch.system_prompt,
                user_prompt=batch.user_prompt,
                prompt_hash=_prompt_hash(batch.system_prompt, batch.user_prompt),
                models_json=[model.identifier for model in models],
            )
            self.db.add(run)
            self.db.flush()
        return run

    def _record_unattempted_models(
        self,
        batch: BatchJob,
        document: Document,
        models: list[ModelSpec],
        progress: BatchProgress,
        attempted: set[str],
        error: Exception,
    ) -> None:
        """Store a failed output for every model a failed document never reached.

        Counters move only once those rows are committed. If they cannot be
        stored either, the pairs stay uncounted and a resume picks them up.
        """

        started = perf_counter()
        try:
            run = self._find_or_add_run(batch, document, models)
            stored = set(self.db.scalars(select(Output.model).where(Output.run_id == run.id)).all())
            outputs = [
                self._failed_output(batch, run.id, document, model, error, started)
                for model in models
                if model.identifier not in attempted and model.identifier not in stored
            ]
            self.db.add_all(outputs)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "batch.document_failure_write_failed batch_job_id=%s document_id=%s",
                batch.id,
                document.id,
            )
            return
        for output in outputs:
            progress.record(output.validation_passed)

    def _execute_model(
        self,
        batch: BatchJob,
        run_id: int,
        document: Document,
        model: ModelSpec,
        user_prompt: str,
    ) -> Output:
        schema: dict[str, Any] = batch.validation_schema_json or {}
        json_mode = model.supports_json_mode and batch.output_format == "json"
        started = perf_counter()
        try:
            result = self.client.complete(model.identifier, batch.system_prompt, user_prompt, json_mode=json_mode)
        except Exception as exc:
            return self._failed_output(batch, run_id, document, model, exc, started)
        elapsed_ms = int((perf_counter() - started) * 1000)

        try:
            return self._evaluated_output(batch, run_id, document, model, schema, result, elapsed_ms)
        except Exception as exc:
            logger.exception(
                "batch.model_evaluation_failed batch_job_id=%s document_id=%s model=%s",
                batch.id,
                document.id,
                model.identifier,
            )
            return self._failed_output(batch, run_id, document, model, exc, started, completion=result)

    def _evaluated_output(
        self,
        batch: BatchJob,
        run_id: int,
        document: Document,
        model: ModelSpec,
        schema: dict[str, Any],
        result: CompletionResult,
        elapsed_ms: int,
    ) -> Output:
        validation = validate_response(result.text, schema, batch.output_format)
        guidance = generate_guidance(validation, schema)
        parsed = validation.parsed_data if validation.json_valid else None
        output = Output(
            run_id=run_id,
            model=model.identifier,
            output_format=batch.output_format,
            raw_response=result.text,
            parsed_json=parsed,
            json_valid=validation.json_valid,
            attributes_valid=validation.attributes_valid,
            formats_valid=validation.formats_valid,
            validation_passed=validation.validation_passed,
            validation_details_json=validation.details(),
            validation_errors_json=[] if validation.validation_passed else validation.error_list(),
            prompt_guidance_json=guidance,
            tokens_in=result.prompt_tokens,
            tokens_out=result.completion_tokens,
            cost_in=result.prompt_tokens * model.price_in,
            cost_out=result.completion_tokens * model.price_out,
            execution_time_ms=elapsed_ms,
            null_count=count_nulls(parsed) if validation.json_valid else 0,
        )
        if validation.json_valid:
            report = calculate_quality(result.text, parsed)
            output.quality_syntax = report.scores.syntax
            output.quality_structural = report.scores.structural
            output.quality_completeness = report.scores.completeness
            output.quality_content = report.scores.content
            output.quality_consensus = report.scores.consensus
            output.quality_overall = report.scores.overall
            output.quality_flags_json = report.flags
            output.quality_metrics_json = report.metrics

        logger.info(
            "batch.model_completed batch_job_id=%s document_id=%s model=%s passed=%s json_valid=%s elapsed_ms=%d",
            batch.id,
            document.id,
            model.identifier,
            validation.validation_passed,
            validation.json_valid,
            elapsed_ms,
        )
        return output

    def _failed_output(
        self,
        batch: BatchJob,
        run_id: int,
        document: Document,
        model: ModelSpec,
        error: Exception,
        started: float,
        completion: CompletionResult | None = None,
    ) -> Output:
        """Failed output for a call that raised, or whose response could not be evaluated."""

        elapsed_ms = int((perf_counter() - started) * 1000)
        message = str(error) or type(error).__name__
        classification = classify_completion_error(error)
        logger.warning(
            "batch.model_failed batch_job_id=%s document_id=%s model=%s category=%s retryable=%s elapsed_ms=%d",
            batch.id,
            document.id,
            model.identifier,
            classification.category,
            classification.is_retryable,
            elapsed_ms,
        )
        output = Output(
            run_id=run_id,
            model=model.identifier,
            output_format=batch.output_format,
            raw_response=completion.text if completion else None,
            parsed_json=None,
            json_valid=False,
            attributes_valid=False,
            formats_valid=False,
            validation_passed=False,
            validation_details_json={
                "json_errors": [message],
                "missing_attributes": [],
                "unexpected_attributes": [],
                "attribute_errors": [],
                "format_errors": [],
                "error_category": classification.category,
                "is_retryable": classification.is_retryable,
            },
            validation_errors_json=[{"message": message, "path": "", "keyword": None}],
            prompt_guidance_json=list(classification.guidance),
            execution_time_ms=elapsed_ms,
            null_count=0,
            error_message=classification.tagged(message),
            error_category=classification.category,
            is_retryable=classification.is_retryable,
        )
        if completion is not None:
            output.tokens_in = completion.prompt_tokens
            output.tokens_out = completion.completion_tokens
            output.cost_in = completion.prompt_tokens * model.price_in
            output.cost_out = completion.completion_tokens * model.price_out
        return output

    def _persist_output(self, batch_job_id: int, output: Output) -> bool:
        """Commit one output. Returns False (after rollback) when the row could not be stored."""

        self.db.add(output)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("batch.output_write_failed batch_job_id=%s model=%s", batch_job_id, output.model)
            return False
        return True

    def _write_progress(self, batch_job_id: int, batch: BatchJob, progress: BatchProgress) -> None:
        self._apply_progress(batch, progress)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "batch.progress_write_failed batch_job_id=%s completed_documents=%d successful_runs=%d failed_runs=%d",
                batch_job_id,
                progress.completed_documents,
                progress.successful_runs,
                progress.failed_runs,
            )

    def _apply_progress(self, batch: BatchJob, progress: BatchProgress) -> None:
        batch.completed_documents = min(progress.completed_documents, batch.total_documents)
        batch.successful_runs = progress.successful_runs
        batch.failed_runs = progress.failed_runs
        batch.current_document = progress.current_document
        batch.heartbeat_at = datetime.now(timezone.utc)

    def _holds_lease(self, batch_job_id: int, lease_token: str) -> bool:
        return self.db.scalar(select(BatchJob.lease_token).where(BatchJob.id == batch_job_id)) == lease_token

    def _backfill_consensus(self, batch_job_id: int, run_id: int) -> None:
        try:
            backfill_run_consensus(self.db, run_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("batch.consensus_failed batch_job_id=%s run_id=%s", batch_job_id, run_id)

    def _generate_analytics(self, batch_job_id: int) -> BatchAnalyticsResult | None:
        started = perf_counter()
        try:
            analytics = generate_batch_analytics(self.db, batch_job_id)
            persist_model_analytics(self.db, batch_job_id, analytics.model_analytics)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "batch.analytics_failed batch_job_id=%s elapsed_ms=%.2f",
                batch_job_id,
                (perf_counter() - started) * 1000.0,
            )
            return None
        return analytics

    def _derive_progress(self, batch: BatchJob, documents: list[Document], models: list[ModelSpec]) -> BatchProgress:
        """Rebuild counters from durable outputs when resuming an interrupted batch."""

        rows = self.db.execute(
            select(Run.document_id, Output.model, Output.validation_passed)
            .join(Output, Output.run_id == Run.id)
            .where(Run.batch_job_id == batch.id)
        ).all()
        progress = BatchProgress()
        done_by_document: dict[int, set[str]] = {}
        for document_id, model, passed in rows:
            progress.record(bool(passed))
            done_by_document.setdefault(document_id, set()).add(model)

        expected = {model.identifier for model in models}
        for document in documents:
            if not expected <= done_by_document.get(document.id, set()):
                break
            progress.completed_documents += 1
        return progress

    def _summary(
        self,
        batch: BatchJob,
        *,
        models: list[str],
        analytics: BatchAnalyticsResult | None,
        progress: BatchProgress | None = None,
    ) -> BatchRunSummary:
        return BatchRunSummary(
            batch_job_id=batch.id,
            status=batch.status,
            total_documents=batch.total_documents,
            successful_runs=progress.successful_runs if progress else batch.successful_runs,
            failed_runs=progress.failed_runs if progress else batch.failed_runs,
            models_attempted=models,
            model_analytics_count=len(analytics.model_analytics) if analytics else 0,
            attribute_failure_count=len(analytics.attribute_failures) if analytics else 0,
            pattern_count=len(analytics.patterns) if analytics else 0,
            error_message=batch.error_message,
        )


def _prompt_hash(system_prompt: str, user_prompt: str) -> str:
    return hashlib.sha256(f"{system_prompt}\x00{user_prompt}".encode("utf-8")).hexdigest()
