"""Batch analytics: per-model statistics, attribute failure aggregation and pattern detection.

The aggregation functions are pure and operate on ``OutputRecord`` values so they
can be exercised without a database; ``generate_batch_analytics`` loads the
records for a batch and ``persist_model_analytics`` upserts the per-model rows.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from time import perf_counter
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from docbench.models.document import Document
from docbench.models.model_analytics import ModelAnalytics
from docbench.models.output import Output
from docbench.models.run import Run
from docbench.validation.guidance import aggregate_guidance
from docbench.validation.validator import pointer_segments

logger = logging.getLogger(__name__)

ErrorType = Literal["missing", "type_mismatch", "format_violation", "unknown"]
PatternType = Literal["universal_failure", "model_specific", "document_specific", "type_issue"]
Severity = Literal["high", "medium", "low"]

COMMON_ERROR_LIMIT = 10
GUIDANCE_LIMIT = 5
MODEL_SPECIFIC_MIN_ATTRIBUTES = 5
DOCUMENT_SPECIFIC_RATIO = 0.7
TYPE_ISSUE_MIN_COUNT = 3
FORMAT_ISSUE_MIN_COUNT = 3
_SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass(slots=True)
class OutputRecord:
    """The slice of an Output row analytics needs, with its document resolved to a filename."""

    model: str
    document: str
    validation_passed: bool
    json_valid: bool = False
    attributes_valid: bool = False
    formats_valid: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)
    guidance: list[str] = field(default_factory=list)
    execution_time_ms: int | None = None
    cost_in: float | None = None
    cost_out: float | None = None
    null_count: int = 0


@dataclass(slots=True)
class AttributeFailure:
    attribute_path: str
    missing_count: int = 0
    type_mismatch_count: int = 0
    format_violation_count: int = 0
    affected_models: list[str] = field(default_factory=list)
    affected_documents: list[str] = field(default_factory=list)
    missing_documents: list[str] = field(default_factory=list)

    @property
    def total_failures(self) -> int:
        return self.missing_count + self.type_mismatch_count + self.format_violation_count

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["total_failures"] = self.total_failures
        return payload


@dataclass(slots=True)
class ModelAnalyticsResult:
    model: str
    success_count: int
    failure_count: int
    success_rate: float
    avg_execution_time_ms: int
    total_cost: float
    avg_null_count: float
    total_null_count: int
    json_validity_rate: int
    attribute_validity_rate: int
    format_validity_rate: int
    attribute_failures: dict[str, dict[str, int]]
    common_errors: list[dict[str, Any]]
    validation_breakdown: dict[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class Pattern:
    type: PatternType
    severity: Severity
    message: str
    affected_items: list[str]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BatchAnalyticsResult:
    model_analytics: list[ModelAnalyticsResult] = field(default_factory=list)
    attribute_failures: list[AttributeFailure] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)


def categorize_error(error: dict[str, Any]) -> tuple[str, ErrorType]:
    """Return the dotted attribute path and failure kind of one validation error.

    The keyword decides first; when it is absent or unrecognised the message text
    is matched instead.
    """

    raw_path = str(error.get("path") or "")
    path = ".".join(pointer_segments(raw_path)) if raw_path.startswith("/") else raw_path
    message = str(error.get("message") or "").lower()
    keyword = str(error.get("keyword") or "").lower()

    if keyword == "required" or "required" in message or "missing property" in message:
        return path, "missing"
    if keyword == "type" or "must be" in message or "should be" in message:
        return path, "type_mismatch"
    if keyword == "format" or "format" in message or "pattern" in message:
        return path, "format_violation"
    return path, "unknown"


def analyze_attribute_failures(records: list[OutputRecord]) -> list[AttributeFailure]:
    """Aggregate validation errors per attribute path across the batch.

    Only errors that carry an attribute path are counted. The result does not
    depend on record order: member lists are sorted and ties are broken by path.
    """

    counts: dict[str, Counter[str]] = {}
    models: dict[str, set[str]] = {}
    documents: dict[str, set[str]] = {}
    missing_documents: dict[str, set[str]] = {}

    for record in records:
        if record.validation_passed:
            continue
        for error in record.errors:
            path, error_type = categorize_error(error)
            if not path:
                continue
            counts.setdefault(path, Counter())[error_type] += 1
            models.setdefault(path, set()).add(record.model)
            documents.setdefault(path, set()).add(record.document)
            if error_type == "missing":
                missing_documents.setdefault(path, set()).add(record.document)

    failures = [
        AttributeFailure(
            attribute_path=path,
            missing_count=counter["missing"],
            type_mismatch_count=counter["type_mismatch"],
            format_violation_count=counter["format_violation"],
            affected_models=sorted(models[path]),
            affected_documents=sorted(documents[path]),
            missing_documents=sorted(missing_documents.get(path, set())),
        )
        for path, counter in counts.items()
    ]
    failures.sort(key=lambda failure: (-failure.total_failures, failure.attribute_path))
    return failures


def calculate_model_analytics(model: str, records: list[OutputRecord]) -> ModelAnalyticsResult:
    """Statistics for one model over every output it produced in the batch."""

    model_records = [record for record in records if record.model == model]
    total_runs = len(model_records)
    success_count = sum(1 for record in model_records if record.validation_passed)

    timings = [record.execution_time_ms for record in model_records if record.execution_time_ms is not None]
    avg_execution_time = round(sum(timings) / len(timings)) if timings else 0
    total_cost = sum((record.cost_in or 0.0) + (record.cost_out or 0.0) for record in model_records)

    error_counts: Counter[str] = Counter()
    error_documents: dict[str, set[str]] = {}
    attribute_failures: dict[str, dict[str, int]] = {}
    for record in model_records:
        if record.validation_passed:
            continue
        for error in record.errors:
            message = str(error.get("message") or "")
            error_counts[message] += 1
            error_documents.setdefault(message, set()).add(record.document)

            path, error_type = categorize_error(error)
            if not path:
                continue
            bucket = attribute_failures.setdefault(path, {"missing": 0, "type_mismatch": 0, "format_violation": 0})
            if error_type in bucket:
                bucket[error_type] += 1

    common_errors = [
        {"error": message, "count": count, "documents": sorted(error_documents[message])}
        for message, count in sorted(error_counts.items(), key=lambda item: (-item[1], item[0]))[:COMMON_ERROR_LIMIT]
    ]

    json_valid = sum(1 for record in model_records if record.json_valid)
    attributes_valid = sum(1 for record in model_records if record.attributes_valid)
    formats_valid = sum(1 for record in model_records if record.formats_valid)
    total_nulls = sum(record.null_count for record in model_records)

    return ModelAnalyticsResult(
        model=model,
        success_count=success_count,
        failure_count=total_runs - success_count,
        success_rate=_percent(success_count, total_runs, digits=1),
        avg_execution_time_ms=avg_execution_time,
        total_cost=total_cost,
        avg_null_count=round(total_nulls / total_runs, 2) if total_runs else 0.0,
        total_null_count=total_nulls,
        json_validity_rate=int(_percent(json_valid, total_runs)),
        attribute_validity_rate=int(_percent(attributes_valid, total_runs)),
        format_validity_rate=int(_percent(formats_valid, total_runs)),
        attribute_failures=dict(sorted(attribute_failures.items())),
        common_errors=common_errors,
        validation_breakdown={
            "total_runs": total_runs,
            "json_valid": json_valid,
            "attributes_valid": attributes_valid,
            "formats_valid": formats_valid,
            "common_guidance": aggregate_guidance([record.guidance for record in model_records], GUIDANCE_LIMIT),
        },
    )


def detect_patterns(
    attribute_failures: list[AttributeFailure],
    model_analytics: list[ModelAnalyticsResult],
    total_models: int,
    total_documents: int,
) -> list[Pattern]:
    """Apply every pattern rule independently; result sorted high, medium, low."""

    patterns: list[Pattern] = []

    for failure in attribute_failures:
        if len(failure.affected_models) == total_models:
            patterns.append(
                Pattern(
                    type="universal_failure",
                    severity="high",
                    message=(
                        f"All {total_models} models fail to extract '{failure.attribute_path}' - attribute may be "
                        "vague, incorrectly defined in schema, or missing from documents"
                    ),
                    affected_items=[failure.attribute_path],
                )
            )

    for analytics in model_analytics:
        attribute_count = len(analytics.attribute_failures)
        if attribute_count >= MODEL_SPECIFIC_MIN_ATTRIBUTES:
            patterns.append(
                Pattern(
                    type="model_specific",
                    severity="medium",
                    message=(
                        f"{analytics.model} struggles with {attribute_count} different attributes "
                        f"({round(analytics.success_rate)}% success rate) - may need better prompting or different model"
                    ),
                    affected_items=[analytics.model],
                )
            )

    if total_documents > 0:
        for failure in attribute_failures:
            missing_in = len(failure.missing_documents)
            ratio = missing_in / total_documents
            if ratio >= DOCUMENT_SPECIFIC_RATIO:
                patterns.append(
                    Pattern(
                        type="document_specific",
                        severity="high",
                        message=(
                            f"'{failure.attribute_path}' is missing in {round(ratio * 100)}% of documents "
                            f"({missing_in}/{total_documents}) - attribute may not exist in source documents"
                        ),
                        affected_items=list(failure.missing_documents),
                    )
                )

    for failure in attribute_failures:
        if failure.type_mismatch_count > failure.missing_count and failure.type_mismatch_count >= TYPE_ISSUE_MIN_COUNT:
            patterns.append(
                Pattern(
                    type="type_issue",
                    severity="medium",
                    message=(
                        f"'{failure.attribute_path}' frequently extracted with wrong type "
                        f"({failure.type_mismatch_count} type errors) - clarify expected data type in prompt or schema"
                    ),
                    affected_items=[failure.attribute_path],
                )
            )

    for failure in attribute_failures:
        if failure.format_violation_count >= FORMAT_ISSUE_MIN_COUNT:
            patterns.append(
                Pattern(
                    type="type_issue",
                    severity="low",
                    message=(
                        f"'{failure.attribute_path}' has {failure.format_violation_count} format violations - "
                        'specify exact format in prompt (e.g., "YYYY-MM-DD" for dates)'
                    ),
                    affected_items=[failure.attribute_path],
                )
            )

    patterns.sort(key=lambda pattern: _SEVERITY_ORDER[pattern.severity])
    return patterns


def build_batch_analytics(records: list[OutputRecord], total_documents: int) -> BatchAnalyticsResult:
    """Compute every analytic for an in-memory set of output records."""

    if not records:
        return BatchAnalyticsResult()
    models = list(dict.fromkeys(record.model for record in records))
    model_analytics = [calculate_model_analytics(model, records) for model in models]
    attribute_failures = analyze_attribute_failures(records)
    patterns = detect_patterns(attribute_failures, model_analytics, len(models), total_documents)
    return BatchAnalyticsResult(
        model_analytics=model_analytics,
        attribute_failures=attribute_failures,
        patterns=patterns,
    )


def load_output_records(db: Session, batch_job_id: int) -> tuple[list[OutputRecord], int]:
    """Return the batch's output records and the number of distinct documents with a run."""

    rows = db.execute(
        select(Output, Document.filename)
        .join(Run, Run.id == Output.run_id)
        .join(Document, Document.id == Run.document_id)
        .where(Run.batch_job_id == batch_job_id)
        .order_by(Output.id.asc())
    ).all()
    document_ids = set(db.scalars(select(Run.document_id).where(Run.batch_job_id == batch_job_id)).all())
    records = [
        OutputRecord(
            model=output.model,
            document=filename,
            validation_passed=output.validation_passed,
            json_valid=output.json_valid,
            attributes_valid=output.attributes_valid,
            formats_valid=output.formats_valid,
            errors=list(output.validation_errors_json or []),
            guidance=list(output.prompt_guidance_json or []),
            execution_time_ms=output.execution_time_ms,
            cost_in=output.cost_in,
            cost_out=output.cost_out,
            null_count=output.null_count or 0,
        )
        for output, filename in rows
    ]
    return records, len(document_ids)


def generate_batch_analytics(db: Session, batch_job_id: int) -> BatchAnalyticsResult:
    started = perf_counter()
    records, total_documents = load_output_records(db, batch_job_id)
    result = build_batch_analytics(records, total_documents)
    logger.info(
        "analytics.generated batch_job_id=%s outputs=%d models=%d attribute_failures=%d patterns=%d elapsed_ms=%.2f",
        batch_job_id,
        len(records),
        len(result.model_analytics),
        len(result.attribute_failures),
        len(result.patterns),
        (perf_counter() - started) * 1000.0,
    )
    return result


def persist_model_analytics(db: Session, batch_job_id: int, results: list[ModelAnalyticsResult]) -> list[ModelAnalytics]:
    """Upsert one row per (batch, model); recomputing overwrites the previous values."""

    existing = {
        row.model: row
        for row in db.scalars(select(ModelAnalytics).where(ModelAnalytics.batch_job_id == batch_job_id)).all()
    }
    rows: list[ModelAnalytics] = []
    for result in results:
        row = existing.get(result.model)
        if row is None:
            row = ModelAnalytics(batch_job_id=batch_job_id, model=result.model)
            db.add(row)
        row.success_count = result.success_count
        row.failure_count = result.failure_count
        row.success_rate = result.success_rate
        row.avg_execution_time_ms = result.avg_execution_time_ms
        row.total_cost = result.total_cost
        row.avg_null_count = result.avg_null_count
        row.total_null_count = result.total_null_count
        row.json_validity_rate = result.json_validity_rate
        row.attribute_validity_rate = result.attribute_validity_rate
        row.format_validity_rate = result.format_validity_rate
        row.attribute_failures_json = result.attribute_failures
        row.common_errors_json = result.common_errors
        row.validation_breakdown_json = result.validation_breakdown
        rows.append(row)
    db.flush()
    return rows


def model_analytics_from_row(row: ModelAnalytics) -> ModelAnalyticsResult:
    return ModelAnalyticsResult(
        model=row.model,
        success_count=row.success_count,
        failure_count=row.failure_count,
        success_rate=row.success_rate,
        avg_execution_time_ms=row.avg_execution_time_ms,
        total_cost=row.total_cost,
        avg_null_count=row.avg_null_count,
        total_null_count=row.total_null_count,
        json_validity_rate=row.json_validity_rate,
        attribute_validity_rate=row.attribute_validity_rate,
        format_validity_rate=row.format_validity_rate,
        attribute_failures=dict(row.attribute_failures_json or {}),
        common_errors=list(row.common_errors_json or []),
        validation_breakdown=dict(row.validation_breakdown_json or {}),
    )


def _percent(part: int, whole: int, *, digits: int = 0) -> float:
    if whole <= 0:
        return 0.0
    value = part / whole * 100
    return round(value, digits) if digits else float(int(value + 0.5))
