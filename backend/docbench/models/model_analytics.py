"""Per-batch, per-model analytics ORM model."""

from typing import Any

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from docbench.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin


class ModelAnalytics(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Aggregated statistics for one model across a batch. Recomputed idempotently."""

    __tablename__ = "batch_analytics"
    __table_args__ = (UniqueConstraint("batch_job_id", "model", name="uq_batch_analytics_batch_model"),)

    batch_job_id: Mapped[int] = mapped_column(
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    model: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_execution_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_null_count: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_null_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    json_validity_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attribute_validity_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    format_validity_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attribute_failures_json: Mapped[dict[str, dict[str, int]]] = mapped_column(JSON, default=dict, nullable=False)
    common_errors_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    validation_breakdown_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
