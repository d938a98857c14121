"""Per-model output ORM model."""

from typing import Any

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from docbench.models.base import Base, CreatedAtMixin, IdMixin


class Output(Base, IdMixin, CreatedAtMixin):
    """Result of one model's attempt at one document. Append-only except consensus back-fill."""

    __tablename__ = "outputs"
    __table_args__ = (UniqueConstraint("run_id", "model", name="uq_outputs_run_model"),)

    run_id: Mapped[int] = mapped_column(ForeignKey("runs.id", ondelete="CASCADE"), index=True, nullable=False)
    model: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    output_format: Mapped[str] = mapped_column(String(16), nullable=False)
    raw_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    parsed_json: Mapped[Any | None] = mapped_column(JSON, nullable=True)

    json_valid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attributes_valid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    formats_valid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validation_passed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validation_details_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    validation_errors_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    prompt_guidance_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    tokens_in: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_out: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_in: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_out: Mapped[float | None] = mapped_column(Float, nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    null_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_retryable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    quality_syntax: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_structural: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_completeness: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_content: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_consensus: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_overall: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quality_flags_json: Mapped[dict[str, bool] | None] = mapped_column(JSON, nullable=True)
    quality_metrics_json: Mapped[dict[str, int] | None] = mapped_column(JSON, nullable=True)
