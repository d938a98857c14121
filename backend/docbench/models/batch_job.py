"""Batch job ORM model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docbench.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin


class BatchStatus(str, Enum):
    """Lifecycle states of a batch job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


class BatchJob(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """One request to run a set of models over a set of documents against one schema."""

    __tablename__ = "batch_jobs"

    owner: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    user_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    output_format: Mapped[str] = mapped_column(String(16), nullable=False)
    validation_schema_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    models_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    document_ids_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    total_documents: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_documents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        default=BatchStatus.PENDING.value,
        index=True,
        nullable=False,
    )
    current_document: Mapped[str | None] = mapped_column(String(512), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set by claim_batch_job; heartbeat_at is refreshed on every progress write.
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
