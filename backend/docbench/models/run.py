"""Per-document run ORM model."""

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docbench.models.base import Base, CreatedAtMixin, IdMixin


class Run(Base, IdMixin, CreatedAtMixin):
    """Unit of work for one document within a batch, spanning every configured model."""

    __tablename__ = "runs"

    batch_job_id: Mapped[int] = mapped_column(
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    user_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    models_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    consensus_analysis_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
