"""initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=True),
        sa.Column("full_text", sa.Text(), nullable=False),
        sa.Column("char_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_owner", "documents", ["owner"], unique=False)

    op.create_table(
        "llm_models",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("provider", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("supports_json_mode", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("price_in", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("price_out", sa.Float(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "name", name="uq_llm_models_provider_name"),
    )

    op.create_table(
        "batch_jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("user_prompt", sa.Text(), nullable=False),
        sa.Column("output_format", sa.String(length=16), nullable=False),
        sa.Column("validation_schema_json", sa.JSON(), nullable=False),
        sa.Column("models_json", sa.JSON(), nullable=False),
        sa.Column("document_ids_json", sa.JSON(), nullable=False),
        sa.Column("total_documents", sa.Integer(), nullable=False),
        sa.Column("completed_documents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("successful_runs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_runs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("current_document", sa.String(length=512), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("lease_token", sa.String(length=64), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_batch_jobs_owner", "batch_jobs", ["owner"], unique=False)
    op.create_index("ix_batch_jobs_status", "batch_jobs", ["status"], unique=False)

    op.create_table(
        "runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_job_id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("user_prompt", sa.Text(), nullable=False),
        sa.Column("prompt_hash", sa.String(length=64), nullable=False),
        sa.Column("models_json", sa.JSON(), nullable=False),
        sa.Column("consensus_analysis_json", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["batch_job_id"], ["batch_jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_runs_batch_job_id", "runs", ["batch_job_id"], unique=False)
    op.create_index("ix_runs_document_id", "runs", ["document_id"], unique=False)

    op.create_table(
        "outputs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.Integer(), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("output_format", sa.String(length=16), nullable=False),
        sa.Column("raw_response", sa.Text(), nullable=True),
        sa.Column("parsed_json", sa.JSON(), nullable=True),
        sa.Column("json_valid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("attributes_valid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("formats_valid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("validation_passed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("validation_details_json", sa.JSON(), nullable=False),
        sa.Column("validation_errors_json", sa.JSON(), nullable=False),
        sa.Column("prompt_guidance_json", sa.JSON(), nullable=False),
        sa.Column("tokens_in", sa.Integer(), nullable=True),
        sa.Column("tokens_out", sa.Integer(), nullable=True),
        sa.Column("cost_in", sa.Float(), nullable=True),
        sa.Column("cost_out", sa.Float(), nullable=True),
        sa.Column("execution_time_ms", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("null_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_category", sa.String(length=64), nullable=True),
        sa.Column("is_retryable", sa.Boolean(), nullable=True),
        sa.Column("quality_syntax", sa.Float(), nullable=True),
        sa.Column("quality_structural", sa.Float(), nullable=True),
        sa.Column("quality_completeness", sa.Float(), nullable=True),
        sa.Column("quality_content", sa.Float(), nullable=True),
        sa.Column("quality_consensus", sa.Float(), nullable=True),
        sa.Column("quality_overall", sa.Integer(), nullable=True),
        sa.Column("quality_flags_json", sa.JSON(), nullable=True),
        sa.Column("quality_metrics_json", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["run_id"], ["runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_id", "model", name="uq_outputs_run_model"),
    )
    op.create_index("ix_outputs_run_id", "outputs", ["run_id"], unique=False)
    op.create_index("ix_outputs_model", "outputs", ["model"], unique=False)

    op.create_table(
        "batch_analytics",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_job_id", sa.Integer(), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("avg_execution_time_ms", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cost", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("avg_null_count", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_null_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("json_validity_rate", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("attribute_validity_rate", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("format_validity_rate", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("attribute_failures_json", sa.JSON(), nullable=False),
        sa.Column("common_errors_json", sa.JSON(), nullable=False),
        sa.Column("validation_breakdown_json", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["batch_job_id"], ["batch_jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_job_id", "model", name="uq_batch_analytics_batch_model"),
    )
    op.create_index("ix_batch_analytics_batch_job_id", "batch_analytics", ["batch_job_id"], unique=False)
    op.create_index("ix_batch_analytics_model", "batch_analytics", ["model"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_batch_analytics_model", table_name="batch_analytics")
    op.drop_index("ix_batch_analytics_batch_job_id", table_name="batch_analytics")
    op.drop_table("batch_analytics")
    op.drop_index("ix_outputs_model", table_name="outputs")
    op.drop_index("ix_outputs_run_id", table_name="outputs")
    op.drop_table("outputs")
    op.drop_index("ix_runs_document_id", table_name="runs")
    op.drop_index("ix_runs_batch_job_id", table_name="runs")
    op.drop_table("runs")
    op.drop_index("ix_batch_jobs_status", table_name="batch_jobs")
    op.drop_index("ix_batch_jobs_owner", table_name="batch_jobs")
    op.drop_table("batch_jobs")
    op.drop_table("llm_models")
    op.drop_index("ix_documents_owner", table_name="documents")
    op.drop_table("documents")
