"""SQLAlchemy metadata registry import for Alembic."""

from docbench.models import BatchJob, Document, LLMModel, ModelAnalytics, Output, Run
from docbench.models.base import Base

__all__ = ["Base", "Document", "LLMModel", "BatchJob", "Run", "Output", "ModelAnalytics"]
