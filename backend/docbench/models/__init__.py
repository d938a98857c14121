"""ORM models package exports."""

from docbench.models.batch_job import BatchJob, BatchStatus
from docbench.models.document import Document
from docbench.models.llm_model import LLMModel
from docbench.models.model_analytics import ModelAnalytics
from docbench.models.output import Output
from docbench.models.run import Run

__all__ = [
    "BatchJob",
    "BatchStatus",
    "Document",
    "LLMModel",
    "ModelAnalytics",
    "Output",
    "Run",
]
