"""Background jobs for batch execution."""

from __future__ import annotations

import logging
from time import perf_counter

from docbench.completion.client import CompletionClient, CompletionConfigError, get_default_completion_client
from docbench.db.session import SessionLocal
from docbench.services.orchestrator import BatchOrchestrator, mark_batch_failed

logger = logging.getLogger(__name__)


def run_batch_job(
    batch_job_id: int,
    client: CompletionClient | None = None,
    *,
    lease_token: str | None = None,
) -> None:
    """Run (or resume) a batch in its own DB session, under the lease its request claimed."""

    total_started = perf_counter()
    db = SessionLocal()
    try:
        if client is None:
            try:
                client = get_default_completion_client()
            except CompletionConfigError as exc:
                mark_batch_failed(db, batch_job_id, str(exc))
                return
        summary = BatchOrchestrator(db, client).run(batch_job_id, lease_token=lease_token)
        logger.info(
            "batch.job_timing batch_job_id=%s status=%s message=%s total_ms=%.2f",
            batch_job_id,
            summary.status,
            summary.status_message,
            (perf_counter() - total_started) * 1000.0,
        )
    except Exception:
        logger.exception(
            "batch.job_failed batch_job_id=%s elapsed_ms=%.2f",
            batch_job_id,
            (perf_counter() - total_started) * 1000.0,
        )
        raise
    finally:
        db.close()
