"""Integration tests for batch orchestration against an in-memory database."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docbench.completion.client import CompletionConfigError, CompletionError, CompletionResult
from docbench.config import Settings
from docbench.models.base import Base
from docbench.models.batch_job import BatchJob, BatchStatus
from docbench.models.document import Document
from docbench.models.llm_model import LLMModel
from docbench.models.model_analytics import ModelAnalytics
from docbench.models.output import Output
from docbench.models.run import Run
from docbench.schemas.batch import BatchJobCreate
from docbench.schemas.document import DocumentCreate
from docbench.schemas.llm_model import LLMModelUpsert
from docbench.scoring.quality import calculate_quality
from docbench.services.background_jobs import run_batch_job
from docbench.services.batches import BatchStateError, claim_batch_job, create_batch_job, ensure_startable
from docbench.services.documents import create_document
from docbench.services.llm_models import upsert_llm_model
from docbench.services.orchestrator import BatchOrchestrator, transition_batch

SCHEMA = {
    "type": "object",
    "required": ["party", "signed_date"],
    "properties": {
        "party": {"type": "string"},
        "signed_date": {"type": "string", "format": "date"},
        "total": {"type": "number"},
    },
}
VALID_RESPONSE = '{"party": "Acme AB", "signed_date": "2024-01-15", "total": 1200}'
RATE_LIMITED = CompletionError("OpenRouter API error: 429 - rate limited", status_code=429)


class _SimulatedCrash(BaseException):
    """Stands in for the worker process dying mid-batch."""


class _ScriptedClient:
    def __init__(self, behaviours: dict[str, str | BaseException], crash_on_call: int | None = None) -> None:
        self.behaviours = behaviours
        self.crash_on_call = crash_on_call
        self.calls: list[dict[str, object]] = []

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
    ) -> CompletionResult:
        self.calls.append({"model": model, "user_prompt": user_prompt, "json_mode": json_mode})
        if self.crash_on_call is not None and len(self.calls) == self.crash_on_call:
            raise _SimulatedCrash()
        behaviour = self.behaviours[model]
        if isinstance(behaviour, BaseException):
            raise behaviour
        return CompletionResult(text=behaviour, prompt_tokens=100, completion_tokens=20)


class _BatchDatabaseTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(bind=cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db = self.SessionLocal()
        self.db.execute(delete(ModelAnalytics))
        self.db.execute(delete(Output))
        self.db.execute(delete(Run))
        self.db.execute(delete(BatchJob))
        self.db.execute(delete(LLMModel))
        self.db.execute(delete(Document))
        self.db.commit()

        upsert_llm_model(
            self.db,
            LLMModelUpsert(provider="good", name="m", supports_json_mode=True, price_in=0.000001, price_out=0.000002),
        )
        self.documents = [
            create_document(
                self.db,
                DocumentCreate(filename=f"doc{index}.txt", text=f"Contract {index} between Acme AB and Beta. " * 4),
            )
            for index in range(1, 4)
        ]

    def tearDown(self) -> None:
        self.db.close()

    def _batch(self, models: list[str]) -> BatchJob:
        return create_batch_job(
            self.db,
            BatchJobCreate(
                name="contracts",
                system_prompt="Extract contract fields as JSON.",
                user_prompt="Return party, signed_date and total.",
                validation_schema=SCHEMA,
                models=models,
                document_ids=[document.id for document in self.documents],
            ),
        )

    def _reload(self, batch_job_id: int) -> BatchJob:
        self.db.expire_all()
        batch = self.db.get(BatchJob, batch_job_id)
        assert batch is not None
        return batch

    def _outputs(self, batch_job_id: int) -> list[Output]:
        return list(
            self.db.scalars(
                select(Output).join(Run, Run.id == Output.run_id).where(Run.batch_job_id == batch_job_id)
            ).all()
        )


class BatchOrchestratorTests(_BatchDatabaseTestCase):
    def test_rate_limited_model_fails_while_batch_completes(self) -> None:
        batch = self._batch(["good/m", "limited/m"])
        client = _ScriptedClient({"good/m": VALID_RESPONSE, "limited/m": RATE_LIMITED})

        summary = BatchOrchestrator(self.db, client, settings=Settings(document_char_limit=40)).run(batch.id)

        batch = self._reload(batch.id)
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)
        self.assertEqual(batch.completed_documents, 3)
        self.assertEqual(batch.successful_runs, 3)
        self.assertEqual(batch.failed_runs, 3)
        self.assertIsNone(batch.current_document)
        self.assertTrue(summary.partial_success)
        self.assertEqual(summary.status_message, "Completed with errors")

        outputs = self._outputs(batch.id)
        self.assertEqual(len(outputs), 6)
        for output in outputs:
            self.assertEqual(
                output.validation_passed,
                output.json_valid and output.attributes_valid and output.formats_valid,
            )

        failed = [output for output in outputs if output.model == "limited/m"]
        self.assertEqual(len(failed), 3)
        for output in failed:
            self.assertFalse(output.validation_passed)
            self.assertIsNone(output.raw_response)
            self.assertEqual(output.error_message, "[Rate Limit] OpenRouter API error: 429 - rate limited")
            self.assertEqual(output.error_category, "Rate Limit")
            self.assertTrue(output.is_retryable)
            self.assertEqual(output.prompt_guidance_json[0], "Rate Limit Exceeded: Too many requests")
            self.assertEqual(
                output.validation_errors_json,
                [{"message": "OpenRouter API error: 429 - rate limited", "path": "", "keyword": None}],
            )

        passed = [output for output in outputs if output.model == "good/m"]
        for output in passed:
            self.assertTrue(output.validation_passed)
            self.assertEqual(output.validation_errors_json, [])
            self.assertAlmostEqual(output.cost_in, 100 * 0.000001)
            self.assertAlmostEqual(output.cost_out, 20 * 0.000002)
            self.assertIsNotNone(output.quality_overall)
            self.assertEqual(output.quality_consensus, 50.0)

        runs = list(self.db.scalars(select(Run).where(Run.batch_job_id == batch.id)).all())
        self.assertEqual(len(runs), 3)
        for run in runs:
            self.assertEqual(run.consensus_analysis_json["best_model"], "good/m")
            self.assertEqual(len(run.prompt_hash), 64)

        analytics = {
            row.model: row
            for row in self.db.scalars(select(ModelAnalytics).where(ModelAnalytics.batch_job_id == batch.id)).all()
        }
        self.assertEqual(set(analytics), {"good/m", "limited/m"})
        self.assertEqual(analytics["good/m"].success_rate, 100.0)
        self.assertEqual(analytics["limited/m"].success_count, 0)
        self.assertEqual(analytics["limited/m"].failure_count, 3)

        json_modes = {call["model"]: call["json_mode"] for call in client.calls}
        self.assertEqual(json_modes, {"good/m": True, "limited/m": False})
        first_prompt = str(client.calls[0]["user_prompt"])
        self.assertTrue(first_prompt.startswith("Return party, signed_date and total.\n\nDocument text:\n"))
        self.assertTrue(first_prompt.endswith(self.documents[0].full_text[:40]))

    def test_counters_never_run_ahead_of_stored_outputs(self) -> None:
        batch = self._batch(["good/m", "limited/m"])
        batch_job_id = batch.id
        client = _ScriptedClient({"good/m": VALID_RESPONSE, "limited/m": RATE_LIMITED})
        snapshots: list[tuple[int, int, int, int]] = []
        real_commit = self.db.commit

        def recording_commit() -> None:
            real_commit()
            stored = self.db.scalar(
                select(func.count(Output.id)).join(Run, Run.id == Output.run_id).where(Run.batch_job_id == batch_job_id)
            )
            completed, successful, failed = self.db.execute(
                select(BatchJob.completed_documents, BatchJob.successful_runs, BatchJob.failed_runs).where(
                    BatchJob.id == batch_job_id
                )
            ).one()
            snapshots.append((stored, completed, successful, failed))

        self.db.commit = recording_commit
        BatchOrchestrator(self.db, client).run(batch_job_id)

        self.assertTrue(snapshots)
        previous_completed = 0
        previous_runs = 0
        for stored, completed, successful, failed in snapshots:
            self.assertLessEqual(successful + failed, stored)
            self.assertLessEqual(completed, 3)
            self.assertGreaterEqual(completed, previous_completed)
            self.assertGreaterEqual(successful + failed, previous_runs)
            previous_completed = completed
            previous_runs = successful + failed
        self.assertEqual(snapshots[-1][1:], (3, 3, 3))

    def test_failed_progress_write_is_repaired_by_the_next_write(self) -> None:
        batch = self._batch(["good/m", "other/m"])
        client = _ScriptedClient({"good/m": VALID_RESPONSE, "other/m": VALID_RESPONSE})
        real_commit = self.db.commit
        state = {"failed": False}

        def flaky_commit() -> None:
            if not state["failed"] and any(
                isinstance(obj, BatchJob) and (obj.successful_runs or 0) + (obj.failed_runs or 0) >= 1
                for obj in self.db.dirty
            ):
                state["failed"] = True
                raise OperationalError("UPDATE batch_jobs", {}, Exception("database is unavailable"))
            real_commit()

        self.db.commit = flaky_commit
        with self.assertLogs("docbench.services.orchestrator", level="ERROR") as captured:
            summary = BatchOrchestrator(self.db, client).run(batch.id)

        self.assertTrue(state["failed"])
        self.assertTrue(any("batch.progress_write_failed" in line for line in captured.output))
        batch = self._reload(batch.id)
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)
        self.assertEqual(batch.successful_runs, 6)
        self.assertEqual(batch.failed_runs, 0)
        self.assertEqual(batch.completed_documents, 3)
        self.assertEqual(len(self._outputs(batch.id)), 6)
        self.assertEqual(summary.status_message, "Completed successfully")

    def test_resume_skips_models_that_already_have_outputs(self) -> None:
        batch = self._batch(["alpha/m", "beta/m"])
        batch_job_id = batch.id
        crashing = _ScriptedClient({"alpha/m": VALID_RESPONSE, "beta/m": VALID_RESPONSE}, crash_on_call=4)

        with self.assertRaises(_SimulatedCrash):
            BatchOrchestrator(self.db, crashing).run(batch_job_id)
        self.db.rollback()

        batch = self._reload(batch_job_id)
        self.assertEqual(batch.status, BatchStatus.PROCESSING.value)
        self.assertEqual(batch.completed_documents, 1)
        self.assertEqual(batch.successful_runs, 3)
        self.assertEqual(len(self._outputs(batch_job_id)), 3)
        with self.assertRaises(BatchStateError):
            ensure_startable(self.db, batch_job_id)
        ensure_startable(self.db, batch_job_id, resume=True)

        healthy = _ScriptedClient({"alpha/m": VALID_RESPONSE, "beta/m": VALID_RESPONSE})
        summary = BatchOrchestrator(self.db, healthy).run(batch_job_id)

        self.assertEqual([call["model"] for call in healthy.calls], ["beta/m", "alpha/m", "beta/m"])
        batch = self._reload(batch_job_id)
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)
        self.assertEqual(batch.completed_documents, 3)
        self.assertEqual(batch.successful_runs, 6)
        self.assertEqual(summary.successful_runs, 6)
        outputs = self._outputs(batch_job_id)
        self.assertEqual(len(outputs), 6)
        self.assertEqual(len({(output.run_id, output.model) for output in outputs}), 6)
        self.assertEqual(self.db.scalar(select(func.count(Run.id)).where(Run.batch_job_id == batch_job_id)), 3)

    def test_document_failure_counts_skipped_models_and_continues(self) -> None:
        batch = self._batch(["alpha/m", "beta/m"])
        client = _ScriptedClient({"alpha/m": VALID_RESPONSE, "beta/m": VALID_RESPONSE})
        original = BatchOrchestrator._get_or_create_run

        def flaky_run(orchestrator, batch_row, document, models, progress):
            if document.filename == "doc2.txt":
                raise RuntimeError("run insert failed")
            return original(orchestrator, batch_row, document, models, progress)

        with patch.object(BatchOrchestrator, "_get_or_create_run", flaky_run):
            summary = BatchOrchestrator(self.db, client).run(batch.id)

        batch = self._reload(batch.id)
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)
        self.assertEqual(batch.completed_documents, 3)
        self.assertEqual(batch.successful_runs, 4)
        self.assertEqual(batch.failed_runs, 2)
        self.assertEqual(summary.status_message, "Completed with errors")
        self.assertEqual(len(client.calls), 4)

        outputs = self._outputs(batch.id)
        self.assertEqual(len(outputs), 6)
        self.assertEqual(batch.successful_runs + batch.failed_runs, len(outputs))
        failed = [output for output in outputs if not output.validation_passed]
        self.assertEqual(sorted(output.model for output in failed), ["alpha/m", "beta/m"])
        for output in failed:
            self.assertIsNone(output.raw_response)
            self.assertEqual(output.error_message, "[Unknown Error] run insert failed")
        failed_documents = {
            self.db.scalar(select(Run.document_id).where(Run.id == output.run_id)) for output in failed
        }
        self.assertEqual(failed_documents, {self.documents[1].id})

    def test_failed_output_write_is_not_counted(self) -> None:
        batch = self._batch(["good/m", "other/m"])
        client = _ScriptedClient({"good/m": VALID_RESPONSE, "other/m": VALID_RESPONSE})
        real_commit = self.db.commit
        state = {"failed": False}

        def flaky_commit() -> None:
            if not state["failed"] and any(isinstance(obj, Output) for obj in self.db.new):
                state["failed"] = True
                raise OperationalError("INSERT INTO outputs", {}, Exception("database is unavailable"))
            real_commit()

        self.db.commit = flaky_commit
        with self.assertLogs("docbench.services.orchestrator", level="ERROR") as captured:
            BatchOrchestrator(self.db, client).run(batch.id)

        self.assertTrue(any("batch.output_write_failed" in line for line in captured.output))
        batch = self._reload(batch.id)
        stored = len(self._outputs(batch.id))
        self.assertEqual(stored, 5)
        self.assertEqual((batch.successful_runs, batch.failed_runs), (5, 0))
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)

    def test_oversized_integer_is_scored_and_the_next_model_still_runs(self) -> None:
        huge_total = "9" * 400
        batch = self._batch(["alpha/m", "beta/m"])
        client = _ScriptedClient(
            {
                "alpha/m": '{"party": "Acme AB", "signed_date": "2024-01-15", "total": ' + huge_total + "}",
                "beta/m": VALID_RESPONSE,
            }
        )

        BatchOrchestrator(self.db, client).run(batch.id)

        self.assertEqual([call["model"] for call in client.calls], ["alpha/m", "beta/m"] * 3)
        batch = self._reload(batch.id)
        self.assertEqual((batch.successful_runs, batch.failed_runs), (6, 0))
        outputs = {(output.run_id, output.model): output for output in self._outputs(batch.id)}
        self.assertEqual(len(outputs), 6)
        alpha = [output for (_, model), output in outputs.items() if model == "alpha/m"]
        beta = [output for (_, model), output in outputs.items() if model == "beta/m"]
        self.assertLess(alpha[0].quality_content, beta[0].quality_content)

    def test_evaluation_error_becomes_a_failed_output(self) -> None:
        batch = self._batch(["alpha/m", "beta/m"])
        client = _ScriptedClient({"alpha/m": VALID_RESPONSE, "beta/m": VALID_RESPONSE})
        state = {"raised": False}

        def fragile_quality(raw_text, parsed, siblings=None):
            if not state["raised"]:
                state["raised"] = True
                raise OverflowError("int too large to convert to float")
            return calculate_quality(raw_text, parsed, siblings)

        with (
            patch("docbench.services.orchestrator.calculate_quality", side_effect=fragile_quality),
            self.assertLogs("docbench.services.orchestrator", level="ERROR") as captured,
        ):
            BatchOrchestrator(self.db, client).run(batch.id)

        self.assertTrue(any("batch.model_evaluation_failed" in line for line in captured.output))
        self.assertEqual(len(client.calls), 6)
        batch = self._reload(batch.id)
        self.assertEqual((batch.successful_runs, batch.failed_runs), (5, 1))
        outputs = self._outputs(batch.id)
        self.assertEqual(len(outputs), 6)
        failed = [output for output in outputs if not output.validation_passed]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].model, "alpha/m")
        self.assertEqual(failed[0].raw_response, VALID_RESPONSE)
        self.assertEqual(failed[0].error_message, "[Unknown Error] int too large to convert to float")
        self.assertEqual(failed[0].tokens_in, 100)
        self.assertFalse(failed[0].json_valid or failed[0].attributes_valid or failed[0].formats_valid)

    def test_outputs_are_unique_per_run_and_model(self) -> None:
        batch = self._batch(["good/m"])
        BatchOrchestrator(self.db, _ScriptedClient({"good/m": VALID_RESPONSE})).run(batch.id)
        existing = self._outputs(batch.id)[0]

        self.db.add(Output(run_id=existing.run_id, model=existing.model, output_format="json"))
        with self.assertRaises(IntegrityError):
            self.db.commit()
        self.db.rollback()

    def test_all_models_failing_still_completes(self) -> None:
        batch = self._batch(["limited/m"])
        client = _ScriptedClient({"limited/m": RATE_LIMITED})

        summary = BatchOrchestrator(self.db, client).run(batch.id)

        self.assertEqual(summary.status, BatchStatus.COMPLETED.value)
        self.assertTrue(summary.all_failed)
        self.assertEqual(summary.status_message, "All models failed")

    def test_missing_document_fails_batch_before_any_call(self) -> None:
        batch = self._batch(["good/m"])
        missing_id = self.documents[1].id
        self.db.execute(delete(Document).where(Document.id == missing_id))
        self.db.commit()
        client = _ScriptedClient({"good/m": VALID_RESPONSE})

        summary = BatchOrchestrator(self.db, client).run(batch.id)

        self.assertEqual(client.calls, [])
        self.assertEqual(summary.status, BatchStatus.FAILED.value)
        self.assertTrue(summary.status_message.startswith("Batch failed: Documents not found"))
        batch = self._reload(batch.id)
        self.assertEqual(batch.status, BatchStatus.FAILED.value)
        self.assertEqual(batch.error_message, f"Documents not found: {missing_id}")

    def test_terminal_batch_cannot_run_again(self) -> None:
        batch = self._batch(["good/m"])
        client = _ScriptedClient({"good/m": VALID_RESPONSE})
        BatchOrchestrator(self.db, client).run(batch.id)

        with self.assertRaises(BatchStateError):
            BatchOrchestrator(self.db, client).run(batch.id)
        with self.assertRaises(BatchStateError):
            transition_batch(self._reload(batch.id), BatchStatus.PROCESSING)


class _LeaseStealingClient(_ScriptedClient):
    """Hands the batch to another job while the first model call is in flight."""

    def __init__(self, db, batch_job_id: int) -> None:
        super().__init__({"good/m": VALID_RESPONSE})
        self.db = db
        self.batch_job_id = batch_job_id

    def complete(self, model, system_prompt, user_prompt, *, json_mode=False) -> CompletionResult:
        if not self.calls:
            self.db.execute(
                update(BatchJob)
                .where(BatchJob.id == self.batch_job_id)
                .values(lease_token="taken")
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        return super().complete(model, system_prompt, user_prompt, json_mode=json_mode)


class BatchLeaseTests(_BatchDatabaseTestCase):
    def _age_heartbeat(self, batch_job_id: int) -> None:
        self.db.execute(
            update(BatchJob)
            .where(BatchJob.id == batch_job_id)
            .values(heartbeat_at=datetime.now(timezone.utc) - timedelta(hours=1))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def test_start_claim_is_exclusive(self) -> None:
        batch = self._batch(["good/m"])

        claimed = claim_batch_job(self.db, batch.id)

        self.assertIsNotNone(claimed.lease_token)
        self.assertIsNotNone(claimed.heartbeat_at)
        with self.assertRaises(BatchStateError):
            claim_batch_job(self.db, batch.id)

    def test_stale_start_claim_can_be_taken_over(self) -> None:
        batch = self._batch(["good/m"])
        first_token = claim_batch_job(self.db, batch.id).lease_token
        self._age_heartbeat(batch.id)

        second_token = claim_batch_job(self.db, batch.id).lease_token

        self.assertNotEqual(first_token, second_token)
        client = _ScriptedClient({"good/m": VALID_RESPONSE})
        with self.assertRaises(BatchStateError):
            BatchOrchestrator(self.db, client).run(batch.id, lease_token=first_token)
        self.assertEqual(client.calls, [])
        self.assertEqual(self._reload(batch.id).status, BatchStatus.PENDING.value)

    def test_resume_waits_for_the_heartbeat_to_go_stale(self) -> None:
        batch = self._batch(["good/m"])
        batch_job_id = batch.id
        token = claim_batch_job(self.db, batch_job_id).lease_token
        crashing = _ScriptedClient({"good/m": VALID_RESPONSE}, crash_on_call=2)
        with self.assertRaises(_SimulatedCrash):
            BatchOrchestrator(self.db, crashing).run(batch_job_id, lease_token=token)
        self.db.rollback()

        with self.assertRaises(BatchStateError):
            claim_batch_job(self.db, batch_job_id, resume=True)

        self._age_heartbeat(batch_job_id)
        resumed = claim_batch_job(self.db, batch_job_id, resume=True)
        self.assertNotEqual(resumed.lease_token, token)
        with self.assertRaises(BatchStateError):
            claim_batch_job(self.db, batch_job_id, resume=True)

        healthy = _ScriptedClient({"good/m": VALID_RESPONSE})
        BatchOrchestrator(self.db, healthy).run(batch_job_id, lease_token=resumed.lease_token)

        self.assertEqual(len(healthy.calls), 2)
        batch = self._reload(batch_job_id)
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)
        self.assertEqual(len(self._outputs(batch_job_id)), 3)

    def test_run_stops_once_the_lease_is_taken(self) -> None:
        batch = self._batch(["good/m"])
        batch_job_id = batch.id
        token = claim_batch_job(self.db, batch_job_id).lease_token
        client = _LeaseStealingClient(self.db, batch_job_id)

        with self.assertLogs("docbench.services.orchestrator", level="WARNING") as captured:
            summary = BatchOrchestrator(self.db, client).run(batch_job_id, lease_token=token)

        self.assertTrue(any("batch.lease_lost" in line for line in captured.output))
        self.assertEqual(len(client.calls), 1)
        self.assertEqual(summary.status, BatchStatus.PROCESSING.value)
        batch = self._reload(batch_job_id)
        self.assertEqual(batch.status, BatchStatus.PROCESSING.value)
        self.assertEqual(batch.lease_token, "taken")
        self.assertEqual(batch.completed_documents, 1)
        self.assertEqual(batch.successful_runs, 1)
        self.assertEqual(len(self._outputs(batch_job_id)), 1)


class BackgroundJobTests(_BatchDatabaseTestCase):
    def test_missing_api_key_marks_batch_failed(self) -> None:
        batch = self._batch(["good/m"])
        batch_job_id = batch.id
        self.db.commit()

        with (
            patch("docbench.services.background_jobs.SessionLocal", self.SessionLocal),
            patch(
                "docbench.services.background_jobs.get_default_completion_client",
                side_effect=CompletionConfigError("OPENROUTER_API_KEY is not configured"),
            ),
        ):
            run_batch_job(batch_job_id)

        batch = self._reload(batch_job_id)
        self.assertEqual(batch.status, BatchStatus.FAILED.value)
        self.assertEqual(batch.error_message, "OPENROUTER_API_KEY is not configured")

    def test_runs_batch_in_its_own_session(self) -> None:
        batch = self._batch(["good/m"])
        batch_job_id = batch.id
        token = claim_batch_job(self.db, batch_job_id).lease_token
        client = _ScriptedClient({"good/m": VALID_RESPONSE})

        with patch("docbench.services.background_jobs.SessionLocal", self.SessionLocal):
            run_batch_job(batch_job_id, client=client, lease_token=token)

        batch = self._reload(batch_job_id)
        self.assertEqual(batch.status, BatchStatus.COMPLETED.value)
        self.assertEqual(len(client.calls), 3)

    def test_job_holding_a_stale_token_does_not_run(self) -> None:
        batch = self._batch(["good/m"])
        batch_job_id = batch.id
        claim_batch_job(self.db, batch_job_id)
        client = _ScriptedClient({"good/m": VALID_RESPONSE})

        with (
            patch("docbench.services.background_jobs.SessionLocal", self.SessionLocal),
            self.assertLogs("docbench.services.background_jobs", level="ERROR") as captured,
            self.assertRaises(BatchStateError),
        ):
            run_batch_job(batch_job_id, client=client, lease_token="superseded")

        self.assertTrue(any("batch.job_failed" in line for line in captured.output))

        self.assertEqual(client.calls, [])
        self.assertEqual(self._reload(batch_job_id).status, BatchStatus.PENDING.value)


if __name__ == "__main__":
    unittest.main()
