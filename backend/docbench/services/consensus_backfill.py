"""Second scoring stage: consensus sub-scores once every output of a run exists."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from docbench.models.output import Output
from docbench.models.run import Run
from docbench.scoring.consensus import ModelOutput, analyze_consensus
from docbench.scoring.quality import NEUTRAL_CONSENSUS_SCORE, QualityScores, SiblingOutput, score_consensus

logger = logging.getLogger(__name__)


def backfill_run_consensus(db: Session, run_id: int) -> int:
    """Rescore consensus for every JSON-valid output of a run and store the cross-model analysis.

    Returns the number of outputs whose consensus score was written. Changes are
    flushed, not committed.
    """

    run = db.get(Run, run_id)
    if run is None:
        raise LookupError(f"Run not found: {run_id}")
    outputs = list(db.scalars(select(Output).where(Output.run_id == run_id).order_by(Output.id.asc())).all())

    siblings = [
        SiblingOutput(model=output.model, data=output.parsed_json)
        for output in outputs
        if output.json_valid and output.parsed_json is not None
    ]

    updated = 0
    for output in outputs:
        scores = _stored_scores(output)
        if scores is None:
            continue
        rescored = scores.with_consensus(score_consensus(output.parsed_json, siblings))
        output.quality_consensus = rescored.consensus
        output.quality_overall = rescored.overall
        updated += 1

    analysis = analyze_consensus(
        [
            ModelOutput(
                model=output.model,
                data=output.parsed_json if output.json_valid else None,
                scores=_stored_scores(output),
            )
            for output in outputs
        ]
    )
    run.consensus_analysis_json = analysis.as_dict()
    db.flush()
    logger.info(
        "consensus.backfilled run_id=%s outputs=%d rescored=%d siblings=%d best_model=%s",
        run_id,
        len(outputs),
        updated,
        len(siblings),
        analysis.best_model,
    )
    return updated


def _stored_scores(output: Output) -> QualityScores | None:
    if not output.json_valid or output.quality_syntax is None:
        return None
    return QualityScores(
        syntax=output.quality_syntax,
        structural=output.quality_structural or 0.0,
        completeness=output.quality_completeness or 0.0,
        content=output.quality_content or 0.0,
        consensus=output.quality_consensus if output.quality_consensus is not None else NEUTRAL_CONSENSUS_SCORE,
    )
