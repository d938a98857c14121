"""Quality scoring and cross-model comparison of parsed outputs."""

from docbench.scoring.consensus import ConsensusAnalysis, ModelOutput, analyze_consensus
from docbench.scoring.quality import (
    NEUTRAL_CONSENSUS_SCORE,
    QUALITY_WEIGHTS,
    QualityReport,
    QualityScores,
    SiblingOutput,
    calculate_quality,
    count_nulls,
    extract_field_paths,
    overall_score,
    score_consensus,
    value_at_path,
)

__all__ = [
    "ConsensusAnalysis",
    "ModelOutput",
    "NEUTRAL_CONSENSUS_SCORE",
    "QUALITY_WEIGHTS",
    "QualityReport",
    "QualityScores",
    "SiblingOutput",
    "analyze_consensus",
    "calculate_quality",
    "count_nulls",
    "extract_field_paths",
    "overall_score",
    "score_consensus",
    "value_at_path",
]
