"""Cross-model analysis of the outputs produced for one document."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from docbench.scoring.quality import QualityScores, extract_field_paths, value_at_path

AGREED_THRESHOLD = 0.7
DISPUTED_THRESHOLD = 0.3


@dataclass(slots=True)
class ModelOutput:
    model: str
    data: Any
    scores: QualityScores | None = None


@dataclass(slots=True)
class ConsensusAnalysis:
    agreed_fields: list[dict[str, Any]] = field(default_factory=list)
    disputed_fields: list[dict[str, Any]] = field(default_factory=list)
    unique_fields: list[dict[str, Any]] = field(default_factory=list)
    total_unique_fields: int = 0
    high_confidence: list[dict[str, Any]] = field(default_factory=list)
    low_confidence: list[dict[str, Any]] = field(default_factory=list)
    best_model: str = "None"
    best_score: int = 0
    top_models: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    summary: str = ""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def analyze_consensus(outputs: list[ModelOutput]) -> ConsensusAnalysis:
    """Compare every output for a document; outputs with no parsed data count as failures."""

    valid = [output for output in outputs if output.data is not None]
    if not valid:
        return ConsensusAnalysis(
            warnings=["No models produced valid output"],
            summary="All models failed to produce valid JSON",
        )
    if len(valid) == 1:
        return _single_model_analysis(valid[0])

    analysis = ConsensusAnalysis()
    _field_consensus(valid, analysis)
    _value_consensus(valid, analysis)
    _recommendations(valid, len(outputs), analysis)
    return analysis


def _field_consensus(outputs: list[ModelOutput], analysis: ConsensusAnalysis) -> None:
    field_models: dict[str, list[str]] = {}
    for output in outputs:
        for path in dict.fromkeys(extract_field_paths(output.data)):
            field_models.setdefault(path, []).append(output.model)

    total = len(outputs)
    for path, models in field_models.items():
        present = len(models)
        if present >= total * AGREED_THRESHOLD:
            analysis.agreed_fields.append({"field": path, "agreement_percent": round(present / total * 100)})
        elif present > 1 and present >= total * DISPUTED_THRESHOLD:
            analysis.disputed_fields.append({"field": path, "present_in": models})
        elif present == 1:
            analysis.unique_fields.append({"field": path, "model": models[0]})
    analysis.agreed_fields.sort(key=lambda item: -item["agreement_percent"])
    analysis.total_unique_fields = len(field_models)


def _value_consensus(outputs: list[ModelOutput], analysis: ConsensusAnalysis) -> None:
    for agreed in analysis.agreed_fields:
        path = agreed["field"]
        groups: dict[str, list[str]] = {}
        for output in outputs:
            value = value_at_path(output.data, path)
            if value is None or isinstance(value, (dict, list)):
                continue
            groups.setdefault(str(value).lower().strip(), []).append(output.model)
        if not groups:
            continue

        top_value, top_models = max(groups.items(), key=lambda item: len(item[1]))
        agreement = len(top_models) / len(outputs) * 100
        if agreement >= AGREED_THRESHOLD * 100:
            analysis.high_confidence.append(
                {
                    "field": path,
                    "value": top_value,
                    "agreement_percent": round(agreement),
                    "models_agreed": top_models,
                }
            )
        else:
            values = [{"value": value, "models": models} for value, models in groups.items()]
            analysis.low_confidence.append(
                {"field": path, "values": values, "disagreement_reason": _disagreement_reason(list(groups))}
            )


def _disagreement_reason(values: list[str]) -> str:
    if len(values) > 5:
        return "High variance - many different values extracted"
    if all(_similarity(left, right) > 0.8 for left in values for right in values):
        return "Formatting differences - values are similar but not identical"
    if len(values) == 2:
        return "Binary disagreement - models split into two camps"
    return "Models extracted different information"


def _similarity(left: str, right: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]."""

    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return 1 - previous[-1] / max(len(left), len(right))


def _recommendations(valid: list[ModelOutput], total_outputs: int, analysis: ConsensusAnalysis) -> None:
    ranked = sorted(valid, key=lambda output: -_overall(output))
    analysis.best_model = ranked[0].model
    analysis.best_score = _overall(ranked[0])
    analysis.top_models = [
        {
            "model": output.model,
            "score": _overall(output),
            "reason": _rank_reason(_overall(output), rank),
            "strengths": _strengths(output.scores),
        }
        for rank, output in enumerate(ranked[:3])
    ]

    failure_rate = (total_outputs - len(valid)) / total_outputs * 100
    if failure_rate >= 50:
        analysis.warnings.append(f"{round(failure_rate)}% of models failed to produce valid JSON")
    if analysis.best_score < 60:
        analysis.warnings.append("Best model quality is below recommended threshold (60/100)")
    if len(ranked) >= 3:
        consensus = [output.scores.consensus if output.scores else 0 for output in ranked]
        if sum(consensus) / len(consensus) < 50:
            analysis.warnings.append("Low consensus among models - results may vary significantly")
        if all(_overall(output) < 70 for output in ranked[:3]):
            analysis.warnings.append("All models struggled with this document - consider refining prompts")

    success_rate = round(len(valid) / total_outputs * 100)
    top_scores = [entry["score"] for entry in analysis.top_models]
    avg_top = sum(top_scores) / len(top_scores)
    if success_rate >= 80 and avg_top >= 80:
        analysis.summary = f"Excellent results: {success_rate}% success rate, average top-3 score: {round(avg_top)}/100"
    elif success_rate >= 60 and avg_top >= 70:
        analysis.summary = f"Good results: {success_rate}% success rate, average top-3 score: {round(avg_top)}/100"
    elif success_rate >= 40:
        analysis.summary = f"Moderate results: {success_rate}% success rate, consider using stronger models"
    else:
        analysis.summary = f"Poor results: {success_rate}% success rate, prompt refinement recommended"


def _single_model_analysis(output: ModelOutput) -> ConsensusAnalysis:
    paths = list(dict.fromkeys(extract_field_paths(output.data)))
    return ConsensusAnalysis(
        agreed_fields=[{"field": path, "agreement_percent": 100} for path in paths],
        total_unique_fields=len(paths),
        best_model=output.model,
        best_score=_overall(output),
        top_models=[
            {
                "model": output.model,
                "score": _overall(output),
                "reason": "Only model with valid output",
                "strengths": _strengths(output.scores) if output.scores else [],
            }
        ],
        warnings=["Only one model succeeded - no cross-validation possible"],
        summary="Single model output - consensus analysis not available",
    )


def _rank_reason(score: int, rank: int) -> str:
    if rank == 0:
        if score >= 90:
            return "Exceptional quality with highest consistency and completeness"
        if score >= 80:
            return "Highest quality score with strong structural consistency"
        if score >= 70:
            return "Best among tested models with good overall quality"
        return "Highest score but quality could be improved"
    if rank == 1:
        return "Strong second choice with good consensus agreement"
    return "Reliable extraction with acceptable quality"


def _strengths(scores: QualityScores | None) -> list[str]:
    if scores is None:
        return []
    strengths = []
    if scores.syntax >= 90:
        strengths.append("Perfect JSON syntax")
    if scores.structural >= 85:
        strengths.append("Excellent structure")
    if scores.completeness >= 85:
        strengths.append("High completeness")
    if scores.content >= 85:
        strengths.append("Quality content extraction")
    if scores.consensus >= 85:
        strengths.append("Strong consensus with other models")
    return strengths or ["Functional output"]


def _overall(output: ModelOutput) -> int:
    return output.scores.overall if output.scores else 0

