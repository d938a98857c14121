"""Heuristic quality scoring for parsed extraction outputs.

Five independent 0-100 sub-scores (syntax, structural, completeness, content,
consensus) are combined with fixed weights into an integer overall score.
Consensus depends on sibling outputs for the same document and is filled in
by a later pass; until then it holds the neutral default.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

QUALITY_WEIGHTS: dict[str, float] = {
    "syntax": 0.25,
    "structural": 0.20,
    "completeness": 0.20,
    "content": 0.20,
    "consensus": 0.15,
}
NEUTRAL_CONSENSUS_SCORE = 50.0

_STRING_NUMBER_RE = re.compile(r"^-?\d+\.?\d*$")
_DATE_KEY_HINTS = ("date", "datum", "start", "slut", "tecknat")
_DATE_PATTERNS = (
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{4}/\d{2}/\d{2}$"),
    re.compile(r"^\d{2}/\d{2}/\d{4}$"),
    re.compile(r"^\d{4}\.\d{2}\.\d{2}$"),
    re.compile(r"^\d{1,2}\s+\w+\s+\d{4}$"),
)
_CAMEL_RE = re.compile(r"[a-z][A-Z]")
_LOCALE_CHAR_RE = re.compile(r"[\u00c0-\u00d6\u00d8-\u00f6\u00f8-\u00ff]")
_CORRUPTION_RE = re.compile(r"\ufffd|[\u00c3\u00c2][\u0080-\u00bf]")
_PLACEHOLDER_PATTERNS = (
    re.compile(r"example\.com", re.IGNORECASE),
    re.compile(r"test@test\.com", re.IGNORECASE),
    re.compile(r"\[INSERT.*\]", re.IGNORECASE),
    re.compile(r"\[TODO.*\]", re.IGNORECASE),
    re.compile(r"lorem ipsum", re.IGNORECASE),
)
_PATH_TOKEN_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


@dataclass(slots=True)
class QualityScores:
    """Sub-scores in [0, 100] and their weighted, rounded combination."""

    syntax: float
    structural: float
    completeness: float
    content: float
    consensus: float = NEUTRAL_CONSENSUS_SCORE
    overall: int = field(init=False)

    def __post_init__(self) -> None:
        self.overall = overall_score(
            syntax=self.syntax,
            structural=self.structural,
            completeness=self.completeness,
            content=self.content,
            consensus=self.consensus,
        )

    def with_consensus(self, consensus: float) -> QualityScores:
        return QualityScores(
            syntax=self.syntax,
            structural=self.structural,
            completeness=self.completeness,
            content=self.content,
            consensus=_clamp(consensus),
        )


@dataclass(slots=True)
class QualityReport:
    """Scores plus the boolean flags and counters they were derived from."""

    scores: QualityScores
    flags: dict[str, bool]
    metrics: dict[str, int]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SiblingOutput:
    """A parsed output from one model for the document being compared."""

    model: str
    data: Any


def overall_score(*, syntax: float, structural: float, completeness: float, content: float, consensus: float) -> int:
    """Weighted sum of the five sub-scores, rounded half up."""

    weighted = (
        syntax * QUALITY_WEIGHTS["syntax"]
        + structural * QUALITY_WEIGHTS["structural"]
        + completeness * QUALITY_WEIGHTS["completeness"]
        + content * QUALITY_WEIGHTS["content"]
        + consensus * QUALITY_WEIGHTS["consensus"]
    )
    return int(math.floor(weighted + 0.5))


def calculate_quality(raw_text: str, parsed: Any, siblings: list[SiblingOutput] | None = None) -> QualityReport:
    """Score one parsed output; consensus uses ``siblings`` when given, else the neutral default."""

    scores = QualityScores(
        syntax=score_syntax(raw_text, parsed),
        structural=score_structure(parsed),
        completeness=score_completeness(parsed),
        content=score_content(parsed),
        consensus=score_consensus(parsed, siblings or []),
    )
    return QualityReport(scores=scores, flags=extract_flags(raw_text, parsed), metrics=extract_metrics(parsed))


def score_syntax(raw_text: str, parsed: Any) -> float:
    score = 50.0
    if "```" not in raw_text:
        score += 10

    trimmed = raw_text.strip()
    first_brace = trimmed.find("{")
    last_brace = trimmed.rfind("}")
    if first_brace == 0 and last_brace == len(trimmed) - 1:
        score += 10
    elif first_brace >= 0 and last_brace > 0:
        score += 5

    string_numbers = count_string_numbers(parsed)
    if string_numbers == 0:
        score += 15
    elif string_numbers <= 2:
        score += 8
    elif string_numbers <= 5:
        score += 3

    # quotes, commas and brackets are already correct once the text parsed
    score += 15
    return _clamp(score)


def score_structure(data: Any) -> float:
    if not isinstance(data, dict):
        return 0.0
    score = 20.0

    depth = max_depth(data)
    if depth >= 3:
        score += 20
    elif depth >= 2:
        score += 15
    elif depth >= 1:
        score += 8

    variance = depth_variance(data)
    if variance <= 1:
        score += 15
    elif variance <= 2:
        score += 10
    elif variance <= 3:
        score += 5

    empty_strings = count_empty_strings(data)
    if empty_strings == 0:
        score += 15
    elif empty_strings <= 3:
        score += 10
    else:
        score += 5

    arrays_found, proper_arrays = _array_usage(data)
    score += (proper_arrays / arrays_found) * 15 if arrays_found else 8

    score += _nested_object_ratio(data) * 15
    return _clamp(score)


def score_completeness(data: Any) -> float:
    top_level, populated, total = count_fields(data)
    score = min(top_level / 5 * 40, 40)

    depth = max_depth(data)
    if depth >= 4:
        score += 20
    elif depth >= 3:
        score += 15
    elif depth >= 2:
        score += 10
    elif depth >= 1:
        score += 5

    if total:
        score += populated / total * 30

    total_arrays, empty_arrays = count_arrays(data)
    score += (total_arrays - empty_arrays) / total_arrays * 10 if total_arrays else 5
    return _clamp(score)


def score_content(data: Any) -> float:
    score = 0.0

    total_dates, valid_dates, _ = analyze_dates(data)
    score += valid_dates / total_dates * 20 if total_dates else 10

    numbers = [value for value in _walk_leaves(data) if _is_number(value)]
    if numbers:
        reasonable = sum(1 for value in numbers if _is_reasonable_number(value))
        score += reasonable / len(numbers) * 20
    else:
        score += 10

    strings = [value for value in _walk_leaves(data) if isinstance(value, str)]
    if strings:
        score += sum(1 for value in strings if len(value.strip()) >= 2) / len(strings) * 20

    score += naming_consistency(field_names(data)) * 20 / 100

    locale_found = any(_LOCALE_CHAR_RE.search(value) for value in strings)
    corrupted = any(_CORRUPTION_RE.search(value) for value in strings)
    if locale_found and not corrupted:
        score += 10
    elif not locale_found and not corrupted:
        score += 5

    score += 3 if has_placeholder_values(data) else 10
    return _clamp(score)


def score_consensus(data: Any, siblings: list[SiblingOutput]) -> float:
    """Agreement of ``data`` with sibling outputs (the list includes the output itself)."""

    if len(siblings) < 2:
        return NEUTRAL_CONSENSUS_SCORE

    score = _field_agreement(extract_field_paths(data), siblings) * 30 / 100
    score += _value_agreement(data, siblings) * 40 / 100
    score += _structure_similarity(data, siblings) * 20 / 100

    own_populated = count_fields(data)[1]
    best_populated = max([count_fields(sibling.data)[1] for sibling in siblings] + [1])
    score += min(own_populated / best_populated, 1) * 10
    return _clamp(score)


def extract_flags(raw_text: str, data: Any) -> dict[str, bool]:
    trimmed = raw_text.strip()
    return {
        "has_markdown": "```" in raw_text,
        "has_extra_text": not trimmed.startswith("{") or not trimmed.endswith("}"),
        "has_string_numbers": count_string_numbers(data) > 0,
        "has_inconsistent_dates": analyze_dates(data)[2],
        "has_empty_values": count_empty_strings(data) > 0,
    }


def extract_metrics(data: Any) -> dict[str, int]:
    top_level, populated, total = count_fields(data)
    return {
        "top_level_fields": top_level,
        "populated_fields": populated,
        "total_fields": total,
        "max_depth": max_depth(data),
        "array_count": count_arrays(data)[0],
        "null_count": count_nulls(data),
    }


def count_nulls(data: Any) -> int:
    """Number of null values anywhere in the structure."""

    if data is None:
        return 1
    if isinstance(data, dict):
        return sum(count_nulls(value) for value in data.values())
    if isinstance(data, list):
        return sum(count_nulls(item) for item in data)
    return 0


def count_string_numbers(data: Any) -> int:
    return sum(1 for value in _walk_leaves(data) if isinstance(value, str) and _STRING_NUMBER_RE.match(value.strip()))


def count_empty_strings(data: Any) -> int:
    return sum(1 for value in _walk_leaves(data) if value == "")


def max_depth(data: Any, current: int = 0) -> int:
    if isinstance(data, dict):
        return max((max_depth(value, current + 1) for value in data.values()), default=current)
    if isinstance(data, list):
        return max(
            (max_depth(item, current + 1) for item in data if item is None or isinstance(item, (dict, list))),
            default=current,
        )
    return current


def depth_variance(data: Any) -> int:
    """Spread between the shallowest and deepest leaf."""

    depths: list[int] = []

    def collect(node: Any, depth: int) -> None:
        if isinstance(node, dict) and node:
            for value in node.values():
                collect(value, depth + 1)
        elif isinstance(node, list) and node:
            for item in node:
                collect(item, depth + 1)
        else:
            depths.append(depth)

    collect(data, 0)
    return max(depths) - min(depths) if depths else 0


def count_fields(data: Any) -> tuple[int, int, int]:
    """Return (top-level keys, populated leaves, total leaves) for an object."""

    if not isinstance(data, dict):
        return 0, 0, 0
    populated = 0
    total = 0

    def traverse(node: Any) -> None:
        nonlocal populated, total
        if node is None:
            total += 1
        elif isinstance(node, list):
            total += 1
            if node:
                populated += 1
            for item in node:
                traverse(item)
        elif isinstance(node, dict):
            for value in node.values():
                traverse(value)
        else:
            total += 1
            populated += 1

    traverse(data)
    return len(data), populated, total


def count_arrays(data: Any) -> tuple[int, int]:
    total = 0
    empty = 0
    for node in _walk_containers(data):
        if isinstance(node, list):
            total += 1
            if not node:
                empty += 1
    return total, empty


def analyze_dates(data: Any) -> tuple[int, int, bool]:
    """Return (date-like fields, recognised dates, more than one date format in use)."""

    total = 0
    valid = 0
    formats: set[int] = set()

    def traverse(node: Any, key: str) -> None:
        nonlocal total, valid
        if isinstance(node, str):
            lowered = key.lower()
            if any(hint in lowered for hint in _DATE_KEY_HINTS):
                total += 1
                for index, pattern in enumerate(_DATE_PATTERNS):
                    if pattern.match(node):
                        valid += 1
                        formats.add(index)
                        break
        elif isinstance(node, dict):
            for child_key, value in node.items():
                traverse(value, str(child_key))
        elif isinstance(node, list):
            for index, item in enumerate(node):
                traverse(item, f"{key}[{index}]")

    traverse(data, "")
    return total, valid, len(formats) > 1


def field_names(data: Any) -> list[str]:
    names: list[str] = []

    def traverse(node: Any) -> None:
        if isinstance(node, dict):
            for key, value in node.items():
                names.append(str(key))
                traverse(value)

    traverse(data)
    return names


def naming_consistency(names: list[str]) -> float:
    """100 when keys follow one convention (snake_case or camelCase), 60 when mixed."""

    if not names:
        return 100.0
    has_underscores = any("_" in name for name in names)
    has_camel = any(_CAMEL_RE.search(name) for name in names)
    if not (has_underscores and has_camel):
        return 100.0
    return 60.0


def has_placeholder_values(data: Any) -> bool:
    return any(
        isinstance(value, str) and any(pattern.search(value) for pattern in _PLACEHOLDER_PATTERNS)
        for value in _walk_leaves(data)
    )


def extract_field_paths(data: Any, prefix: str = "") -> list[str]:
    """Every object key path, e.g. ``parties``, ``parties[0].name``."""

    paths: list[str] = []
    if isinstance(data, list):
        for index, item in enumerate(data):
            paths.extend(extract_field_paths(item, f"{prefix}[{index}]"))
    elif isinstance(data, dict):
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            paths.append(path)
            paths.extend(extract_field_paths(value, path))
    return paths


def value_at_path(data: Any, path: str) -> Any:
    current = data
    for key, index in _PATH_TOKEN_RE.findall(path):
        if index:
            if not isinstance(current, list) or int(index) >= len(current):
                return None
            current = current[int(index)]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
    return current


def _field_agreement(own_paths: list[str], siblings: list[SiblingOutput]) -> float:
    if not own_paths:
        return 0.0
    counts: Counter[str] = Counter()
    for sibling in siblings:
        counts.update(set(extract_field_paths(sibling.data)))
    threshold = len(siblings) * 0.5
    agreed = sum(1 for path in own_paths if counts[path] >= threshold)
    return agreed / len(own_paths) * 100


def _value_agreement(data: Any, siblings: list[SiblingOutput]) -> float:
    agreed = 0
    comparisons = 0
    for path in extract_field_paths(data):
        own_value = value_at_path(data, path)
        if own_value is None or isinstance(own_value, (dict, list)):
            continue
        others = [value_at_path(sibling.data, path) for sibling in siblings]
        comparable = [value for value in others if value is not None and not isinstance(value, (dict, list))]
        if not comparable:
            continue
        comparisons += 1
        matches = sum(1 for value in comparable if _scalar_key(value) == _scalar_key(own_value))
        if matches >= len(comparable) * 0.5:
            agreed += 1
    if comparisons == 0:
        return 50.0
    return agreed / comparisons * 100


def _structure_similarity(data: Any, siblings: list[SiblingOutput]) -> float:
    own_depth = max_depth(data)
    own_top = len(data) if isinstance(data, dict) else 0
    avg_depth = sum(max_depth(sibling.data) for sibling in siblings) / len(siblings)
    avg_top = sum(len(sibling.data) if isinstance(sibling.data, dict) else 0 for sibling in siblings) / len(siblings)
    depth_similarity = 100 - min(abs(own_depth - avg_depth) * 20, 100)
    top_similarity = 100 - min(abs(own_top - avg_top) * 10, 100)
    return (depth_similarity + top_similarity) / 2


def _scalar_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _nested_object_ratio(data: dict[str, Any]) -> float:
    if not data:
        return 0.0
    nested = sum(1 for value in data.values() if isinstance(value, dict))
    return nested / len(data)


def _array_usage(data: Any) -> tuple[int, int]:
    found = 0
    proper = 0
    for node in _walk_containers(data):
        if isinstance(node, list):
            found += 1
            if all(not isinstance(item, str) or "," not in item for item in node):
                proper += 1
    return found, proper


def _walk_containers(data: Any):
    if isinstance(data, (dict, list)):
        yield data
        children = data.values() if isinstance(data, dict) else data
        for child in children:
            yield from _walk_containers(child)


def _walk_leaves(data: Any):
    if isinstance(data, dict):
        for value in data.values():
            yield from _walk_leaves(value)
    elif isinstance(data, list):
        for item in data:
            yield from _walk_leaves(item)
    else:
        yield data


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_reasonable_number(value: int | float) -> bool:
    # JSON integers are unbounded; compare them exactly instead of converting to float.
    if isinstance(value, int):
        return abs(value) < 10**15
    return math.isfinite(value) and abs(value) < 1e15


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


__all__ = [
    "NEUTRAL_CONSENSUS_SCORE",
    "QUALITY_WEIGHTS",
    "QualityReport",
    "QualityScores",
    "SiblingOutput",
    "calculate_quality",
    "count_nulls",
    "extract_field_paths",
    "overall_score",
    "score_completeness",
    "score_consensus",
    "score_content",
    "score_structure",
    "score_syntax",
    "value_at_path",
]
