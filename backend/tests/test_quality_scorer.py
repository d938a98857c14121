"""Unit tests for heuristic quality scoring."""

import unittest

from docbench.scoring import (
    QUALITY_WEIGHTS,
    QualityScores,
    SiblingOutput,
    calculate_quality,
    count_nulls,
    extract_field_paths,
    overall_score,
    score_consensus,
    value_at_path,
)
from docbench.scoring.quality import (
    analyze_dates,
    extract_flags,
    extract_metrics,
    has_placeholder_values,
    naming_consistency,
    score_content,
    score_structure,
    score_syntax,
)


class OverallScoreTests(unittest.TestCase):
    def test_weights_sum_to_one(self) -> None:
        self.assertAlmostEqual(sum(QUALITY_WEIGHTS.values()), 1.0)

    def test_weighted_combination(self) -> None:
        self.assertEqual(
            overall_score(syntax=90, structural=80, completeness=70, content=60, consensus=50),
            72,
        )
        self.assertEqual(overall_score(syntax=100, structural=0, completeness=0, content=0, consensus=0), 25)

    def test_scores_recompute_overall_on_consensus_change(self) -> None:
        scores = QualityScores(syntax=100, structural=100, completeness=100, content=100)
        self.assertEqual(scores.consensus, 50.0)

        rescored = scores.with_consensus(100)

        self.assertEqual(rescored.overall, 100)
        self.assertLess(scores.overall, rescored.overall)

    def test_consensus_is_clamped(self) -> None:
        scores = QualityScores(syntax=0, structural=0, completeness=0, content=0).with_consensus(250)

        self.assertEqual(scores.consensus, 100.0)


class SubScoreTests(unittest.TestCase):
    def test_clean_syntax_scores_full_marks(self) -> None:
        self.assertEqual(score_syntax('{"a": 1}', {"a": 1}), 100.0)

    def test_fence_and_string_numbers_cost_syntax_points(self) -> None:
        fenced = score_syntax('```json\n{"a": 1}\n```', {"a": 1})
        stringly = score_syntax('{"a": "12", "b": "3.5"}', {"a": "12", "b": "3.5"})

        self.assertEqual(fenced, 85.0)
        self.assertEqual(stringly, 93.0)

    def test_structure_of_non_object_is_zero(self) -> None:
        self.assertEqual(score_structure([1, 2, 3]), 0.0)

    def test_all_sub_scores_are_bounded(self) -> None:
        data = {
            "party": {"name": "Åkesson Bygg AB", "org_nr": "556677-8899"},
            "signed_date": "2024-01-15",
            "lines": [{"sku": "A", "amount": 10.5}, {"sku": "B", "amount": 1e20}],
            "note": "",
        }

        report = calculate_quality('{"x": 1}', data)

        for value in (
            report.scores.syntax,
            report.scores.structural,
            report.scores.completeness,
            report.scores.content,
            report.scores.consensus,
        ):
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 100.0)
        self.assertEqual(report.scores.consensus, 50.0)

    def test_integer_beyond_float_range_counts_as_unreasonable(self) -> None:
        huge = int("9" * 400)
        normal = score_content({"party": "Acme AB", "total": 1200})

        oversized = score_content({"party": "Acme AB", "total": huge})
        raw = '{"party": "Acme AB", "total": ' + "9" * 400 + "}"
        report = calculate_quality(raw, {"party": "Acme AB", "total": huge})

        self.assertAlmostEqual(normal - oversized, 20.0)
        self.assertEqual(report.scores.content, oversized)
        self.assertEqual(score_content({"total": 10**15}), score_content({"total": huge}))


class FlagAndMetricTests(unittest.TestCase):
    def test_flags(self) -> None:
        flags = extract_flags(
            '```json\n{"start_date": "2024-01-15", "end_date": "15/01/2024", "n": "7", "x": ""}\n```',
            {"start_date": "2024-01-15", "end_date": "15/01/2024", "n": "7", "x": ""},
        )

        self.assertEqual(
            flags,
            {
                "has_markdown": True,
                "has_extra_text": True,
                "has_string_numbers": True,
                "has_inconsistent_dates": True,
                "has_empty_values": True,
            },
        )

    def test_metrics(self) -> None:
        metrics = extract_metrics({"a": None, "b": {"c": 1, "d": [1, 2]}})

        self.assertEqual(
            metrics,
            {
                "top_level_fields": 2,
                "populated_fields": 4,
                "total_fields": 5,
                "max_depth": 2,
                "array_count": 1,
                "null_count": 1,
            },
        )

    def test_count_nulls(self) -> None:
        self.assertEqual(count_nulls({"a": None, "b": [None, 1], "c": {"d": None}}), 3)
        self.assertEqual(count_nulls({"a": 0, "b": ""}), 0)

    def test_analyze_dates_only_looks_at_date_like_keys(self) -> None:
        self.assertEqual(analyze_dates({"signed_date": "2024-01-15", "name": "15/01/2024"}), (1, 1, False))

    def test_naming_consistency(self) -> None:
        self.assertEqual(naming_consistency(["first_name", "last_name"]), 100.0)
        self.assertEqual(naming_consistency(["firstName", "lastName"]), 100.0)
        self.assertEqual(naming_consistency(["first_name", "lastName"]), 60.0)

    def test_placeholder_values(self) -> None:
        self.assertTrue(has_placeholder_values({"email": "john@example.com"}))
        self.assertTrue(has_placeholder_values({"note": "[TODO fill in]"}))
        self.assertFalse(has_placeholder_values({"email": "anna@bygg.se"}))


class FieldPathTests(unittest.TestCase):
    def test_extract_field_paths(self) -> None:
        data = {"parties": [{"name": "A"}, {"name": "B"}], "total": 3}

        self.assertEqual(
            extract_field_paths(data),
            ["parties", "parties[0].name", "parties[1].name", "total"],
        )

    def test_value_at_path(self) -> None:
        data = {"parties": [{"name": "A"}, {"name": "B"}], "total": 3}

        self.assertEqual(value_at_path(data, "parties[1].name"), "B")
        self.assertEqual(value_at_path(data, "total"), 3)
        self.assertIsNone(value_at_path(data, "parties[5].name"))
        self.assertIsNone(value_at_path(data, "total.nested"))


class ConsensusScoreTests(unittest.TestCase):
    def test_neutral_without_enough_siblings(self) -> None:
        data = {"a": 1}

        self.assertEqual(score_consensus(data, []), 50.0)
        self.assertEqual(score_consensus(data, [SiblingOutput(model="m/1", data=data)]), 50.0)

    def test_identical_outputs_agree_fully(self) -> None:
        data = {"party": "Acme", "total": 10}
        siblings = [SiblingOutput(model="m/1", data=data), SiblingOutput(model="m/2", data=dict(data))]

        self.assertEqual(score_consensus(data, siblings), 100.0)

    def test_outlier_scores_lower_than_majority(self) -> None:
        majority = {"party": "Acme", "total": 10}
        outlier = {"vendor": "Other", "sum": 99}
        siblings = [
            SiblingOutput(model="m/1", data=majority),
            SiblingOutput(model="m/2", data=dict(majority)),
            SiblingOutput(model="m/3", data=outlier),
        ]

        self.assertGreater(score_consensus(majority, siblings), score_consensus(outlier, siblings))


if __name__ == "__main__":
    unittest.main()
