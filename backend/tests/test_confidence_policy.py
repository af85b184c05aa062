from __future__ import annotations

import sys
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from gradeledger.models import Citation, CriterionDecision, Decision
from gradeledger.services.confidence_policy import (
    ConfidenceWeights,
    clamp01,
    compose,
    evidence_score,
)
from gradeledger.services.evidence_density import analyze


def _cited(code: str, decision: Decision = Decision.achieved, pages: tuple[int, ...] = (2,)) -> CriterionDecision:
    return CriterionDecision(
        code=code,
        decision=decision,
        rationale="Clear analysis.",
        evidence=tuple(
            Citation(page=page, quoted_text="evidence text here", word_count=40) for page in pages
        ),
    )


def _uncited(code: str, decision: Decision) -> CriterionDecision:
    return CriterionDecision(code=code, decision=decision, rationale="")


class ConfidencePolicyTestCase(unittest.TestCase):
    def test_well_evidenced_run_is_not_capped(self) -> None:
        rows = [_cited("P1", pages=(2, 3)), _cited("P2", pages=(4, 5)), _cited("M1", pages=(6, 7))]
        result = compose(0.9, rows, analyze(rows).summary, 0.99)
        self.assertFalse(result.was_capped)
        self.assertEqual(result.caps_applied, ())
        self.assertEqual(result.final_confidence, result.raw_confidence_before_caps)
        self.assertGreater(result.bonuses["allCriteriaCitedBonus"], 0)
        self.assertGreater(result.bonuses["extractionHighConfidenceBonus"], 0)
        self.assertEqual(result.penalties["missingEvidencePenalty"], 0)

    def test_low_extraction_confidence_caps_final(self) -> None:
        rows = [_cited("P1", pages=(2, 3)), _cited("P2", pages=(4, 5))]
        result = compose(0.95, rows, analyze(rows).summary, 0.2)
        names = [cap.name for cap in result.caps_applied]
        self.assertIn("extraction_confidence_cap", names)
        self.assertTrue(result.was_capped)
        self.assertLessEqual(result.final_confidence, round(0.35 + 0.6 * 0.2, 3))
        self.assertGreater(result.penalties["lowExtractionConfidencePenalty"], 0)
        self.assertTrue(any("Extraction confidence" in reason for reason in result.reasons))

    def test_achieved_without_evidence_cap(self) -> None:
        rows = [_cited("P1"), _uncited("P2", Decision.achieved)]
        result = compose(0.95, rows, analyze(rows).summary, 1.0)
        names = [cap.name for cap in result.caps_applied]
        self.assertIn("achieved_without_evidence_cap", names)
        self.assertLessEqual(result.final_confidence, 0.4)
        self.assertEqual(result.penalties["achievedWithoutEvidencePenalty"], 0.2)
        self.assertEqual(result.signals["achievedWithoutEvidenceCount"], 1)

    def test_unclear_rows_use_low_proxy(self) -> None:
        rows = [_cited("P1", Decision.unclear), _cited("P2", Decision.achieved)]
        result = compose(0.5, rows, analyze(rows).summary, 1.0)
        self.assertAlmostEqual(result.criterion_average_confidence, round((0.35 + 0.8) / 2, 3))
        self.assertGreater(result.penalties["unclearRatioPenalty"], 0)

    def test_provided_row_confidence_is_used(self) -> None:
        rows = [
            CriterionDecision(code="P1", decision=Decision.achieved, confidence=0.2),
            CriterionDecision(code="P2", decision=Decision.achieved, confidence=0.6),
        ]
        result = compose(0.5, rows, analyze(rows).summary, 1.0)
        self.assertAlmostEqual(result.criterion_average_confidence, 0.4)
        self.assertEqual(result.signals["lowCriterionConfidenceCount"], 1)

    def test_no_rows_fall_back_to_model_confidence(self) -> None:
        result = compose(0.7, [], None, 1.0)
        self.assertEqual(result.criterion_average_confidence, 0.7)
        self.assertEqual(result.bonuses["allCriteriaCitedBonus"], 0)

    def test_bounds_hold_for_hostile_inputs(self) -> None:
        rows = [_uncited("P1", Decision.achieved), _uncited("M1", Decision.unclear)]
        for model, extraction in [
            (float("nan"), float("nan")),
            (5.0, -3.0),
            (-1.0, 2.0),
            ("abc", None),
            (1.0, 0.0),
            (0.0, 1.0),
        ]:
            result = compose(model, rows, analyze(rows).summary, extraction)
            self.assertGreaterEqual(result.final_confidence, 0.0)
            self.assertLessEqual(result.final_confidence, 1.0)
            self.assertLessEqual(result.final_confidence, result.raw_confidence_before_caps)

    def test_evidence_score_is_monotonic_and_saturates(self) -> None:
        previous = 0.0
        for citations in range(0, 40):
            score = evidence_score(citations, citations * 30)
            self.assertGreaterEqual(score, previous)
            self.assertLessEqual(score, 1.0)
            previous = score
        self.assertLess(evidence_score(8, 240), 2 * evidence_score(4, 120))

    def test_weights_are_renormalized(self) -> None:
        weights = ConfidenceWeights(model=2, criterion=1, evidence=1, extraction=0).normalized()
        self.assertAlmostEqual(weights.model + weights.criterion + weights.evidence + weights.extraction, 1.0)
        self.assertAlmostEqual(weights.model, 0.5)
        fallback = ConfidenceWeights(0, 0, 0, 0).normalized()
        self.assertEqual(fallback, ConfidenceWeights())

    def test_band_cap_penalty(self) -> None:
        rows = [_cited("P1")]
        plain = compose(0.8, rows, analyze(rows).summary, 1.0)
        capped = compose(0.8, rows, analyze(rows).summary, 1.0, band_cap_was_capped=True)
        self.assertEqual(capped.penalties["bandCapPenalty"], 0.04)
        self.assertLess(capped.raw_confidence_before_caps, plain.raw_confidence_before_caps)

    def test_clamp01(self) -> None:
        self.assertEqual(clamp01(float("inf")), 0.0)
        self.assertEqual(clamp01("0.5"), 0.5)
        self.assertEqual(clamp01(7), 1.0)


if __name__ == "__main__":
    unittest.main()
