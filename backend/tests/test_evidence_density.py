from __future__ import annotations

import sys
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from gradeledger.models import Citation, CriterionDecision, Decision
from gradeledger.services.evidence_density import analyze


class EvidenceDensityTestCase(unittest.TestCase):
    def test_rows_include_uncited_criteria(self) -> None:
        rows = [
            CriterionDecision(
                code="P1",
                decision=Decision.achieved,
                evidence=(
                    Citation(page=5, quoted_text="a", word_count=12),
                    Citation(page=2, quoted_text="b", word_count=8),
                    Citation(page=5, quoted_text="c", word_count=3),
                ),
            ),
            CriterionDecision(code="M1", decision=Decision.not_achieved),
        ]
        report = analyze(rows)

        self.assertEqual([row.code for row in report.rows], ["P1", "M1"])
        first, second = report.rows
        self.assertEqual(first.citation_count, 3)
        self.assertEqual(first.total_words_cited, 23)
        self.assertEqual(first.page_distribution, (2, 5))
        self.assertEqual(first.page_spread, 2)
        self.assertEqual(second.citation_count, 0)
        self.assertEqual(second.page_distribution, ())

        self.assertEqual(report.summary.criteria_count, 2)
        self.assertEqual(report.summary.total_citations, 3)
        self.assertEqual(report.summary.total_words_cited, 23)
        self.assertEqual(report.summary.criteria_without_evidence, 1)

    def test_empty_decision_set(self) -> None:
        report = analyze([])
        self.assertEqual(report.rows, ())
        self.assertEqual(report.summary.criteria_count, 0)
        self.assertEqual(report.summary.criteria_without_evidence, 0)

    def test_serialized_field_names(self) -> None:
        report = analyze([CriterionDecision(code="D1", decision=Decision.unclear)])
        data = report.model_dump(mode="json", by_alias=True)
        self.assertIn("criteriaWithoutEvidence", data["summary"])
        self.assertIn("pageDistribution", data["rows"][0])


if __name__ == "__main__":
    unittest.main()
