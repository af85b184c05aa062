from __future__ import annotations

import sys
import unittest
from datetime import UTC, datetime, timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from gradeledger.errors import DuplicateRunId, EmptyFeedbackText, SubmissionMismatch
from gradeledger.models import ConfidenceSignals, CriterionDecision, Decision
from gradeledger.repositories import AssessmentRunStore
from gradeledger.services.assessment import build_run

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=UTC)


def _run(feedback: str = "Feedback.", created_at: datetime = T0, submission_id: str = "sub-1"):
    return build_run(
        submission_id=submission_id,
        decisions=[CriterionDecision(code="P1", decision=Decision.achieved)],
        raw_overall_grade="PASS",
        resubmission_required=False,
        confidence_signals=ConfidenceSignals(),
        feedback_text=feedback,
        created_by="tester",
        created_at=created_at,
    )


class AssessmentRunStoreTestCase(unittest.TestCase):
    def test_append_only_latest_previous_and_by_id(self) -> None:
        store = AssessmentRunStore()
        run_a = store.append("sub-1", _run("First.", T0))
        run_b = store.append("sub-1", _run("Second.", T0 + timedelta(minutes=5)))

        self.assertEqual(store.latest("sub-1"), run_b)
        self.assertEqual(store.previous("sub-1"), run_a)
        self.assertIs(store.by_id("sub-1", run_a.id), run_a)
        self.assertEqual(store.by_id("sub-1", run_a.id).feedback_text, "First.")
        self.assertEqual([run.id for run in store.history("sub-1")], [run_b.id, run_a.id])

    def test_ties_on_created_at_use_insertion_order(self) -> None:
        store = AssessmentRunStore()
        first = store.append("sub-1", _run("One.", T0))
        second = store.append("sub-1", _run("Two.", T0))
        self.assertEqual(store.latest("sub-1"), second)
        self.assertEqual(store.previous("sub-1"), first)

    def test_out_of_order_created_at_sorts_newest_first(self) -> None:
        store = AssessmentRunStore()
        newer = store.append("sub-1", _run("Newer.", T0 + timedelta(hours=1)))
        older = store.append("sub-1", _run("Older.", T0))
        self.assertEqual(store.latest("sub-1"), newer)
        self.assertEqual(store.previous("sub-1"), older)

    def test_rejects_empty_feedback_and_duplicate_ids(self) -> None:
        store = AssessmentRunStore()
        with self.assertRaises(EmptyFeedbackText):
            store.append("sub-1", _run("   "))
        self.assertEqual(store.history("sub-1"), [])

        run = store.append("sub-1", _run())
        with self.assertRaises(DuplicateRunId):
            store.append("sub-1", run)
        self.assertEqual(len(store.history("sub-1")), 1)

        foreign = _run(submission_id="sub-a")
        with self.assertRaises(SubmissionMismatch):
            store.append("sub-b", foreign)
        self.assertIsNone(store.latest("sub-b"))
        self.assertEqual(store.submission_count(), 1)

    def test_unknown_lookups_return_none(self) -> None:
        store = AssessmentRunStore()
        self.assertIsNone(store.latest("missing"))
        self.assertIsNone(store.previous("missing"))
        self.assertIsNone(store.by_id("missing", "r_x"))
        store.append("sub-1", _run())
        self.assertIsNone(store.previous("sub-1"))
        self.assertIsNone(store.by_id("sub-2", store.latest("sub-1").id))
        self.assertEqual(store.submission_count(), 1)

    def test_stored_runs_are_immutable(self) -> None:
        store = AssessmentRunStore()
        run = store.append("sub-1", _run())
        with self.assertRaises(Exception):
            run.feedback_text = "changed"
        self.assertEqual(store.latest("sub-1").feedback_text, "Feedback.")


if __name__ == "__main__":
    unittest.main()
