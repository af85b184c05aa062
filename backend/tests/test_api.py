from __future__ import annotations

import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from gradeledger.main import create_app


GRADING_PAYLOAD = {
    "overallGradeWord": "MERIT",
    "feedbackText": "Clear plan with a few gaps.",
    "confidenceSignals": {"gradingConfidence": 0.8, "extractionConfidence": 0.9},
    "criterionChecks": [
        {
            "code": "P1",
            "decision": "ACHIEVED",
            "rationale": "Objectives stated.",
            "evidence": [{"page": 2, "quote": "The aim of the project is"}],
        },
        {
            "code": "P2",
            "decision": "NOT_ACHIEVED",
            "rationale": "No stakeholder analysis.",
            "evidence": [{"page": 4, "quote": "stakeholders"}],
        },
        {
            "code": "M2",
            "decision": "ACHIEVED",
            "rationale": "Risks ranked.",
            "evidence": [
                {"page": 3, "quote": "risk register"},
                {"page": 3, "quote": "mitigation plan"},
                {"page": 5, "quote": "contingency budget"},
            ],
        },
        {"code": "Z1", "decision": "ACHIEVED"},
    ],
}


class APITestCase(unittest.TestCase):
    def _client(self) -> TestClient:
        return TestClient(create_app())

    def _grade(self, client: TestClient, submission_id: str = "sub-1") -> dict:
        response = client.post(
            f"/api/v1/submissions/{submission_id}/runs",
            json=GRADING_PAYLOAD,
            headers={"X-Audit-Actor": "Grader Bot"},
        )
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_health(self) -> None:
        with self._client() as client:
            response = client.get("/api/v1/health")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"status": "ok", "submissions": 0})

    def test_grade_returns_camel_case_run_and_warnings(self) -> None:
        with self._client() as client:
            body = self._grade(client)
            run = body["run"]
            self.assertEqual(run["overallGrade"], "REFER")
            self.assertEqual(run["createdBy"], "Grader Bot")
            self.assertEqual(run["gradePolicy"]["capReason"], "CAPPED_DUE_TO_MISSING_PASS")
            self.assertEqual(run["gradePolicy"]["criteriaBandCap"]["missing"]["pass"], ["P2"])
            self.assertIn("finalConfidence", run["confidencePolicy"])
            self.assertEqual(run["evidenceDensity"]["summary"]["criteriaCount"], 3)
            self.assertEqual([w["kind"] for w in body["warnings"]], ["MalformedCriterionCode"])

    def test_invalid_payload_is_rejected(self) -> None:
        with self._client() as client:
            response = client.post("/api/v1/submissions/sub-1/runs", json={"overallGrade": "PASS"})
            self.assertEqual(response.status_code, 400)
            self.assertEqual(client.get("/api/v1/submissions/sub-1/runs").json()["items"], [])

    def test_override_flow_and_history(self) -> None:
        with self._client() as client:
            run_id = self._grade(client)["run"]["id"]

            response = client.post(
                f"/api/v1/submissions/sub-1/runs/{run_id}/overrides",
                json={"code": "P2", "finalDecision": "ACHIEVED", "reasonCode": "ASSESSOR_JUDGEMENT"},
                headers={"X-Audit-Actor": "Assessor A"},
            )
            self.assertEqual(response.status_code, 200)
            body = response.json()
            self.assertEqual(body["override"]["modelDecision"], "NOT_ACHIEVED")
            self.assertEqual(body["override"]["appliedBy"], "Assessor A")
            self.assertEqual(body["run"]["overallGrade"], "MERIT")
            self.assertEqual(body["run"]["parentRunId"], run_id)

            latest = client.get("/api/v1/submissions/sub-1/runs/latest").json()
            self.assertEqual(latest["id"], body["run"]["id"])
            original = client.get(f"/api/v1/submissions/sub-1/runs/{run_id}").json()
            self.assertEqual(original["overallGrade"], "REFER")
            self.assertEqual(original["overrides"], [])

            history = client.get("/api/v1/submissions/sub-1/runs").json()
            self.assertEqual([item["id"] for item in history["items"]], [body["run"]["id"], run_id])
            self.assertEqual(history["items"][0]["overrideCount"], 1)

            diff = client.get("/api/v1/submissions/sub-1/rerun-integrity").json()
            self.assertTrue(diff["changed"])
            self.assertIn("Grade changed: REFER -> MERIT", diff["deltas"])

            cleared = client.delete(
                f"/api/v1/submissions/sub-1/runs/{body['run']['id']}/overrides/P2"
            ).json()
            self.assertEqual(cleared["overallGrade"], "REFER")
            self.assertEqual(cleared["createdBy"], "Assessor")

    def test_override_errors(self) -> None:
        with self._client() as client:
            run_id = self._grade(client)["run"]["id"]
            unknown_code = client.post(
                f"/api/v1/submissions/sub-1/runs/{run_id}/overrides",
                json={"code": "D9", "finalDecision": "ACHIEVED", "reasonCode": "OTHER"},
            )
            self.assertEqual(unknown_code.status_code, 404)
            bad_reason = client.post(
                f"/api/v1/submissions/sub-1/runs/{run_id}/overrides",
                json={"code": "P2", "finalDecision": "ACHIEVED", "reasonCode": "BECAUSE"},
            )
            self.assertEqual(bad_reason.status_code, 422)
            missing_run = client.delete("/api/v1/submissions/sub-1/runs/r_nope/overrides/P2")
            self.assertEqual(missing_run.status_code, 404)

    def test_feedback_edit_and_render_payload(self) -> None:
        with self._client() as client:
            run_id = self._grade(client)["run"]["id"]
            empty = client.patch(
                f"/api/v1/submissions/sub-1/runs/{run_id}/feedback", json={"feedbackText": "   "}
            )
            self.assertEqual(empty.status_code, 400)

            edited = client.patch(
                f"/api/v1/submissions/sub-1/runs/{run_id}/feedback",
                json={"feedbackText": "Revised feedback.", "studentName": "Ada"},
            ).json()
            self.assertEqual(edited["feedbackText"], "Revised feedback.")

            payload = client.get(
                f"/api/v1/submissions/sub-1/runs/{edited['id']}/render-payload"
            ).json()
            self.assertEqual(payload["studentName"], "Ada")
            self.assertEqual(payload["overallGrade"], "REFER")

            notes = client.get(f"/api/v1/submissions/sub-1/runs/{edited['id']}/page-notes").json()
            self.assertEqual([note["page"] for note in notes], [2, 3, 4, 5])
            page_three = notes[1]
            self.assertEqual(page_three["criterionCode"], "M2")
            self.assertEqual(len(page_three["items"]), 2)

    def test_rerun_integrity_needs_two_runs(self) -> None:
        with self._client() as client:
            self.assertEqual(client.get("/api/v1/submissions/sub-1/rerun-integrity").status_code, 404)
            self._grade(client)
            self.assertEqual(client.get("/api/v1/submissions/sub-1/rerun-integrity").status_code, 404)
            self.assertEqual(client.get("/api/v1/submissions/sub-1/runs/latest").status_code, 200)
            self.assertEqual(client.get("/api/v1/submissions/sub-9/runs/latest").status_code, 404)


if __name__ == "__main__":
    unittest.main()
