from __future__ import annotations

# Structural envelope only. Row-level problems (bad codes, bad decisions, bad
# pages) are recovered from in services.ingest and reported as warnings.
GRADING_VERDICT_JSON_SCHEMA: dict = {
    "type": "object",
    "required": ["criterionChecks"],
    "properties": {
        "overallGradeWord": {"type": ["string", "null"]},
        "overallGrade": {"type": ["string", "null"]},
        "resubmissionRequired": {"type": ["boolean", "null"]},
        "feedbackText": {"type": ["string", "null"]},
        "feedbackSummary": {"type": ["string", "null"]},
        "feedbackBullets": {"type": ["array", "null"]},
        "confidence": {"type": ["number", "null"]},
        "confidenceSignals": {
            "type": "object",
            "properties": {
                "extractionConfidence": {"type": ["number", "null"]},
                "gradingConfidence": {"type": ["number", "null"]},
            },
        },
        "referenceContextSnapshot": {"type": ["object", "null"]},
        "pageNoteContext": {"type": ["object", "null"]},
        "criteria": {"type": ["array", "null"]},
        "criterionChecks": {"type": "array"},
    },
}
