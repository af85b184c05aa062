"""
Error taxonomy for grading-run reconciliation.

Validation errors are raised before anything is appended to a run store, so a
failed commit never leaves a partial run behind. Derivation functions (grade
policy, confidence policy, evidence density, page notes) never raise on
well-typed input.
"""

from __future__ import annotations

from typing import Any


class GradeLedgerError(Exception):
    """Base exception for all gradeledger errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidVerdictPayload(GradeLedgerError):
    """The grader document does not have the expected structural shape."""


class MalformedCriterionCode(GradeLedgerError):
    """A criterion code does not match ``[PMD]\\d{1,2}``.

    Raised only internally; ingestion converts it into a warning and drops the row.
    """


class UnknownCriterionCode(GradeLedgerError):
    """An override or clear targeted a code absent from the run's decisions."""


class EmptyFeedbackText(GradeLedgerError):
    """A run or feedback edit was committed with blank feedback text."""


class DuplicateRunId(GradeLedgerError):
    """A run id was appended twice for the same submission."""


class RunNotFound(GradeLedgerError):
    """No run with the requested id exists for the submission."""


class SubmissionMismatch(GradeLedgerError):
    """A run built for one submission was appended to another submission's history."""


class ConcurrentAppendConflict(GradeLedgerError):
    """Two appends raced on one submission.

    The store assumes callers serialize appends per submission and never raises
    this itself; it exists so callers holding a lock can report a lost race.
    """
