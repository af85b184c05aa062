from __future__ import annotations

import itertools
import threading
import uuid
from datetime import UTC, datetime

from loguru import logger

from .errors import DuplicateRunId, EmptyFeedbackText, SubmissionMismatch
from .models import AssessmentRun


def now_utc() -> datetime:
    return datetime.now(UTC)


def new_run_id() -> str:
    return f"r_{uuid.uuid4().hex}"


class AssessmentRunStore:
    """Append-only run history per submission.

    Runs are frozen models, so whatever ``by_id`` returns is the exact record
    that was appended. Callers serialize appends for one submission (see
    ``services.submission_locks``); the internal lock only keeps the indexes
    consistent with each other.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sequence = itertools.count()
        self._runs: dict[str, list[tuple[datetime, int, AssessmentRun]]] = {}
        self._index: dict[str, dict[str, AssessmentRun]] = {}

    def append(self, submission_id: str, run: AssessmentRun) -> AssessmentRun:
        if run.submission_id != submission_id:
            raise SubmissionMismatch(
                f"Run {run.id} belongs to submission {run.submission_id}, not {submission_id}.",
                {"submission_id": submission_id, "run_id": run.id, "run_submission_id": run.submission_id},
            )
        if not run.feedback_text.strip():
            raise EmptyFeedbackText(
                "Feedback text must not be empty.",
                {"submission_id": submission_id, "run_id": run.id},
            )
        with self._lock:
            by_id = self._index.setdefault(submission_id, {})
            if run.id in by_id:
                raise DuplicateRunId(
                    f"Run {run.id} already exists for submission {submission_id}.",
                    {"submission_id": submission_id, "run_id": run.id},
                )
            entries = self._runs.setdefault(submission_id, [])
            entries.append((run.created_at, next(self._sequence), run))
            entries.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
            by_id[run.id] = run

        logger.bind(submission_id=submission_id, run_id=run.id).info(
            "appended run (grade={}, overrides={})", run.overall_grade.value, len(run.overrides)
        )
        return run

    def history(self, submission_id: str) -> list[AssessmentRun]:
        with self._lock:
            return [entry[2] for entry in self._runs.get(submission_id, [])]

    def latest(self, submission_id: str) -> AssessmentRun | None:
        runs = self.history(submission_id)
        return runs[0] if runs else None

    def previous(self, submission_id: str) -> AssessmentRun | None:
        runs = self.history(submission_id)
        return runs[1] if len(runs) > 1 else None

    def by_id(self, submission_id: str, run_id: str) -> AssessmentRun | None:
        with self._lock:
            return self._index.get(submission_id, {}).get(run_id)

    def submission_count(self) -> int:
        with self._lock:
            return len(self._runs)
