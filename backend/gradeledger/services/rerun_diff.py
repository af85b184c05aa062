from __future__ import annotations

from loguru import logger

from ..models import AssessmentRun, PageNote, RerunDiff
from .page_notes import AUDIT_OPTIONS, project


def audit_page_notes(run: AssessmentRun) -> list[PageNote]:
    return project(
        run.criterion_decisions,
        run.page_note_context,
        overrides=run.overrides,
        options=AUDIT_OPTIONS,
    )


def _note_signature(notes: list[PageNote]) -> list[dict]:
    return [note.model_dump(mode="json") for note in notes]


def diff(older: AssessmentRun, newer: AssessmentRun) -> RerunDiff:
    """Report which rendered outputs differ between two runs of one submission."""
    deltas: list[str] = []
    if older.overall_grade != newer.overall_grade:
        deltas.append(f"Grade changed: {older.overall_grade.value} -> {newer.overall_grade.value}")
    if older.feedback_text.strip() != newer.feedback_text.strip():
        deltas.append("Feedback text changed")
    if _note_signature(audit_page_notes(older)) != _note_signature(audit_page_notes(newer)):
        deltas.append("Page notes changed")

    logger.debug("rerun diff {} -> {}: {}", older.id, newer.id, deltas or "no changes")
    return RerunDiff(
        changed=bool(deltas),
        deltas=tuple(deltas),
        older_run_id=older.id,
        newer_run_id=newer.id,
    )
