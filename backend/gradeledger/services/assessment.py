from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from ..config import settings
from ..errors import EmptyFeedbackText, RunNotFound
from ..models import (
    AssessmentRun,
    BandCriterion,
    ConfidenceSignals,
    CriterionDecision,
    CriterionOverride,
    FeedbackEditRequest,
    FeedbackOverride,
    IngestWarning,
    OverrideRequest,
    PageNoteContext,
    RenderPayload,
    RerunDiff,
)
from ..repositories import AssessmentRunStore, new_run_id, now_utc
from .confidence_policy import compose
from .evidence_density import analyze
from .grade_policy import apply_cap, derive_band_criteria
from .ingest import parse_grading_payload
from .override_ledger import CriterionOverrideLedger
from .page_notes import PageNoteOptions, project
from .rerun_diff import diff


@dataclass(frozen=True)
class CommitResult:
    run: AssessmentRun
    warnings: tuple[IngestWarning, ...]


@dataclass(frozen=True)
class OverrideResult:
    run: AssessmentRun
    override: CriterionOverride


def merge_feedback_override(
    base: FeedbackOverride | None, update: FeedbackOverride | None
) -> FeedbackOverride | None:
    """Last write wins per field; ``None`` in ``update`` keeps the base value."""
    if base is None:
        return update
    if update is None:
        return base
    changes = {
        name: value
        for name, value in update.model_dump().items()
        if value is not None
    }
    return base.model_copy(update=changes)


def build_run(
    *,
    submission_id: str,
    decisions: Sequence[CriterionDecision],
    raw_overall_grade: Any,
    resubmission_required: bool,
    confidence_signals: ConfidenceSignals,
    feedback_text: str,
    created_by: str,
    band_criteria: Sequence[BandCriterion] = (),
    overrides: Sequence[CriterionOverride] = (),
    parent_run_id: str | None = None,
    page_note_context: PageNoteContext | None = None,
    reference_context_snapshot: dict[str, Any] | None = None,
    feedback_override: FeedbackOverride | None = None,
    ingest_warnings: Sequence[IngestWarning] = (),
    system_notes: Sequence[str] = (),
    annotated_pdf_path: str | None = None,
    created_at: datetime | None = None,
) -> AssessmentRun:
    criteria = list(band_criteria) or derive_band_criteria(decisions)
    ledger = CriterionOverrideLedger(decisions, overrides)

    grade_policy = apply_cap(
        raw_overall_grade,
        ledger.effective_decisions(),
        resubmission_required,
        criteria=criteria,
        resubmission_cap_enabled=settings.resubmission_cap_enabled,
        resubmission_cap_grade=settings.resubmission_cap_grade,
    )
    density = analyze(decisions)
    band_cap = grade_policy.criteria_band_cap
    confidence_policy = compose(
        confidence_signals.grading_confidence,
        decisions,
        density.summary,
        confidence_signals.extraction_confidence,
        band_cap_was_capped=bool(band_cap and band_cap.was_capped),
    )

    return AssessmentRun(
        id=new_run_id(),
        submission_id=submission_id,
        created_at=created_at or now_utc(),
        created_by=created_by,
        parent_run_id=parent_run_id,
        overall_grade=grade_policy.final_overall_grade,
        feedback_text=feedback_text,
        annotated_pdf_path=annotated_pdf_path,
        criterion_decisions=tuple(decisions),
        confidence_signals=confidence_signals,
        grade_policy=grade_policy,
        confidence_policy=confidence_policy,
        evidence_density=density,
        overrides=ledger.overrides,
        override_summary=ledger.summary(),
        band_criteria=tuple(criteria),
        page_note_context=page_note_context,
        reference_context_snapshot=reference_context_snapshot,
        feedback_override=feedback_override,
        ingest_warnings=tuple(ingest_warnings),
        system_notes=tuple(system_notes),
    )


def _derive_run(
    parent: AssessmentRun,
    actor: str,
    *,
    overrides: Sequence[CriterionOverride] | None = None,
    feedback_text: str | None = None,
    feedback_override: FeedbackOverride | None = None,
    system_note: str,
) -> AssessmentRun:
    return build_run(
        submission_id=parent.submission_id,
        decisions=parent.criterion_decisions,
        raw_overall_grade=parent.grade_policy.raw_overall_grade,
        resubmission_required=parent.grade_policy.resubmission_required,
        confidence_signals=parent.confidence_signals,
        feedback_text=parent.feedback_text if feedback_text is None else feedback_text,
        created_by=actor,
        band_criteria=parent.band_criteria,
        overrides=parent.overrides if overrides is None else overrides,
        parent_run_id=parent.id,
        page_note_context=parent.page_note_context,
        reference_context_snapshot=parent.reference_context_snapshot,
        feedback_override=feedback_override or parent.feedback_override,
        ingest_warnings=parent.ingest_warnings,
        system_notes=(system_note,),
        annotated_pdf_path=parent.annotated_pdf_path,
    )


def get_run(store: AssessmentRunStore, submission_id: str, run_id: str) -> AssessmentRun:
    run = store.by_id(submission_id, run_id)
    if run is None:
        raise RunNotFound(
            f"Run {run_id} not found for submission {submission_id}.",
            {"submission_id": submission_id, "run_id": run_id},
        )
    return run


def grade_submission(
    store: AssessmentRunStore,
    submission_id: str,
    payload: Any,
    actor: str,
    *,
    criteria: Sequence[BandCriterion] | None = None,
) -> CommitResult:
    decision_set = parse_grading_payload(payload, criteria=criteria)
    if not decision_set.feedback_text:
        raise EmptyFeedbackText(
            "Grading payload has no feedback text.", {"submission_id": submission_id}
        )

    run = build_run(
        submission_id=submission_id,
        decisions=decision_set.decisions,
        raw_overall_grade=decision_set.raw_overall_grade,
        resubmission_required=decision_set.resubmission_required,
        confidence_signals=decision_set.confidence_signals,
        feedback_text=decision_set.feedback_text,
        created_by=actor,
        band_criteria=decision_set.band_criteria,
        page_note_context=decision_set.page_note_context,
        reference_context_snapshot=decision_set.reference_context_snapshot,
        ingest_warnings=decision_set.warnings,
        system_notes=(f"Graded with {len(decision_set.decisions)} criterion decision(s).",),
    )
    store.append(submission_id, run)
    logger.bind(submission_id=submission_id, run_id=run.id).info(
        "graded submission: raw={} final={} confidence={}",
        run.grade_policy.raw_overall_grade.value,
        run.overall_grade.value,
        run.confidence_policy.final_confidence,
    )
    return CommitResult(run=run, warnings=decision_set.warnings)


def apply_criterion_override(
    store: AssessmentRunStore,
    submission_id: str,
    run_id: str,
    request: OverrideRequest,
    actor: str,
) -> OverrideResult:
    parent = get_run(store, submission_id, run_id)
    ledger = CriterionOverrideLedger(parent.criterion_decisions, parent.overrides)
    override = ledger.apply(
        request.code,
        request.final_decision,
        request.reason_code,
        note=request.note,
        applied_by=actor,
    )
    run = _derive_run(
        parent,
        actor,
        overrides=ledger.overrides,
        system_note=(
            f"Override {override.code}: {override.model_decision.value} -> "
            f"{override.final_decision.value} ({override.reason_code.value})."
        ),
    )
    store.append(submission_id, run)
    logger.bind(submission_id=submission_id, run_id=run.id).info(
        "override {} applied by {}; grade {} -> {}",
        override.code,
        actor,
        parent.overall_grade.value,
        run.overall_grade.value,
    )
    return OverrideResult(run=run, override=override)


def clear_criterion_override(
    store: AssessmentRunStore,
    submission_id: str,
    run_id: str,
    code: str,
    actor: str,
) -> AssessmentRun:
    """Remove the override for ``code``; returns the parent run unchanged when there was none."""
    parent = get_run(store, submission_id, run_id)
    ledger = CriterionOverrideLedger(parent.criterion_decisions, parent.overrides)
    if not ledger.clear(code):
        return parent

    run = _derive_run(
        parent,
        actor,
        overrides=ledger.overrides,
        system_note=f"Override {code.strip().upper()} cleared.",
    )
    store.append(submission_id, run)
    logger.bind(submission_id=submission_id, run_id=run.id).info(
        "override {} cleared by {}", code.strip().upper(), actor
    )
    return run


def edit_feedback(
    store: AssessmentRunStore,
    submission_id: str,
    run_id: str,
    request: FeedbackEditRequest,
    actor: str,
) -> AssessmentRun:
    parent = get_run(store, submission_id, run_id)
    feedback_text = request.feedback_text.strip()
    if not feedback_text:
        raise EmptyFeedbackText(
            "Feedback text must not be empty.", {"submission_id": submission_id, "run_id": run_id}
        )

    cover = merge_feedback_override(
        parent.feedback_override,
        FeedbackOverride(
            student_name=(request.student_name or "").strip() or None,
            marked_date=(request.marked_date or "").strip() or None,
            edited_by=actor,
            edited_at=now_utc(),
        ),
    )
    run = _derive_run(
        parent,
        actor,
        feedback_text=feedback_text,
        feedback_override=cover,
        system_note="Feedback text edited.",
    )
    store.append(submission_id, run)
    logger.bind(submission_id=submission_id, run_id=run.id).info("feedback edited by {}", actor)
    return run


def rerun_integrity(store: AssessmentRunStore, submission_id: str) -> RerunDiff | None:
    newer = store.latest(submission_id)
    older = store.previous(submission_id)
    if newer is None or older is None:
        return None
    return diff(older, newer)


def build_render_payload(
    run: AssessmentRun, options: PageNoteOptions | None = None
) -> RenderPayload:
    cover = run.feedback_override or FeedbackOverride()
    return RenderPayload(
        run_id=run.id,
        overall_grade=run.overall_grade,
        feedback_text=run.feedback_text,
        student_name=cover.student_name,
        marked_date=cover.marked_date,
        page_notes=tuple(
            project(
                run.criterion_decisions,
                run.page_note_context,
                overrides=run.overrides,
                options=options,
            )
        ),
    )
