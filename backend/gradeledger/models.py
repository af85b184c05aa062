from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, confloat, conint
from pydantic.alias_generators import to_camel

CRITERION_CODE_PATTERN = r"^[PMD]\d{1,2}$"


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class Decision(str, Enum):
    achieved = "ACHIEVED"
    not_achieved = "NOT_ACHIEVED"
    unclear = "UNCLEAR"


class GradeBand(str, Enum):
    refer = "REFER"
    pass_on_resubmission = "PASS_ON_RESUBMISSION"
    pass_ = "PASS"
    merit = "MERIT"
    distinction = "DISTINCTION"


class CapReason(str, Enum):
    resubmission = "CAPPED_DUE_TO_RESUBMISSION"
    missing_pass = "CAPPED_DUE_TO_MISSING_PASS"
    missing_merit = "CAPPED_DUE_TO_MISSING_MERIT"
    missing_distinction = "CAPPED_DUE_TO_MISSING_DISTINCTION"


class OverrideReasonCode(str, Enum):
    insufficient_evidence = "INSUFFICIENT_EVIDENCE"
    rubric_misalignment = "RUBRIC_MISALIGNMENT"
    criterion_interpretation = "CRITERION_INTERPRETATION"
    policy_alignment = "POLICY_ALIGNMENT"
    assessor_judgement = "ASSESSOR_JUDGEMENT"
    other = "OTHER"


class NoteTone(str, Enum):
    supportive = "supportive"
    professional = "professional"
    strict = "strict"


class Citation(_Record):
    page: conint(ge=1)
    quoted_text: str = ""
    word_count: conint(ge=0) = 0
    visual_description: str | None = None


class CriterionDecision(_Record):
    code: str = Field(pattern=CRITERION_CODE_PATTERN)
    decision: Decision
    rationale: str = ""
    evidence: tuple[Citation, ...] = ()
    confidence: confloat(ge=0, le=1) | None = None


class BandCriterion(_Record):
    code: str = Field(pattern=CRITERION_CODE_PATTERN)
    band: GradeBand


class ConfidenceSignals(_Record):
    extraction_confidence: confloat(ge=0, le=1) = 1.0
    grading_confidence: confloat(ge=0, le=1) = 0.5


class MissingCodes(_Record):
    pass_: tuple[str, ...] = Field(default=(), alias="pass")
    merit: tuple[str, ...] = ()
    distinction: tuple[str, ...] = ()


class CriteriaBandCap(_Record):
    raw_grade: GradeBand
    final_grade: GradeBand
    was_capped: bool
    cap_reason: CapReason | None = None
    missing: MissingCodes = Field(default_factory=MissingCodes)


class GradePolicyResult(_Record):
    raw_overall_grade: GradeBand
    final_overall_grade: GradeBand
    was_capped: bool
    cap_reason: CapReason | None = None
    resubmission_required: bool = False
    criteria_band_cap: CriteriaBandCap | None = None
    explanation: tuple[str, ...] = ()


class ConfidenceCap(_Record):
    name: str
    value: float
    reason: str


class ConfidencePolicyResult(_Record):
    final_confidence: confloat(ge=0, le=1)
    weighted_base_confidence: float
    raw_confidence_before_caps: float
    was_capped: bool
    model_confidence: float
    criterion_average_confidence: float
    evidence_score: float
    extraction_confidence: float
    bonuses: dict[str, float] = Field(default_factory=dict)
    penalties: dict[str, float] = Field(default_factory=dict)
    caps_applied: tuple[ConfidenceCap, ...] = ()
    signals: dict[str, float] = Field(default_factory=dict)
    reasons: tuple[str, ...] = ()


class EvidenceDensityRow(_Record):
    code: str
    citation_count: int
    total_words_cited: int
    page_distribution: tuple[int, ...] = ()
    page_spread: int = 0


class EvidenceDensitySummary(_Record):
    criteria_count: int = 0
    total_citations: int = 0
    total_words_cited: int = 0
    criteria_without_evidence: int = 0


class EvidenceDensityReport(_Record):
    rows: tuple[EvidenceDensityRow, ...] = ()
    summary: EvidenceDensitySummary = Field(default_factory=EvidenceDensitySummary)


class CriterionOverride(_Record):
    code: str = Field(pattern=CRITERION_CODE_PATTERN)
    final_decision: Decision
    reason_code: OverrideReasonCode
    note: str = ""
    model_decision: Decision
    applied_by: str
    applied_at: datetime


class OverrideSummary(_Record):
    applied_count: int = 0
    reason_codes: tuple[OverrideReasonCode, ...] = ()
    changed_codes: tuple[str, ...] = ()
    last_applied_at: datetime | None = None


class FeedbackOverride(_Record):
    student_name: str | None = None
    marked_date: str | None = None
    edited_by: str | None = None
    edited_at: datetime | None = None


class PageNoteContext(_Record):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    unit_code: str | None = None
    assignment_code: str | None = None
    assignment_title: str | None = None
    assignment_type: str | None = None
    section_map: dict[str, tuple[str, ...]] | None = None
    section_labels: dict[str, str] | None = None


class PageNoteItem(_Record):
    text: str
    criterion_code: str
    decision: Decision


class PageNote(_Record):
    page: int
    section_id: str
    section_label: str
    criterion_code: str | None = None
    items: tuple[PageNoteItem, ...] = ()


class IngestWarning(_Record):
    kind: str
    code: str | None = None
    detail: str


class CriterionDecisionSet(_Record):
    decisions: tuple[CriterionDecision, ...] = ()
    raw_overall_grade: GradeBand = GradeBand.refer
    resubmission_required: bool = False
    confidence_signals: ConfidenceSignals = Field(default_factory=ConfidenceSignals)
    band_criteria: tuple[BandCriterion, ...] = ()
    feedback_text: str = ""
    reference_context_snapshot: dict[str, Any] | None = None
    page_note_context: PageNoteContext | None = None
    warnings: tuple[IngestWarning, ...] = ()


class AssessmentRun(_Record):
    id: str
    submission_id: str
    created_at: datetime
    created_by: str
    parent_run_id: str | None = None
    overall_grade: GradeBand
    feedback_text: str
    annotated_pdf_path: str | None = None
    criterion_decisions: tuple[CriterionDecision, ...] = ()
    confidence_signals: ConfidenceSignals
    grade_policy: GradePolicyResult
    confidence_policy: ConfidencePolicyResult
    evidence_density: EvidenceDensityReport
    overrides: tuple[CriterionOverride, ...] = ()
    override_summary: OverrideSummary = Field(default_factory=OverrideSummary)
    band_criteria: tuple[BandCriterion, ...] = ()
    page_note_context: PageNoteContext | None = None
    reference_context_snapshot: dict[str, Any] | None = None
    feedback_override: FeedbackOverride | None = None
    ingest_warnings: tuple[IngestWarning, ...] = ()
    system_notes: tuple[str, ...] = ()


class RerunDiff(_Record):
    changed: bool
    deltas: tuple[str, ...] = ()
    older_run_id: str | None = None
    newer_run_id: str | None = None


class OverrideRequest(_Request):
    code: str = Field(min_length=1, max_length=8)
    final_decision: Decision
    reason_code: OverrideReasonCode
    note: str = Field(default="", max_length=1000)


class FeedbackEditRequest(_Request):
    feedback_text: str = Field(max_length=20000)
    student_name: str | None = Field(default=None, max_length=160)
    marked_date: str | None = Field(default=None, max_length=40)


class CommitResponse(_Record):
    run: AssessmentRun
    warnings: tuple[IngestWarning, ...] = ()


class OverrideResponse(_Record):
    run: AssessmentRun
    override: CriterionOverride


class RunHistoryItem(_Record):
    id: str
    created_at: datetime
    created_by: str
    parent_run_id: str | None = None
    overall_grade: GradeBand
    final_confidence: float
    override_count: int


class HistoryResponse(_Record):
    submission_id: str
    items: tuple[RunHistoryItem, ...] = ()


class RenderPayload(_Record):
    run_id: str
    overall_grade: GradeBand
    feedback_text: str
    student_name: str | None = None
    marked_date: str | None = None
    page_notes: tuple[PageNote, ...] = ()


class HealthResponse(BaseModel):
    status: Literal["ok"]
    submissions: int
