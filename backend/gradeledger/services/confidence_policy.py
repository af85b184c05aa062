from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..config import settings
from ..models import (
    ConfidenceCap,
    ConfidencePolicyResult,
    CriterionDecision,
    Decision,
    EvidenceDensitySummary,
)
from .evidence_density import analyze

DECIDED_PROXY_CONFIDENCE = 0.8
UNCLEAR_PROXY_CONFIDENCE = 0.35
LOW_CRITERION_CONFIDENCE = 0.55
HIGH_EXTRACTION_CONFIDENCE = 0.97


@dataclass(frozen=True)
class ConfidenceWeights:
    model: float = 0.35
    criterion: float = 0.30
    evidence: float = 0.20
    extraction: float = 0.15

    @classmethod
    def from_settings(cls) -> "ConfidenceWeights":
        return cls(
            model=settings.confidence_weight_model,
            criterion=settings.confidence_weight_criterion,
            evidence=settings.confidence_weight_evidence,
            extraction=settings.confidence_weight_extraction,
        )

    def normalized(self) -> "ConfidenceWeights":
        parts = [max(0.0, value) for value in (self.model, self.criterion, self.evidence, self.extraction)]
        total = sum(parts)
        if total <= 0:
            return ConfidenceWeights()
        return ConfidenceWeights(*(value / total for value in parts))


def clamp01(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return max(0.0, min(1.0, number))


def _round3(value: float) -> float:
    return round(value, 3)


def row_confidence(row: CriterionDecision) -> float:
    if row.confidence is not None:
        return clamp01(row.confidence)
    if row.decision == Decision.unclear:
        return UNCLEAR_PROXY_CONFIDENCE
    return DECIDED_PROXY_CONFIDENCE


def evidence_score(citations_per_criterion: float, words_per_criterion: float) -> float:
    """Saturating score in [0, 1): more evidence always helps, never past the ceiling."""
    citation_part = 1 - math.exp(-max(0.0, citations_per_criterion) / 1.5)
    word_part = 1 - math.exp(-max(0.0, words_per_criterion) / 60)
    return clamp01(0.7 * citation_part + 0.3 * word_part)


def compose(
    model_confidence: Any,
    decisions: Sequence[CriterionDecision],
    density_summary: EvidenceDensitySummary | None = None,
    extraction_confidence: Any = 1.0,
    *,
    band_cap_was_capped: bool = False,
    weights: ConfidenceWeights | None = None,
    low_extraction_threshold: float | None = None,
) -> ConfidencePolicyResult:
    """Combine the confidence inputs into one explainable score.

    Every bonus and penalty is returned by name, and each ceiling that actually
    lowered the score is listed in ``caps_applied``. The result always satisfies
    ``0 <= final_confidence <= raw_confidence_before_caps``.
    """
    model = clamp01(model_confidence)
    extraction = clamp01(extraction_confidence)
    weights = (weights or ConfidenceWeights.from_settings()).normalized()
    threshold = clamp01(
        settings.low_extraction_threshold if low_extraction_threshold is None else low_extraction_threshold
    )
    summary = density_summary or analyze(decisions).summary

    rows = list(decisions)
    total_criteria = max(1, summary.criteria_count or len(rows))
    criterion_average = (
        clamp01(sum(row_confidence(row) for row in rows) / len(rows)) if rows else model
    )

    unclear_count = sum(1 for row in rows if row.decision == Decision.unclear)
    low_confidence_count = sum(1 for row in rows if row_confidence(row) < LOW_CRITERION_CONFIDENCE)
    achieved_without_evidence = sum(
        1 for row in rows if row.decision == Decision.achieved and not row.evidence
    )
    without_evidence = summary.criteria_without_evidence
    citations_per_criterion = summary.total_citations / total_criteria
    words_per_criterion = summary.total_words_cited / total_criteria
    no_evidence_ratio = min(1.0, without_evidence / total_criteria)
    unclear_ratio = min(1.0, unclear_count / total_criteria)
    low_confidence_ratio = min(1.0, low_confidence_count / total_criteria)

    evidence = evidence_score(citations_per_criterion, words_per_criterion)
    weighted_base = clamp01(
        model * weights.model
        + criterion_average * weights.criterion
        + evidence * weights.evidence
        + extraction * weights.extraction
    )

    bonuses = {
        "allCriteriaCitedBonus": 0.03 if rows and without_evidence == 0 else 0.0,
        "extractionHighConfidenceBonus": (
            min(0.04, (extraction - HIGH_EXTRACTION_CONFIDENCE) / 0.03 * 0.04)
            if extraction >= HIGH_EXTRACTION_CONFIDENCE
            else 0.0
        ),
    }
    penalties = {
        "unclearRatioPenalty": unclear_ratio * 0.18,
        "lowCriterionConfidencePenalty": low_confidence_ratio * 0.12,
        "missingEvidencePenalty": no_evidence_ratio * 0.2,
        "achievedWithoutEvidencePenalty": 0.2 if achieved_without_evidence else 0.0,
        "lowExtractionConfidencePenalty": (
            (threshold - extraction) * 0.25 if extraction < threshold else 0.0
        ),
        "bandCapPenalty": 0.04 if band_cap_was_capped else 0.0,
    }
    raw = clamp01(weighted_base + sum(bonuses.values()) - sum(penalties.values()))

    caps: list[ConfidenceCap] = []
    capped = raw

    def apply_ceiling(name: str, value: float, reason: str) -> None:
        nonlocal capped
        ceiling = clamp01(value)
        if capped > ceiling:
            capped = ceiling
            caps.append(ConfidenceCap(name=name, value=_round3(ceiling), reason=reason))

    if extraction < threshold:
        apply_ceiling(
            "extraction_confidence_cap",
            0.35 + 0.6 * extraction,
            f"Extraction confidence {extraction:.2f} is below {threshold:.2f}.",
        )
    if no_evidence_ratio >= 0.5:
        apply_ceiling("evidence_gap_cap", 0.72, "Half or more criteria have no cited evidence.")
    elif no_evidence_ratio >= 0.3:
        apply_ceiling("evidence_gap_cap", 0.8, "Many criteria have no cited evidence.")
    elif no_evidence_ratio >= 0.2:
        apply_ceiling("evidence_gap_cap", 0.86, "Some criteria have no cited evidence.")
    if achieved_without_evidence:
        apply_ceiling(
            "achieved_without_evidence_cap",
            0.4,
            "One or more criteria are marked ACHIEVED without evidence.",
        )

    final = clamp01(min(raw, capped))

    reasons = [cap.reason for cap in caps]
    reasons.extend(
        f"{name} -{value:.3f}" for name, value in penalties.items() if _round3(value) > 0
    )
    reasons.extend(f"{name} +{value:.3f}" for name, value in bonuses.items() if _round3(value) > 0)

    return ConfidencePolicyResult(
        final_confidence=_round3(final),
        weighted_base_confidence=_round3(weighted_base),
        raw_confidence_before_caps=_round3(raw),
        was_capped=bool(caps),
        model_confidence=_round3(model),
        criterion_average_confidence=_round3(criterion_average),
        evidence_score=_round3(evidence),
        extraction_confidence=_round3(extraction),
        bonuses={name: _round3(value) for name, value in bonuses.items()},
        penalties={name: _round3(value) for name, value in penalties.items()},
        caps_applied=tuple(caps),
        signals={
            "totalCriteria": total_criteria,
            "unclearCount": unclear_count,
            "lowCriterionConfidenceCount": low_confidence_count,
            "criteriaWithoutEvidence": without_evidence,
            "achievedWithoutEvidenceCount": achieved_without_evidence,
            "totalCitations": summary.total_citations,
            "citationsPerCriterion": _round3(citations_per_criterion),
            "wordsPerCriterion": _round3(words_per_criterion),
        },
        reasons=tuple(reasons),
    )
