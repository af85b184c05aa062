from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from ..models import (
    BandCriterion,
    CapReason,
    CriteriaBandCap,
    CriterionDecision,
    Decision,
    GradeBand,
    GradePolicyResult,
    MissingCodes,
)

GRADE_RANK: dict[GradeBand, int] = {
    GradeBand.refer: 0,
    GradeBand.pass_on_resubmission: 1,
    GradeBand.pass_: 2,
    GradeBand.merit: 3,
    GradeBand.distinction: 4,
}

_GRADE_ALIASES = {
    "FAIL": GradeBand.refer,
    "REFERRAL": GradeBand.refer,
    "PASS_ON_RESUB": GradeBand.pass_on_resubmission,
    "PASS_RESUBMISSION": GradeBand.pass_on_resubmission,
    "RESUBMIT": GradeBand.pass_on_resubmission,
    "RESUBMISSION": GradeBand.pass_on_resubmission,
}

_BAND_BY_PREFIX = {
    "P": GradeBand.pass_,
    "M": GradeBand.merit,
    "D": GradeBand.distinction,
}

_BAND_LABEL = {
    GradeBand.pass_: "PASS",
    GradeBand.merit: "MERIT",
    GradeBand.distinction: "DISTINCTION",
}


def _grade_key(value: Any) -> str:
    return "_".join(str(value or "").strip().upper().split()).replace("-", "_")


def is_known_grade(value: Any) -> bool:
    if isinstance(value, GradeBand):
        return True
    key = _grade_key(value)
    return key in _GRADE_ALIASES or key in {band.value for band in GradeBand}


def normalize_grade(value: Any) -> GradeBand:
    """Map a grade literal onto a band; unknown literals fall to REFER."""
    if isinstance(value, GradeBand):
        return value
    raw = _grade_key(value)
    if raw in _GRADE_ALIASES:
        return _GRADE_ALIASES[raw]
    try:
        return GradeBand(raw)
    except ValueError:
        return GradeBand.refer


def grade_rank(value: Any) -> int:
    return GRADE_RANK[normalize_grade(value)]


def lower_grade(first: Any, second: Any) -> GradeBand:
    first_band = normalize_grade(first)
    second_band = normalize_grade(second)
    return second_band if GRADE_RANK[second_band] < GRADE_RANK[first_band] else first_band


def band_for_code(code: str) -> GradeBand | None:
    return _BAND_BY_PREFIX.get(str(code or "").strip().upper()[:1])


def derive_band_criteria(decisions: Iterable[CriterionDecision]) -> list[BandCriterion]:
    criteria: list[BandCriterion] = []
    seen: set[str] = set()
    for row in decisions:
        band = band_for_code(row.code)
        if band is None or row.code in seen:
            continue
        seen.add(row.code)
        criteria.append(BandCriterion(code=row.code, band=band))
    return criteria


def _required_codes(criteria: Sequence[BandCriterion], band: GradeBand) -> list[str]:
    codes: list[str] = []
    for item in criteria:
        if item.band == band and item.code not in codes:
            codes.append(item.code)
    return codes


def apply_band_completion_cap(
    raw_grade: Any,
    decisions: Sequence[CriterionDecision],
    criteria: Sequence[BandCriterion] | None = None,
) -> CriteriaBandCap:
    raw = normalize_grade(raw_grade)
    band_criteria = list(criteria) if criteria else derive_band_criteria(decisions)
    achieved = {row.code for row in decisions if row.decision == Decision.achieved}

    missing_pass = [c for c in _required_codes(band_criteria, GradeBand.pass_) if c not in achieved]
    missing_merit = [c for c in _required_codes(band_criteria, GradeBand.merit) if c not in achieved]
    missing_distinction = [
        c for c in _required_codes(band_criteria, GradeBand.distinction) if c not in achieved
    ]

    # Strictest incomplete band decides the ceiling.
    ceiling = GradeBand.distinction
    reason: CapReason | None = None
    if missing_pass:
        ceiling, reason = GradeBand.refer, CapReason.missing_pass
    elif missing_merit:
        ceiling, reason = GradeBand.pass_, CapReason.missing_merit
    elif missing_distinction:
        ceiling, reason = GradeBand.merit, CapReason.missing_distinction

    final = lower_grade(raw, ceiling)
    was_capped = GRADE_RANK[final] < GRADE_RANK[raw]
    return CriteriaBandCap(
        raw_grade=raw,
        final_grade=final,
        was_capped=was_capped,
        cap_reason=reason if was_capped else None,
        missing=MissingCodes(
            pass_=tuple(missing_pass),
            merit=tuple(missing_merit),
            distinction=tuple(missing_distinction),
        ),
    )


def _format_next_band_line(band: GradeBand, codes: Sequence[str]) -> str:
    label = _BAND_LABEL.get(band, band.value)
    if len(codes) == 1:
        return f"To reach {label}, achieve {codes[0]}."
    shown = ", ".join(codes[:8])
    extra = f" and {len(codes) - 8} more" if len(codes) > 8 else ""
    return f"To reach {label}, achieve all of: {shown}{extra}."


def _build_explanation(
    raw: GradeBand,
    final: GradeBand,
    band_cap: CriteriaBandCap,
    resubmission_capped: bool,
    resubmission_grade: GradeBand,
) -> list[str]:
    lines: list[str] = []
    if resubmission_capped:
        lines.append(
            f"Resubmission is required, so the grade is capped at {resubmission_grade.value} "
            f"(raw grade {raw.value})."
        )
    if band_cap.was_capped and band_cap.cap_reason is not None:
        lines.append(
            f"Band completion capped the grade from {raw.value} to {band_cap.final_grade.value} "
            f"({band_cap.cap_reason.value})."
        )
    missing = band_cap.missing
    if missing.pass_:
        lines.append(_format_next_band_line(GradeBand.pass_, missing.pass_))
    elif missing.merit and GRADE_RANK[final] < GRADE_RANK[GradeBand.merit]:
        lines.append(_format_next_band_line(GradeBand.merit, missing.merit))
    elif missing.distinction and GRADE_RANK[final] < GRADE_RANK[GradeBand.distinction]:
        lines.append(_format_next_band_line(GradeBand.distinction, missing.distinction))
    return lines


def apply_cap(
    raw_grade: Any,
    decisions: Sequence[CriterionDecision],
    resubmission_required: bool,
    *,
    criteria: Sequence[BandCriterion] | None = None,
    resubmission_cap_enabled: bool = True,
    resubmission_cap_grade: Any = GradeBand.pass_on_resubmission,
) -> GradePolicyResult:
    """Cap a raw overall grade by band completion and the resubmission rule.

    Never raises: unknown grade literals are treated as the lowest band. The
    final grade is never above the raw grade in band order. When the
    resubmission rule triggers its reason is reported first; the band reason is
    still available on ``criteria_band_cap``.
    """
    raw = normalize_grade(raw_grade)
    band_cap = apply_band_completion_cap(raw, decisions, criteria)

    # Resubmission only caps MERIT and DISTINCTION, after the band cap.
    resubmission_grade = normalize_grade(resubmission_cap_grade)
    final = band_cap.final_grade
    resubmission_capped = (
        bool(resubmission_required)
        and resubmission_cap_enabled
        and GRADE_RANK[final] > GRADE_RANK[GradeBand.pass_]
        and GRADE_RANK[final] > GRADE_RANK[resubmission_grade]
    )
    if resubmission_capped:
        final = resubmission_grade

    was_capped = GRADE_RANK[final] < GRADE_RANK[raw]
    cap_reason: CapReason | None = None
    if resubmission_capped:
        cap_reason = CapReason.resubmission
    elif was_capped:
        cap_reason = band_cap.cap_reason

    return GradePolicyResult(
        raw_overall_grade=raw,
        final_overall_grade=final,
        was_capped=was_capped,
        cap_reason=cap_reason,
        resubmission_required=bool(resubmission_required),
        criteria_band_cap=band_cap,
        explanation=tuple(
            _build_explanation(raw, final, band_cap, resubmission_capped, resubmission_grade)
        ),
    )
