from __future__ import annotations

import math
import re
from collections.abc import Sequence
from typing import Any

from jsonschema import ValidationError, validate
from loguru import logger
from pydantic import ValidationError as ModelValidationError

from ..errors import InvalidVerdictPayload, MalformedCriterionCode
from ..models import (
    BandCriterion,
    Citation,
    ConfidenceSignals,
    CriterionDecision,
    CriterionDecisionSet,
    Decision,
    GradeBand,
    IngestWarning,
    PageNoteContext,
)
from ..schemas import GRADING_VERDICT_JSON_SCHEMA
from .grade_policy import is_known_grade, normalize_grade
from .page_notes import sanitize_note_text

_CODE_PATTERN = re.compile(r"^[PMD]\d{1,2}$")
_DECISION_ALIASES = {
    "NOTACHIEVED": Decision.not_achieved,
    "NOT-ACHIEVED": Decision.not_achieved,
    "NOT_MET": Decision.not_achieved,
    "MET": Decision.achieved,
    "PARTIAL": Decision.unclear,
}
_BAND_NAMES = {
    "PASS": GradeBand.pass_,
    "MERIT": GradeBand.merit,
    "DISTINCTION": GradeBand.distinction,
}
_DEFAULT_MODEL_CONFIDENCE = 0.5
_MAX_FEEDBACK_BULLETS = 6
_SYSTEM_LINE = re.compile(
    r"\b(automated review|extraction mode|schema validation|required schema|manual review"
    r"|fallback|confidence capped|model output|guard adjusted|decision guard applied"
    r"|rationale indicates evidence gaps)\b",
    re.IGNORECASE,
)


def normalize_code(value: Any) -> str:
    return str(value or "").strip().upper()


def validate_code(value: Any) -> str:
    code = normalize_code(value)
    if not _CODE_PATTERN.match(code):
        raise MalformedCriterionCode(
            f"Criterion code {code or '<empty>'} does not match [PMD]<1-2 digits>.",
            {"code": code},
        )
    return code


def count_words(value: Any) -> int:
    text = str(value or "").strip()
    if not text:
        return 0
    return len(text.split())


def _clean_text(value: Any, max_len: int = 4000) -> str:
    text = str(value or "").replace("\xa0", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()[:max_len]


def _to_unit_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return max(0.0, min(1.0, parsed))


def _to_page(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not parsed.is_integer() or parsed < 1:
        return None
    return int(parsed)


def normalize_decision(value: Any, met_fallback: Any = None) -> Decision | None:
    raw = "_".join(str(value or "").strip().upper().split())
    if raw:
        try:
            return Decision(raw)
        except ValueError:
            pass
        if raw in _DECISION_ALIASES:
            return _DECISION_ALIASES[raw]
    if isinstance(met_fallback, bool):
        return Decision.achieved if met_fallback else Decision.not_achieved
    return None


def _parse_citation(
    raw: Any, code: str, index: int, warnings: list[IngestWarning]
) -> Citation | None:
    if not isinstance(raw, dict):
        return None
    page = _to_page(raw.get("page"))
    quote = _clean_text(raw.get("quotedText") or raw.get("quote"), 2000)
    visual = _clean_text(raw.get("visualDescription"), 2000)
    if page is None:
        warnings.append(
            IngestWarning(
                kind="InvalidCitation",
                code=code,
                detail=f"evidence[{index}] has no valid page number ({raw.get('page')!r}).",
            )
        )
        return None
    if not quote and not visual:
        warnings.append(
            IngestWarning(
                kind="InvalidCitation",
                code=code,
                detail=f"evidence[{index}] on page {page} has no quoted text or description.",
            )
        )
        return None

    word_count = raw.get("wordCount")
    if not isinstance(word_count, int) or isinstance(word_count, bool) or word_count < 0:
        word_count = count_words(quote) + count_words(visual)

    return Citation(
        page=page,
        quoted_text=quote,
        word_count=word_count,
        visual_description=visual or None,
    )


def _parse_decision_row(
    raw: Any, index: int, seen: set[str], warnings: list[IngestWarning]
) -> CriterionDecision | None:
    if not isinstance(raw, dict):
        warnings.append(
            IngestWarning(
                kind=MalformedCriterionCode.__name__,
                detail=f"criterionChecks[{index}] is not an object.",
            )
        )
        return None

    try:
        code = validate_code(raw.get("code"))
    except MalformedCriterionCode as exc:
        warnings.append(
            IngestWarning(
                kind=MalformedCriterionCode.__name__,
                code=exc.details.get("code") or None,
                detail=f"criterionChecks[{index}] dropped: {exc.message}",
            )
        )
        return None

    if code in seen:
        warnings.append(
            IngestWarning(
                kind="DuplicateCriterionCode",
                code=code,
                detail=f"criterionChecks[{index}] repeats {code}; the first decision is kept.",
            )
        )
        return None
    seen.add(code)

    decision = normalize_decision(raw.get("decision"), raw.get("met"))
    if decision is None:
        warnings.append(
            IngestWarning(
                kind="UnknownDecisionValue",
                code=code,
                detail=f"Decision {raw.get('decision')!r} is not ACHIEVED/NOT_ACHIEVED/UNCLEAR; treated as UNCLEAR.",
            )
        )
        decision = Decision.unclear

    evidence_raw = raw.get("evidence") if isinstance(raw.get("evidence"), list) else []
    evidence = [
        citation
        for idx, item in enumerate(evidence_raw)
        if (citation := _parse_citation(item, code, idx, warnings)) is not None
    ]

    return CriterionDecision(
        code=code,
        decision=decision,
        rationale=_clean_text(raw.get("rationale") or raw.get("comment")),
        evidence=tuple(evidence),
        confidence=_to_unit_float(raw.get("confidence")),
    )


def parse_band_criteria(rows: Any) -> list[BandCriterion]:
    criteria: list[BandCriterion] = []
    seen: set[str] = set()
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        code = normalize_code(row.get("code"))
        band = _BAND_NAMES.get(normalize_code(row.get("band")))
        if not _CODE_PATTERN.match(code) or band is None or code in seen:
            continue
        seen.add(code)
        criteria.append(BandCriterion(code=code, band=band))
    return criteria


def feedback_bullets(rows: Any, limit: int = _MAX_FEEDBACK_BULLETS) -> list[str]:
    """Student-facing bullets: strings only, process chatter and placeholders removed."""
    bullets: list[str] = []
    for item in rows if isinstance(rows, list) else []:
        if not isinstance(item, str):
            continue
        line = item.strip()
        if not line or _SYSTEM_LINE.search(line):
            continue
        cleaned = sanitize_note_text(line)
        if cleaned:
            bullets.append(cleaned)
        if len(bullets) >= max(1, limit):
            break
    return bullets


def compose_feedback_text(summary: Any, bullets: Sequence[str]) -> str:
    parts = [_clean_text(summary, 20000)]
    if bullets:
        parts.append("\n".join(f"- {bullet}" for bullet in bullets))
    return _clean_text("\n\n".join(part for part in parts if part), 20000)


def _parse_page_note_context(raw: Any, warnings: list[IngestWarning]) -> PageNoteContext | None:
    if not isinstance(raw, dict):
        return None
    try:
        return PageNoteContext.model_validate(raw)
    except ModelValidationError as exc:
        warnings.append(
            IngestWarning(
                kind="InvalidPageNoteContext",
                detail=f"pageNoteContext ignored: {exc.error_count()} invalid field(s).",
            )
        )
        return None


def parse_grading_payload(
    payload: Any, *, criteria: Sequence[BandCriterion] | None = None
) -> CriterionDecisionSet:
    """Turn a grader document into a validated decision set.

    The envelope must match ``GRADING_VERDICT_JSON_SCHEMA``; anything wrong
    inside a row is dropped or coerced and recorded in ``warnings`` instead of
    failing the whole run.
    """
    if not isinstance(payload, dict):
        raise InvalidVerdictPayload("Grading payload must be a JSON object.")
    try:
        validate(instance=payload, schema=GRADING_VERDICT_JSON_SCHEMA)
    except ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise InvalidVerdictPayload(
            f"Grading payload failed schema validation at {location}: {exc.message}",
            {"path": location},
        ) from exc

    warnings: list[IngestWarning] = []
    seen: set[str] = set()
    decisions = [
        row
        for idx, raw in enumerate(payload.get("criterionChecks") or [])
        if (row := _parse_decision_row(raw, idx, seen, warnings)) is not None
    ]

    signals_raw = payload.get("confidenceSignals") or {}
    grading_confidence = _to_unit_float(signals_raw.get("gradingConfidence"))
    if grading_confidence is None:
        grading_confidence = _to_unit_float(payload.get("confidence"))
    if grading_confidence is None:
        grading_confidence = _DEFAULT_MODEL_CONFIDENCE
    extraction_confidence = _to_unit_float(signals_raw.get("extractionConfidence"))
    if extraction_confidence is None:
        extraction_confidence = 1.0

    raw_grade_value = payload.get("overallGradeWord") or payload.get("overallGrade")
    raw_grade = normalize_grade(raw_grade_value)
    if not raw_grade_value:
        warnings.append(
            IngestWarning(kind="MissingOverallGrade", detail="No overall grade given; treated as REFER.")
        )
    elif not is_known_grade(raw_grade_value):
        warnings.append(
            IngestWarning(
                kind="UnknownGradeLiteral",
                detail=f"Overall grade {raw_grade_value!r} is not a known band; treated as REFER.",
            )
        )

    band_criteria = list(criteria) if criteria else parse_band_criteria(payload.get("criteria"))

    resubmission = payload.get("resubmissionRequired")
    if not isinstance(resubmission, bool):
        resubmission = False

    feedback_text = compose_feedback_text(
        payload.get("feedbackText") or payload.get("feedbackSummary"),
        feedback_bullets(payload.get("feedbackBullets")),
    )
    page_note_context = _parse_page_note_context(payload.get("pageNoteContext"), warnings)

    for warning in warnings:
        logger.warning("ingest {}: {}", warning.kind, warning.detail)

    return CriterionDecisionSet(
        decisions=tuple(decisions),
        raw_overall_grade=raw_grade,
        resubmission_required=resubmission,
        confidence_signals=ConfidenceSignals(
            extraction_confidence=extraction_confidence,
            grading_confidence=grading_confidence,
        ),
        band_criteria=tuple(band_criteria),
        feedback_text=feedback_text,
        reference_context_snapshot=payload.get("referenceContextSnapshot") or None,
        page_note_context=page_note_context,
        warnings=tuple(warnings),
    )
