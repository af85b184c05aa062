from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..config import settings
from ..models import (
    Citation,
    CriterionDecision,
    CriterionOverride,
    Decision,
    NoteTone,
    PageNote,
    PageNoteContext,
    PageNoteItem,
)

GENERAL_SECTION_ID = "general"
GENERAL_SECTION_LABEL = "General"


@dataclass(frozen=True)
class SectionRule:
    id: str
    label: str
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class SectionRuleSet:
    assignment_type: str
    sections: tuple[SectionRule, ...]
    sections_to_criteria: dict[str, tuple[str, ...]]

    def sections_for(self, code: str) -> list[str]:
        return [
            section_id
            for section_id, codes in self.sections_to_criteria.items()
            if code in codes
        ]

    def label_for(self, section_id: str) -> str:
        for section in self.sections:
            if section.id == section_id:
                return section.label
        return _label_from_id(section_id)


PROJECT_REPORT_RULES = SectionRuleSet(
    assignment_type="project_report",
    sections=(
        SectionRule(
            "project_scope",
            "Project Planning",
            ("scope", "objective", "aim", "deliverable", "stakeholder", "requirements", "proposal"),
        ),
        SectionRule(
            "financial_planning",
            "Financial Planning",
            ("budget", "cost", "financial", "finance", "cash flow", "costing", "cost breakdown"),
        ),
        SectionRule(
            "schedule_planning",
            "Scheduling",
            ("schedule", "gantt", "timeline", "milestone", "dependency", "critical path", "wbs"),
        ),
        SectionRule(
            "risk_management",
            "Risk",
            ("risk", "mitigation", "probability", "impact", "contingency", "risk register"),
        ),
        SectionRule(
            "monitoring_control",
            "Monitoring and Control",
            ("monitor", "tracking", "progress", "variance", "control", "change log", "review"),
        ),
        SectionRule(
            "evaluation_reflection",
            "Evaluation",
            ("evaluate", "evaluation", "reflection", "lessons learned", "recommendation", "justify", "outcome"),
        ),
    ),
    sections_to_criteria={
        "project_scope": ("P1", "P2", "D1"),
        "financial_planning": ("P3", "M1"),
        "schedule_planning": ("P3", "P4", "M1"),
        "risk_management": ("P5", "M2"),
        "monitoring_control": ("P4", "M2", "D2"),
        "evaluation_reflection": ("D1", "D2"),
    },
)

ASSIGNMENT_TYPE_RULES = {PROJECT_REPORT_RULES.assignment_type: PROJECT_REPORT_RULES}

_PLACEHOLDER_PATTERNS = [
    re.compile(r"\btype\s+(?:your\s+)?text\s+here\b", re.IGNORECASE),
    re.compile(r"\benter\s+(?:your\s+)?text\s+here\b", re.IGNORECASE),
    re.compile(r"\badd\s+(?:your\s+)?text\s+here\b", re.IGNORECASE),
    re.compile(r"\binsert\s+text\b", re.IGNORECASE),
    re.compile(r"\bclick\s+to\s+add\s+text\b", re.IGNORECASE),
]


@dataclass(frozen=True)
class PageNoteOptions:
    max_pages: int = 6
    max_notes_per_page: int = 3
    min_page: int = 1
    tone: NoteTone = NoteTone.professional
    include_code: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_pages", max(1, min(20, int(self.max_pages))))
        object.__setattr__(self, "max_notes_per_page", max(1, min(8, int(self.max_notes_per_page))))
        object.__setattr__(self, "min_page", max(1, int(self.min_page)))
        try:
            tone = NoteTone(str(getattr(self.tone, "value", self.tone)).strip().lower())
        except ValueError:
            tone = NoteTone.professional
        object.__setattr__(self, "tone", tone)

    @classmethod
    def from_settings(cls) -> "PageNoteOptions":
        return cls(
            max_pages=settings.page_notes_max_pages,
            max_notes_per_page=settings.page_notes_max_notes_per_page,
            tone=settings.page_notes_tone,
            include_code=settings.page_notes_include_code,
        )


AUDIT_OPTIONS = PageNoteOptions(max_pages=20, max_notes_per_page=8)


def _label_from_id(section_id: str) -> str:
    return " ".join(part.capitalize() for part in section_id.replace("-", "_").split("_") if part)


def _normalize_text(value: object) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


def sanitize_note_text(value: object) -> str:
    text = _normalize_text(value)
    for pattern in _PLACEHOLDER_PATTERNS:
        text = pattern.sub("", text)
    text = re.sub(r"\s{2,}", " ", text)
    text = re.sub(r"\s+([,.;:!?])", r"\1", text)
    return text.strip()


def _compact(value: str, max_len: int) -> str:
    text = sanitize_note_text(value)
    if len(text) <= max_len:
        return text
    return f"{text[: max(20, max_len - 3)]}..."


def _summarize_reason(value: str) -> str:
    text = sanitize_note_text(value)
    text = re.sub(r"\bthis\s+criterion\b", "this requirement", text, flags=re.IGNORECASE)
    text = re.sub(r"\b(the\s+)?criterion\b", "requirement", text, flags=re.IGNORECASE)
    text = re.sub(r"\bclear(er)?\s+evidence\b", "specific evidence", text, flags=re.IGNORECASE)
    if not text:
        return ""
    first_sentence = re.split(r"[.!?]", text)[0] or text
    return _compact(first_sentence, 90)


def _base_line(decision: Decision, tone: NoteTone) -> str:
    if decision == Decision.not_achieved:
        if tone == NoteTone.strict:
            return "This page needs stronger evidence and clearer evaluation."
        return "Strengthen this section with specific evidence and clearer evaluation."
    if decision == Decision.unclear:
        if tone == NoteTone.strict:
            return "The point on this page is unclear; tighten the technical explanation."
        return "Clarify exactly what this page demonstrates and why it matters."
    if tone == NoteTone.supportive:
        return "Good evidence appears on this page; keep linking it to the requirement."
    return "Evidence on this page is relevant; keep the requirement link explicit."


def compose_item_text(
    row: CriterionDecision,
    citation: Citation,
    decision: Decision,
    options: PageNoteOptions,
) -> str:
    excerpt = sanitize_note_text(citation.quoted_text) or sanitize_note_text(citation.visual_description)
    rationale = _summarize_reason(row.rationale)
    parts = [_base_line(decision, options.tone)]
    if excerpt:
        parts.append(f'Current text: "{_compact(excerpt, 80)}".')
    if rationale:
        parts.append(f"Next step: {rationale}.")
    line = _compact(" ".join(parts), 175)
    if options.include_code:
        return _compact(f"{row.code}: {line}", 170)
    return line


def resolve_rules(context: PageNoteContext | None) -> SectionRuleSet | None:
    if context is None:
        return None
    assignment_type = str(context.assignment_type or "").strip().lower()
    if assignment_type in ASSIGNMENT_TYPE_RULES:
        return ASSIGNMENT_TYPE_RULES[assignment_type]
    unit_match = re.search(r"\b(\d{1,4})\b", str(context.unit_code or ""))
    unit_code = unit_match.group(1) if unit_match else str(context.unit_code or "").strip()
    title = str(context.assignment_title or "").lower()
    if unit_code in {"4", "4004"} or (
        "project" in title and ("planning" in title or "engineering" in title)
    ):
        return PROJECT_REPORT_RULES
    return None


def _keyword_score(section: SectionRule, corpus: str) -> int:
    score = 0
    for keyword in section.keywords:
        if re.search(rf"\b{re.escape(keyword)}\b", corpus, flags=re.IGNORECASE):
            score += 1
    return score


class _SectionResolver:
    def __init__(self, context: PageNoteContext | None) -> None:
        self.context = context
        self.caller_map = {
            section_id: tuple(str(code).strip().upper() for code in codes)
            for section_id, codes in ((context.section_map or {}) if context else {}).items()
        }
        self.caller_labels = dict((context.section_labels or {}) if context else {})
        self.rules = resolve_rules(context)

    def order(self) -> list[str]:
        order = [section_id for section_id in self.caller_map if section_id != GENERAL_SECTION_ID]
        if self.rules is not None:
            order.extend(section.id for section in self.rules.sections if section.id not in order)
        return order

    def label(self, section_id: str) -> str:
        if section_id == GENERAL_SECTION_ID:
            return self.caller_labels.get(section_id, GENERAL_SECTION_LABEL)
        if section_id in self.caller_labels:
            return self.caller_labels[section_id]
        if self.rules is not None:
            return self.rules.label_for(section_id)
        return _label_from_id(section_id)

    def resolve(self, row: CriterionDecision) -> str:
        for section_id, codes in self.caller_map.items():
            if row.code in codes:
                return section_id
        if self.rules is None:
            return GENERAL_SECTION_ID

        allowed = self.rules.sections_for(row.code)
        corpus = " ".join(
            [citation.quoted_text or citation.visual_description or "" for citation in row.evidence]
            + [row.rationale]
        ).lower()
        best_id, best_score = None, 0
        for section in self.rules.sections:
            if allowed and section.id not in allowed:
                continue
            score = _keyword_score(section, corpus)
            if score > best_score:
                best_id, best_score = section.id, score
        if best_id is not None:
            return best_id
        if len(allowed) == 1:
            return allowed[0]
        return GENERAL_SECTION_ID


def project(
    decisions: Sequence[CriterionDecision],
    context: PageNoteContext | None = None,
    *,
    overrides: Iterable[CriterionOverride] = (),
    options: PageNoteOptions | None = None,
) -> list[PageNote]:
    """Group citations into per-page, per-section feedback notes.

    Output depends only on the arguments. Overflow past ``max_notes_per_page``
    or ``max_pages`` is dropped silently: the first items in citation order and
    the lowest pages are kept.
    """
    options = options or PageNoteOptions.from_settings()
    effective = {item.code: item.final_decision for item in overrides}
    resolver = _SectionResolver(context)

    by_page: dict[int, list[tuple[str, PageNoteItem]]] = {}
    for row in decisions:
        if not row.evidence:
            continue
        decision = effective.get(row.code, row.decision)
        section_id = resolver.resolve(row)
        for citation in row.evidence:
            if citation.page < options.min_page:
                continue
            text = compose_item_text(row, citation, decision, options)
            if not text:
                continue
            items = by_page.setdefault(citation.page, [])
            if len(items) >= options.max_notes_per_page:
                continue
            items.append(
                (section_id, PageNoteItem(text=text, criterion_code=row.code, decision=decision))
            )

    kept_pages = sorted(by_page)[: options.max_pages]
    grouped: dict[str, dict[int, list[PageNoteItem]]] = {}
    for page in kept_pages:
        for section_id, item in by_page[page]:
            grouped.setdefault(section_id, {}).setdefault(page, []).append(item)

    section_order = resolver.order()
    ordered_sections = [section_id for section_id in section_order if section_id in grouped]
    ordered_sections.extend(
        section_id
        for section_id in grouped
        if section_id not in ordered_sections and section_id != GENERAL_SECTION_ID
    )
    if GENERAL_SECTION_ID in grouped and GENERAL_SECTION_ID not in ordered_sections:
        ordered_sections.append(GENERAL_SECTION_ID)

    notes: list[PageNote] = []
    for section_id in ordered_sections:
        for page in sorted(grouped[section_id]):
            items = grouped[section_id][page]
            codes = {item.criterion_code for item in items}
            notes.append(
                PageNote(
                    page=page,
                    section_id=section_id,
                    section_label=resolver.label(section_id),
                    criterion_code=next(iter(codes)) if len(codes) == 1 else None,
                    items=tuple(items),
                )
            )
    return notes
