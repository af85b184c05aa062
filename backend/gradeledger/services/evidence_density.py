from __future__ import annotations

from collections.abc import Iterable

from ..models import (
    CriterionDecision,
    EvidenceDensityReport,
    EvidenceDensityRow,
    EvidenceDensitySummary,
)


def density_row(row: CriterionDecision) -> EvidenceDensityRow:
    pages = sorted({citation.page for citation in row.evidence})
    return EvidenceDensityRow(
        code=row.code,
        citation_count=len(row.evidence),
        total_words_cited=sum(citation.word_count for citation in row.evidence),
        page_distribution=tuple(pages),
        page_spread=len(pages),
    )


def analyze(decisions: Iterable[CriterionDecision]) -> EvidenceDensityReport:
    """Count citations, cited words and pages per criterion.

    Criteria with no citations still get a row, so ``summary.criteria_count``
    always equals the number of decisions analyzed.
    """
    rows = [density_row(row) for row in decisions]
    return EvidenceDensityReport(
        rows=tuple(rows),
        summary=EvidenceDensitySummary(
            criteria_count=len(rows),
            total_citations=sum(item.citation_count for item in rows),
            total_words_cited=sum(item.total_words_cited for item in rows),
            criteria_without_evidence=sum(1 for item in rows if item.citation_count == 0),
        ),
    )
