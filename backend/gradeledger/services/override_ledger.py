from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from ..errors import UnknownCriterionCode
from ..models import (
    CriterionDecision,
    CriterionOverride,
    Decision,
    OverrideReasonCode,
    OverrideSummary,
)
from .ingest import normalize_code


def resolve(
    code: str,
    decisions: Iterable[CriterionDecision],
    overrides: Iterable[CriterionOverride] = (),
) -> Decision | None:
    """Effective decision for ``code``: the active override wins, else the machine decision."""
    key = normalize_code(code)
    for item in overrides:
        if item.code == key:
            return item.final_decision
    for row in decisions:
        if row.code == key:
            return row.decision
    return None


class CriterionOverrideLedger:
    """Assessor decisions layered over one run's machine decisions.

    The ledger never touches the machine ``CriterionDecision`` rows. Callers
    copy a stored run's overrides into a fresh ledger, mutate it, and append a
    new run carrying ``ledger.overrides``.
    """

    def __init__(
        self,
        decisions: Sequence[CriterionDecision],
        overrides: Iterable[CriterionOverride] = (),
    ) -> None:
        self._decisions = tuple(decisions)
        self._machine = {row.code: row.decision for row in self._decisions}
        self._overrides: dict[str, CriterionOverride] = {}
        for item in overrides:
            if item.code in self._machine:
                self._overrides[item.code] = item

    def _require_code(self, code: str) -> str:
        key = normalize_code(code)
        if key not in self._machine:
            raise UnknownCriterionCode(
                f"Criterion {key or '<empty>'} is not part of this run.",
                {"code": key, "known_codes": sorted(self._machine)},
            )
        return key

    def apply(
        self,
        code: str,
        final_decision: Decision,
        reason_code: OverrideReasonCode,
        note: str = "",
        applied_by: str = "",
        applied_at: datetime | None = None,
    ) -> CriterionOverride:
        key = self._require_code(code)
        override = CriterionOverride(
            code=key,
            final_decision=Decision(final_decision),
            reason_code=OverrideReasonCode(reason_code),
            note=str(note or "").strip(),
            model_decision=self._machine[key],
            applied_by=applied_by,
            applied_at=applied_at or datetime.now(UTC),
        )
        self._overrides[key] = override
        return override

    def clear(self, code: str) -> bool:
        key = self._require_code(code)
        return self._overrides.pop(key, None) is not None

    def get(self, code: str) -> CriterionOverride | None:
        return self._overrides.get(normalize_code(code))

    def resolve(self, code: str) -> Decision:
        key = self._require_code(code)
        override = self._overrides.get(key)
        return override.final_decision if override else self._machine[key]

    @property
    def overrides(self) -> tuple[CriterionOverride, ...]:
        return tuple(self._overrides[code] for code in sorted(self._overrides))

    def effective_decisions(self) -> tuple[CriterionDecision, ...]:
        rows = []
        for row in self._decisions:
            override = self._overrides.get(row.code)
            if override and override.final_decision != row.decision:
                row = row.model_copy(update={"decision": override.final_decision})
            rows.append(row)
        return tuple(rows)

    def summary(self) -> OverrideSummary:
        items = self.overrides
        return OverrideSummary(
            applied_count=len(items),
            reason_codes=tuple(sorted({item.reason_code for item in items}, key=lambda r: r.value)),
            changed_codes=tuple(
                item.code for item in items if item.final_decision != item.model_decision
            ),
            last_applied_at=max((item.applied_at for item in items), default=None),
        )
