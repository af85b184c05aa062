from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _load_dotenv(path: Path) -> None:
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, default: int, min_value: int, max_value: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except ValueError:
        parsed = default
    return max(min_value, min(max_value, parsed))


def _to_unit_float(value: str | None, default: float) -> float:
    try:
        parsed = float(value) if value is not None else default
    except ValueError:
        parsed = default
    return max(0.0, min(1.0, parsed))


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    allowed_origins: list[str]
    log_level: str
    log_json: bool
    default_actor: str
    page_notes_max_pages: int
    page_notes_max_notes_per_page: int
    page_notes_tone: str
    page_notes_include_code: bool
    resubmission_cap_enabled: bool
    resubmission_cap_grade: str
    confidence_weight_model: float
    confidence_weight_criterion: float
    confidence_weight_evidence: float
    confidence_weight_extraction: float
    low_extraction_threshold: float

    @classmethod
    def load(cls) -> "Settings":
        base_dir = Path(__file__).resolve().parents[1]
        _load_dotenv(base_dir / ".env")

        allowed_origins_env = os.getenv(
            "GRADELEDGER_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        )
        allowed_origins = [item.strip() for item in allowed_origins_env.split(",") if item.strip()]

        tone = os.getenv("GRADELEDGER_PAGE_NOTES_TONE", "professional").strip().lower()
        if tone not in {"supportive", "professional", "strict"}:
            tone = "professional"

        return cls(
            base_dir=base_dir,
            allowed_origins=allowed_origins,
            log_level=os.getenv("GRADELEDGER_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_json=_to_bool(os.getenv("GRADELEDGER_LOG_JSON"), default=False),
            default_actor=os.getenv("GRADELEDGER_DEFAULT_ACTOR", "Assessor").strip() or "Assessor",
            page_notes_max_pages=_to_int(os.getenv("GRADELEDGER_PAGE_NOTES_MAX_PAGES"), 6, 1, 20),
            page_notes_max_notes_per_page=_to_int(
                os.getenv("GRADELEDGER_PAGE_NOTES_MAX_NOTES_PER_PAGE"), 3, 1, 8
            ),
            page_notes_tone=tone,
            page_notes_include_code=_to_bool(
                os.getenv("GRADELEDGER_PAGE_NOTES_INCLUDE_CODE"), default=True
            ),
            resubmission_cap_enabled=_to_bool(
                os.getenv("GRADELEDGER_RESUBMISSION_CAP_ENABLED"), default=True
            ),
            resubmission_cap_grade=os.getenv(
                "GRADELEDGER_RESUBMISSION_CAP_GRADE", "PASS_ON_RESUBMISSION"
            ),
            confidence_weight_model=_to_unit_float(os.getenv("GRADELEDGER_WEIGHT_MODEL"), 0.35),
            confidence_weight_criterion=_to_unit_float(
                os.getenv("GRADELEDGER_WEIGHT_CRITERION"), 0.30
            ),
            confidence_weight_evidence=_to_unit_float(
                os.getenv("GRADELEDGER_WEIGHT_EVIDENCE"), 0.20
            ),
            confidence_weight_extraction=_to_unit_float(
                os.getenv("GRADELEDGER_WEIGHT_EXTRACTION"), 0.15
            ),
            low_extraction_threshold=_to_unit_float(
                os.getenv("GRADELEDGER_LOW_EXTRACTION_THRESHOLD"), 0.75
            ),
        )


settings = Settings.load()
