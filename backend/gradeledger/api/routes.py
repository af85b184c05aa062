from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Header, HTTPException, Request

from ..config import settings
from ..errors import (
    DuplicateRunId,
    EmptyFeedbackText,
    GradeLedgerError,
    InvalidVerdictPayload,
    RunNotFound,
    SubmissionMismatch,
    UnknownCriterionCode,
)
from ..models import (
    AssessmentRun,
    CommitResponse,
    FeedbackEditRequest,
    HealthResponse,
    HistoryResponse,
    OverrideRequest,
    OverrideResponse,
    PageNote,
    RenderPayload,
    RerunDiff,
    RunHistoryItem,
)
from ..repositories import AssessmentRunStore
from ..services import assessment
from ..services.submission_locks import SubmissionLockManager

router = APIRouter(prefix="/api/v1", tags=["v1"])

_ERROR_STATUS: list[tuple[type[GradeLedgerError], int]] = [
    (RunNotFound, 404),
    (UnknownCriterionCode, 404),
    (EmptyFeedbackText, 400),
    (InvalidVerdictPayload, 400),
    (DuplicateRunId, 409),
    (SubmissionMismatch, 409),
]


def _http_error(exc: GradeLedgerError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def _store(request: Request) -> AssessmentRunStore:
    return request.app.state.run_store


def _locks(request: Request) -> SubmissionLockManager:
    return request.app.state.submission_locks


def _actor(value: str | None) -> str:
    return (value or "").strip() or settings.default_actor


def _load_run(request: Request, submission_id: str, run_id: str) -> AssessmentRun:
    try:
        return assessment.get_run(_store(request), submission_id, run_id)
    except RunNotFound as exc:
        raise _http_error(exc) from exc


@router.post("/submissions/{submission_id}/runs", response_model=CommitResponse)
async def grade_submission(
    submission_id: str,
    request: Request,
    payload: dict[str, Any] = Body(...),
    x_audit_actor: str | None = Header(default=None),
) -> CommitResponse:
    async with _locks(request).hold(submission_id):
        try:
            result = assessment.grade_submission(
                _store(request), submission_id, payload, _actor(x_audit_actor)
            )
        except GradeLedgerError as exc:
            raise _http_error(exc) from exc
    return CommitResponse(run=result.run, warnings=result.warnings)


@router.get("/submissions/{submission_id}/runs", response_model=HistoryResponse)
async def run_history(submission_id: str, request: Request) -> HistoryResponse:
    runs = _store(request).history(submission_id)
    return HistoryResponse(
        submission_id=submission_id,
        items=tuple(
            RunHistoryItem(
                id=run.id,
                created_at=run.created_at,
                created_by=run.created_by,
                parent_run_id=run.parent_run_id,
                overall_grade=run.overall_grade,
                final_confidence=run.confidence_policy.final_confidence,
                override_count=len(run.overrides),
            )
            for run in runs
        ),
    )


@router.get("/submissions/{submission_id}/runs/latest", response_model=AssessmentRun)
async def latest_run(submission_id: str, request: Request) -> AssessmentRun:
    run = _store(request).latest(submission_id)
    if run is None:
        raise HTTPException(status_code=404, detail="No runs for this submission.")
    return run


@router.get("/submissions/{submission_id}/runs/{run_id}", response_model=AssessmentRun)
async def run_detail(submission_id: str, run_id: str, request: Request) -> AssessmentRun:
    return _load_run(request, submission_id, run_id)


@router.post(
    "/submissions/{submission_id}/runs/{run_id}/overrides", response_model=OverrideResponse
)
async def apply_override(
    submission_id: str,
    run_id: str,
    payload: OverrideRequest,
    request: Request,
    x_audit_actor: str | None = Header(default=None),
) -> OverrideResponse:
    async with _locks(request).hold(submission_id):
        try:
            result = assessment.apply_criterion_override(
                _store(request), submission_id, run_id, payload, _actor(x_audit_actor)
            )
        except GradeLedgerError as exc:
            raise _http_error(exc) from exc
    return OverrideResponse(run=result.run, override=result.override)


@router.delete(
    "/submissions/{submission_id}/runs/{run_id}/overrides/{code}", response_model=AssessmentRun
)
async def clear_override(
    submission_id: str,
    run_id: str,
    code: str,
    request: Request,
    x_audit_actor: str | None = Header(default=None),
) -> AssessmentRun:
    async with _locks(request).hold(submission_id):
        try:
            return assessment.clear_criterion_override(
                _store(request), submission_id, run_id, code, _actor(x_audit_actor)
            )
        except GradeLedgerError as exc:
            raise _http_error(exc) from exc


@router.patch("/submissions/{submission_id}/runs/{run_id}/feedback", response_model=AssessmentRun)
async def edit_feedback(
    submission_id: str,
    run_id: str,
    payload: FeedbackEditRequest,
    request: Request,
    x_audit_actor: str | None = Header(default=None),
) -> AssessmentRun:
    async with _locks(request).hold(submission_id):
        try:
            return assessment.edit_feedback(
                _store(request), submission_id, run_id, payload, _actor(x_audit_actor)
            )
        except GradeLedgerError as exc:
            raise _http_error(exc) from exc


@router.get(
    "/submissions/{submission_id}/runs/{run_id}/page-notes", response_model=list[PageNote]
)
async def page_notes(submission_id: str, run_id: str, request: Request) -> list[PageNote]:
    run = _load_run(request, submission_id, run_id)
    return list(assessment.build_render_payload(run).page_notes)


@router.get(
    "/submissions/{submission_id}/runs/{run_id}/render-payload", response_model=RenderPayload
)
async def render_payload(submission_id: str, run_id: str, request: Request) -> RenderPayload:
    return assessment.build_render_payload(_load_run(request, submission_id, run_id))


@router.get("/submissions/{submission_id}/rerun-integrity", response_model=RerunDiff)
async def rerun_integrity(submission_id: str, request: Request) -> RerunDiff:
    result = assessment.rerun_integrity(_store(request), submission_id)
    if result is None:
        raise HTTPException(status_code=404, detail="At least two runs are needed for a diff.")
    return result


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    return HealthResponse(status="ok", submissions=_store(request).submission_count())
