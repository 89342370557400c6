"""FastAPI server — exposes scoring and the review queue over HTTP."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from crowdcheck.service import AnswerQualityService, ServiceResult

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "not_found": 404,
    "conflict": 409,
    "invalid_input": 400,
    "upstream_unavailable": 503,
}


class ResolveRequest(BaseModel):
    resolution: str
    reviewer_id: str
    correct: Optional[bool] = None
    notes: Optional[str] = None


class FlagRequest(BaseModel):
    reason: str


class ScoreResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    answer_id: str
    is_valid: Optional[bool]
    confidence_score: Optional[float]
    agreement_score: Optional[float]
    model_confidence_score: Optional[float] = None
    should_flag: bool
    flag_reason: Optional[str] = None
    flag_id: Optional[int] = None
    signals: dict[str, dict[str, Any]]
    already_scored: bool
    provisional: bool = False
    verdict_source: Optional[str] = None
    new_trust_score: Optional[float] = None
    reward: Optional[dict[str, Any]] = None
    warnings: list[str] = []


class EscalationResponse(BaseModel):
    flag_id: int
    answer_id: str
    reason: str
    status: str
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[str] = None


class EscalationPageResponse(BaseModel):
    escalations: list[EscalationResponse]
    limit: int
    offset: int
    has_more: bool


class ResolveResponse(BaseModel):
    escalation: EscalationResponse
    answer: Optional[dict[str, Any]] = None


def _unwrap(result: ServiceResult) -> dict[str, Any]:
    """Return the result data or raise the HTTP error for its kind."""
    if result.success:
        return result.data
    status = _STATUS_BY_KIND.get(result.error_kind or "", 500)
    raise HTTPException(status_code=status, detail="; ".join(result.errors))


def create_app(service: AnswerQualityService) -> FastAPI:
    """Build the HTTP app around an already-wired service."""
    app = FastAPI(title="CrowdCheck Answer Quality API")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "policy_version": service.resolver.version}

    @app.post("/answers/{answer_id}/score", response_model=ScoreResponse)
    def score_answer(answer_id: str) -> ScoreResponse:
        """Score an answer. Re-scoring returns the stored verdict."""
        result = service.score_answer(answer_id)
        data = _unwrap(result)
        return ScoreResponse(**data, warnings=result.warnings)

    @app.get("/escalations", response_model=EscalationPageResponse)
    def list_escalations(
        status: str = "pending",
        limit: Optional[int] = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
    ) -> EscalationPageResponse:
        data = _unwrap(service.list_escalations(status=status, limit=limit, offset=offset))
        return EscalationPageResponse(**data)

    @app.post("/escalations/{flag_id}/resolve", response_model=ResolveResponse)
    def resolve_escalation(flag_id: int, req: ResolveRequest) -> ResolveResponse:
        data = _unwrap(service.resolve_escalation(
            flag_id,
            resolution=req.resolution,
            reviewer_id=req.reviewer_id,
            correct=req.correct,
            notes=req.notes,
        ))
        return ResolveResponse(**data)

    @app.post("/answers/{answer_id}/flag", response_model=EscalationResponse, status_code=201)
    def flag_answer(answer_id: str, req: FlagRequest) -> EscalationResponse:
        data = _unwrap(service.flag_answer(answer_id, req.reason))
        return EscalationResponse(**data["escalation"])

    return app


def main() -> None:
    import uvicorn

    from crowdcheck.config import load_settings

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(AnswerQualityService.from_settings(settings))
    logger.info("Starting CrowdCheck API (store=%s)", settings.database_url)
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
