"""
Risk scoring API.

POST /v1/risk/score                 → score one member's facts (no persistence)
POST /v1/risk/recalculate           → rescore every scorable member and upsert
GET  /v1/risk/members/{member_id}   → latest stored score
GET  /v1/risk/health                → health check
"""
from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from retention.core.auth import verify_token
from retention.core.config import get_settings
from retention.models.database import get_store
from retention.schemas.member import MemberFacts
from retention.schemas.risk import RiskScore
from retention.scoring.engine import MODEL_VERSION, score_member
from retention.services.risk_recalculation import run_recalculation
from retention.store.ports import RetentionStore

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/risk", tags=["risk"])


class RecalculateRequest(BaseModel):
    community_id: Optional[str] = None


@router.post(
    "/score",
    response_model=RiskScore,
    summary="Score a member's churn risk",
    description="Pure calculation over the supplied facts. Nothing is stored.",
)
async def score(
    facts: MemberFacts,
    token_payload: dict = Depends(verify_token),
) -> RiskScore:
    try:
        result = score_member(facts)
    except Exception as e:
        logger.error("scoring_failed", member_id=facts.member_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Scoring engine error: {e}")

    logger.info(
        "risk_scored",
        member_id=facts.member_id,
        score=result.score,
        level=result.level.value,
        caller=token_payload.get("sub", "unknown"),
    )
    return result


@router.post("/recalculate", summary="Rescore all scorable members")
async def recalculate(
    request: RecalculateRequest,
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
) -> dict:
    user = token.get("sub", "unknown")
    logger.info("risk_recalculation_triggered", triggered_by=user, community_id=request.community_id)

    try:
        return await asyncio.to_thread(run_recalculation, store, request.community_id)
    except Exception as e:
        logger.error("risk_recalculation_failed", error=str(e), triggered_by=user)
        raise HTTPException(status_code=500, detail=f"Risk recalculation failed: {e}")


@router.get("/members/{member_id}", response_model=RiskScore)
async def get_member_score(
    member_id: str,
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
) -> RiskScore:
    stored = await asyncio.to_thread(store.get_risk_score, member_id)
    if stored is None:
        raise HTTPException(404, f"No risk score for member {member_id}")
    return stored


@router.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "service": get_settings().app_name, "model_version": MODEL_VERSION}
