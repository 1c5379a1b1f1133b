"""
Playbook API.

POST /v1/playbooks/match                              → evaluate trigger conditions
POST /v1/playbooks/{playbook_id}/enroll               → enroll a member
POST /v1/playbooks/enrollments/{enrollment_id}/stop   → stop an active enrollment
POST /v1/playbooks/execute                            → run one sweep over due steps

Enrollment is gated on the community's plan (feature "playbooks").
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from retention.core.auth import verify_token
from retention.core.plan_limits import can_access
from retention.models.database import get_store
from retention.playbooks.enrollment import EnrollmentManager
from retention.playbooks.triggers import matches
from retention.schemas.enrollment import EnrollmentError, EnrollmentErrorCode, EnrollmentSuccess, SweepResult
from retention.schemas.playbook import TriggerCondition
from retention.services.playbook_sweep import run_sweep
from retention.store.ports import RetentionStore

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/playbooks", tags=["playbooks"])

_STATUS_FOR_CODE = {
    EnrollmentErrorCode.ALREADY_ENROLLED: 409,
    EnrollmentErrorCode.PLAYBOOK_NOT_FOUND: 404,
    EnrollmentErrorCode.MEMBER_NOT_FOUND: 404,
    EnrollmentErrorCode.ENROLLMENT_NOT_FOUND: 404,
    EnrollmentErrorCode.PLAYBOOK_INACTIVE: 400,
    EnrollmentErrorCode.PLAYBOOK_EMPTY: 400,
    EnrollmentErrorCode.NOT_ACTIVE: 409,
}


# ── Pydantic Schemas ──

class MatchRequest(BaseModel):
    facts: dict[str, Any]
    conditions: list[TriggerCondition]


class MatchResponse(BaseModel):
    matches: bool


class EnrollRequest(BaseModel):
    member_id: str
    community_id: str


class StopRequest(BaseModel):
    outcome: str = "stopped_manually"


def _raise_for(error: EnrollmentError) -> None:
    raise HTTPException(status_code=_STATUS_FOR_CODE.get(error.code, 400), detail=error.model_dump(mode="json"))


# ── Endpoints ──

@router.post("/match", response_model=MatchResponse)
async def match(request: MatchRequest, token: dict = Depends(verify_token)) -> MatchResponse:
    return MatchResponse(matches=matches(request.facts, request.conditions))


@router.post("/execute", response_model=SweepResult, summary="Execute due playbook steps")
async def execute(
    batch_size: Optional[int] = None,
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
) -> SweepResult:
    user = token.get("sub", "unknown")
    logger.info("playbook_execution_triggered", triggered_by=user, batch_size=batch_size)

    try:
        return await asyncio.to_thread(run_sweep, batch_size, None, store)
    except Exception as e:
        logger.error("playbook_execution_failed", error=str(e), triggered_by=user)
        raise HTTPException(status_code=500, detail=f"Playbook execution failed: {e}")


@router.post("/{playbook_id}/enroll", response_model=EnrollmentSuccess)
async def enroll(
    playbook_id: str,
    request: EnrollRequest,
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
) -> EnrollmentSuccess:
    community = await asyncio.to_thread(store.get_community, request.community_id)
    if community is None:
        raise HTTPException(404, f"Community {request.community_id} not found")
    if not can_access(community.plan_tier, "playbooks"):
        logger.info("enrollment_plan_blocked", community_id=community.id, plan_tier=community.plan_tier)
        raise HTTPException(403, f"Playbooks are not available on the {community.plan_tier} plan")

    playbook = await asyncio.to_thread(store.get_playbook, playbook_id)
    if playbook is not None and playbook.community_id != community.id:
        raise HTTPException(404, f"Playbook {playbook_id} not found in community {community.id}")

    manager = EnrollmentManager(store)
    try:
        result = await asyncio.to_thread(manager.enroll, playbook_id, request.member_id)
    except Exception as e:
        logger.error("enrollment_failed", playbook_id=playbook_id, member_id=request.member_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Enrollment failed: {e}")

    if isinstance(result, EnrollmentError):
        _raise_for(result)
    return result


@router.post("/enrollments/{enrollment_id}/stop", response_model=EnrollmentSuccess)
async def stop(
    enrollment_id: str,
    request: Optional[StopRequest] = None,
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
) -> EnrollmentSuccess:
    outcome = request.outcome if request else "stopped_manually"
    result = await asyncio.to_thread(EnrollmentManager(store).stop, enrollment_id, outcome)
    if isinstance(result, EnrollmentError):
        _raise_for(result)
    return result
