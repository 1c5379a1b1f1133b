"""
Admin API — setup and batch job triggers.

  POST /v1/admin/seed-system-playbooks/{community_id}
    → Insert the built-in playbooks a community is missing

  POST /v1/admin/auto-enroll
    → Run the trigger sweep that enrolls matching members

Both run their (sync) store work in a thread pool.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from retention.core.auth import verify_token
from retention.models.database import get_store
from retention.playbooks.system_playbooks import seed_system_playbooks
from retention.services.auto_enroll import run_auto_enroll
from retention.store.ports import RetentionStore

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/admin", tags=["admin"])


class JobResponse(BaseModel):
    triggered_by: str
    status: str
    message: str
    job_result: Optional[dict] = None


@router.post("/seed-system-playbooks/{community_id}", response_model=JobResponse)
async def seed_playbooks(
    community_id: str,
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
):
    user = token.get("sub", "unknown")
    community = await asyncio.to_thread(store.get_community, community_id)
    if community is None:
        raise HTTPException(404, f"Community {community_id} not found")

    try:
        created = await asyncio.to_thread(seed_system_playbooks, store, community_id)
    except Exception as e:
        logger.error("system_playbook_seed_failed", community_id=community_id, error=str(e), triggered_by=user)
        raise HTTPException(status_code=500, detail=f"Seeding system playbooks failed: {e}")

    return JobResponse(
        triggered_by=user,
        status="success",
        message=f"Created {len(created)} system playbooks",
        job_result={"created": created},
    )


@router.post(
    "/auto-enroll",
    response_model=JobResponse,
    summary="Enroll members matching active playbook triggers",
    description=(
        "Runs the auto-enroll sweep on demand for every community with "
        "auto-enrollment turned on and a plan that includes automated outreach. "
        "Schedule it right after the risk recalculation."
    ),
)
async def trigger_auto_enroll(
    token: dict = Depends(verify_token),
    store: RetentionStore = Depends(get_store),
):
    user = token.get("sub", "unknown")
    logger.info("auto_enroll_triggered", triggered_by=user)

    try:
        result = await asyncio.to_thread(run_auto_enroll, store)
    except Exception as e:
        logger.error("auto_enroll_failed", error=str(e), triggered_by=user)
        raise HTTPException(status_code=500, detail=f"Auto-enroll failed: {e}")

    return JobResponse(
        triggered_by=user,
        status="success" if not result["errors"] else "partial",
        message=(
            f"{result['enrolled']} enrolled, {result['skipped']} skipped "
            f"across {result['communities']} communities"
        ),
        job_result=result,
    )
