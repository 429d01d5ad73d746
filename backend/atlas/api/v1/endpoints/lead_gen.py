"""
Lead Generation Endpoints
Start, inspect and resume lead-gen flows
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from atlas.api.v1.dependencies import (
    CurrentUser,
    get_container,
    get_current_user,
    load_owned_agency,
)
from atlas.domain.models.lead_gen_flow import FlowStatus, LeadGenFlow
from atlas.domain.models.task import TaskType
from atlas.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lead-gen", tags=["lead-gen"])


class StartFlowRequest(BaseModel):
    agency_id: str
    target_vertical: str = Field(..., min_length=1)
    target_geography: str = Field(..., min_length=1)
    num_leads: int = Field(20, ge=1, le=20)


class FlowResponse(BaseModel):
    flow: LeadGenFlow
    overall_progress: float
    queued: Optional[bool] = None


async def _load_owned_flow(flow_id: str, current_user: CurrentUser, container: ServiceContainer) -> LeadGenFlow:
    flow = await container.store.get_flow(flow_id)
    if not flow or flow.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Flow not found")
    return flow


@router.post("/flows", response_model=FlowResponse, status_code=201)
async def start_flow(
    request: StartFlowRequest,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    """Create a flow and queue it for the worker."""
    await load_owned_agency(request.agency_id, current_user, container)

    flow = await container.workflow.create_flow(
        current_user.id,
        request.agency_id,
        request.target_vertical,
        request.target_geography,
        request.num_leads,
    )
    queued = await container.queue.enqueue_task(
        TaskType.RUN_LEAD_GEN_FLOW,
        {"flow_id": flow.id},
        idempotency_key=f"run_lead_gen_flow:{flow.id}",
    )
    return FlowResponse(flow=flow, overall_progress=flow.overall_progress(), queued=queued)


@router.get("/flows/{flow_id}", response_model=FlowResponse)
async def get_flow(
    flow_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    flow = await _load_owned_flow(flow_id, current_user, container)
    return FlowResponse(flow=flow, overall_progress=flow.overall_progress())


@router.post("/flows/{flow_id}/resume", response_model=FlowResponse)
async def resume_flow(
    flow_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    """Queue a paused flow to continue from its blocked phase (e.g. after an upgrade)."""
    flow = await _load_owned_flow(flow_id, current_user, container)
    if flow.status != FlowStatus.PAUSED_FOR_UPGRADE.value:
        raise HTTPException(status_code=409, detail=f"Flow is {flow.status}, not paused")

    queued = await container.queue.enqueue_task(
        TaskType.RUN_LEAD_GEN_FLOW,
        {"flow_id": flow.id, "resume": True},
    )
    return FlowResponse(flow=flow, overall_progress=flow.overall_progress(), queued=queued)


@router.get("/flows/{flow_id}/counts")
async def get_flow_counts(
    flow_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
) -> Dict[str, Any]:
    await _load_owned_flow(flow_id, current_user, container)
    return await container.workflow.get_opportunity_count_by_flow(flow_id)
