"""
Call Endpoints
Start outbound calls and read call state
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from atlas.api.v1.dependencies import (
    CurrentUser,
    get_container,
    get_current_user,
    load_owned_agency,
)
from atlas.core.exceptions import BillingError, CallStartError
from atlas.domain.models.call import Call
from atlas.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


class StartCallRequest(BaseModel):
    opportunity_id: str
    agency_id: str


class StartCallResponse(BaseModel):
    call_id: str
    status: str
    offered_slots: list[str] = []


@router.post("", response_model=StartCallResponse, status_code=201)
async def start_call(
    request: StartCallRequest,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    """Create the call and queue its placement. Returns before the provider is contacted."""
    await load_owned_agency(request.agency_id, current_user, container)

    try:
        call = await container.calls.start_call(
            request.opportunity_id, request.agency_id, started_by=current_user.email or current_user.id
        )
    except CallStartError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except BillingError as e:
        raise HTTPException(status_code=402, detail=e.message)

    return StartCallResponse(
        call_id=call.id,
        status=call.status,
        offered_slots=call.metadata.get("offered_slots", []),
    )


@router.get("/{call_id}", response_model=Call)
async def get_call(
    call_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    call: Optional[Call] = await container.store.get_call(call_id)
    if not call:
        raise HTTPException(status_code=404, detail="Call not found")
    await load_owned_agency(call.agency_id, current_user, container)
    return call
