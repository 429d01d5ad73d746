"""
Meeting Endpoints
Agency availability and slot validation
"""
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from atlas.api.v1.dependencies import (
    CurrentUser,
    get_container,
    get_current_user,
    load_owned_agency,
)
from atlas.domain.models.availability import Slot
from atlas.services.container import ServiceContainer

router = APIRouter(prefix="/meetings", tags=["meetings"])


class AvailabilityResponse(BaseModel):
    agency_id: str
    time_zone: str
    slots: List[Slot]


class ValidateSlotRequest(BaseModel):
    agency_id: str
    slot_iso: str


class ValidateSlotResponse(BaseModel):
    valid: bool


@router.get("/availability/{agency_id}", response_model=AvailabilityResponse)
async def get_availability(
    agency_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    agency = await load_owned_agency(agency_id, current_user, container)
    slots = await container.availability.get_slots_for_agency(agency)
    return AvailabilityResponse(
        agency_id=agency.id,
        time_zone=agency.time_zone or container.settings.default_timezone,
        slots=slots,
    )


@router.post("/validate-slot", response_model=ValidateSlotResponse)
async def validate_slot(
    request: ValidateSlotRequest,
    current_user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container)
):
    await load_owned_agency(request.agency_id, current_user, container)
    valid = await container.availability.validate_slot(request.agency_id, request.slot_iso)
    return ValidateSlotResponse(valid=valid)
