"""
Opportunity Domain Model
A prospect business discovered by lead sourcing
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from atlas.core.exceptions import InvalidTransitionError


class OpportunityStatus(str, Enum):
    """Opportunity pipeline status"""
    SOURCED = "SOURCED"
    AUDITING = "AUDITING"
    DATA_READY = "DATA_READY"
    READY = "READY"
    BOOKED = "Booked"
    REJECTED = "Rejected"


_CLOSED = {OpportunityStatus.BOOKED, OpportunityStatus.REJECTED}

OPPORTUNITY_TRANSITIONS: Dict[OpportunityStatus, set] = {
    OpportunityStatus.SOURCED: {OpportunityStatus.AUDITING, OpportunityStatus.DATA_READY} | _CLOSED,
    OpportunityStatus.AUDITING: {OpportunityStatus.READY, OpportunityStatus.DATA_READY} | _CLOSED,
    OpportunityStatus.DATA_READY: {OpportunityStatus.AUDITING, OpportunityStatus.READY} | _CLOSED,
    OpportunityStatus.READY: {OpportunityStatus.AUDITING} | _CLOSED,
    OpportunityStatus.BOOKED: set(),
    OpportunityStatus.REJECTED: set(),
}


def can_transition(current: OpportunityStatus | str, target: OpportunityStatus | str) -> bool:
    current, target = OpportunityStatus(current), OpportunityStatus(target)
    return current == target or target in OPPORTUNITY_TRANSITIONS[current]


def transition(current: OpportunityStatus | str, target: OpportunityStatus | str) -> OpportunityStatus:
    if not can_transition(current, target):
        raise InvalidTransitionError("opportunity", OpportunityStatus(current).value, OpportunityStatus(target).value)
    return OpportunityStatus(target)


class Opportunity(BaseModel):
    """One prospect business"""
    id: str
    agency_id: str
    lead_gen_flow_id: Optional[str] = None
    place_id: str
    name: str
    domain: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    rating: Optional[float] = None
    reviews_count: Optional[int] = None

    signals: List[str] = Field(default_factory=list)
    qualification_score: float = 0.0
    status: OpportunityStatus = OpportunityStatus.SOURCED
    fit_reason: Optional[str] = None

    target_vertical: Optional[str] = None
    target_geography: Optional[str] = None
    source: str = "google_places"
    meeting_time: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}
