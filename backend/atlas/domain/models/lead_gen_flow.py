"""
Lead-Gen Flow Model
One campaign run with ordered, independently tracked phases
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from atlas.core.exceptions import InvalidTransitionError


class FlowStatus(str, Enum):
    """Overall flow status"""
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"
    PAUSED_FOR_UPGRADE = "paused_for_upgrade"
    COMPLETED = "completed"


class PhaseName(str, Enum):
    """Pipeline phases, declared in execution order"""
    SOURCE = "source"
    FILTER_RANK = "filter_rank"
    PERSIST_LEADS = "persist_leads"
    SCRAPE_CONTENT = "scrape_content"
    GENERATE_DOSSIER = "generate_dossier"
    FINALIZE_RANK = "finalize_rank"


class PhaseStatus(str, Enum):
    """Status of a single phase"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


PHASE_ORDER: List[PhaseName] = list(PhaseName)

PHASE_WEIGHTS: Dict[PhaseName, float] = {
    PhaseName.SOURCE: 0.05,
    PhaseName.FILTER_RANK: 0.05,
    PhaseName.PERSIST_LEADS: 0.05,
    PhaseName.SCRAPE_CONTENT: 0.05,
    PhaseName.GENERATE_DOSSIER: 0.8,
    PhaseName.FINALIZE_RANK: 0.0,
}

FLOW_TRANSITIONS: Dict[FlowStatus, set] = {
    FlowStatus.IDLE: {FlowStatus.RUNNING, FlowStatus.ERROR},
    FlowStatus.RUNNING: {FlowStatus.RUNNING, FlowStatus.PAUSED_FOR_UPGRADE, FlowStatus.ERROR, FlowStatus.COMPLETED},
    FlowStatus.PAUSED_FOR_UPGRADE: {FlowStatus.RUNNING, FlowStatus.ERROR},
    FlowStatus.ERROR: set(),
    FlowStatus.COMPLETED: {FlowStatus.COMPLETED},
}

PHASE_TRANSITIONS: Dict[PhaseStatus, set] = {
    PhaseStatus.PENDING: {PhaseStatus.RUNNING, PhaseStatus.COMPLETE, PhaseStatus.ERROR},
    PhaseStatus.RUNNING: {PhaseStatus.RUNNING, PhaseStatus.COMPLETE, PhaseStatus.ERROR},
    PhaseStatus.COMPLETE: {PhaseStatus.COMPLETE},
    PhaseStatus.ERROR: {PhaseStatus.ERROR},
}


def transition_flow(current: FlowStatus | str, target: FlowStatus | str) -> FlowStatus:
    current, target = FlowStatus(current), FlowStatus(target)
    if target not in FLOW_TRANSITIONS[current]:
        raise InvalidTransitionError("flow", current.value, target.value)
    return target


def transition_phase(current: PhaseStatus | str, target: PhaseStatus | str) -> PhaseStatus:
    current, target = PhaseStatus(current), PhaseStatus(target)
    if target not in PHASE_TRANSITIONS[current]:
        raise InvalidTransitionError("phase", current.value, target.value)
    return target


class PhaseRecord(BaseModel):
    """Status, progress and timing for one phase"""
    name: PhaseName
    status: PhaseStatus = PhaseStatus.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    model_config = {"use_enum_values": True}


class LastEvent(BaseModel):
    """Most recent flow event, shown in the dashboard"""
    type: str
    message: str
    timestamp: datetime


class BillingBlock(BaseModel):
    """Insufficient-credit condition that pauses a flow"""
    phase: PhaseName
    feature_id: str
    credit_check: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"use_enum_values": True}


class PlaceSnapshot(BaseModel):
    """Sourced place kept on the flow for display and re-filtering"""
    id: str
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    reviews: Optional[int] = None


def default_phases() -> List[PhaseRecord]:
    return [PhaseRecord(name=name) for name in PHASE_ORDER]


class LeadGenFlow(BaseModel):
    """A lead generation campaign run"""
    id: str
    user_id: str
    agency_id: str
    num_leads_requested: int = Field(default=20, ge=1)
    num_leads_fetched: int = 0
    target_vertical: str
    target_geography: str

    status: FlowStatus = FlowStatus.IDLE
    phases: List[PhaseRecord] = Field(default_factory=default_phases)
    last_event: Optional[LastEvent] = None
    billing_block: Optional[BillingBlock] = None
    places_snapshot: List[PlaceSnapshot] = Field(default_factory=list)
    error: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    def get_phase(self, name: PhaseName | str) -> PhaseRecord:
        name = PhaseName(name).value
        for phase in self.phases:
            if phase.name == name:
                return phase
        raise KeyError(f"Unknown phase: {name}")

    def overall_progress(self) -> float:
        """Weighted progress across all phases (0-1)."""
        total = 0.0
        for phase in self.phases:
            total += PHASE_WEIGHTS[PhaseName(phase.name)] * phase.progress
        return round(min(1.0, total), 4)

    def next_phase(self) -> Optional[PhaseName]:
        """First phase that has not completed, in pipeline order."""
        for name in PHASE_ORDER:
            if self.get_phase(name).status != PhaseStatus.COMPLETE.value:
                return name
        return None
