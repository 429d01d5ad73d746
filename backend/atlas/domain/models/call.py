"""
Call Domain Model
One outbound telephone attempt to an opportunity, plus its lifecycle state machine
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from atlas.core.exceptions import InvalidTransitionError


class CallStatus(str, Enum):
    """Lifecycle status of a call"""
    INITIATED = "initiated"
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    ENDED = "ended"
    COMPLETED = "completed"
    FAILED = "failed"


class CallOutcome(str, Enum):
    """Business outcome layered on top of the lifecycle"""
    BOOKED = "booked"
    REJECTED = "rejected"
    BOOKING_FAILED = "booking_failed"


# Forward order of the happy path; FAILED is reachable from any non-terminal state.
_STATUS_ORDER = [
    CallStatus.INITIATED,
    CallStatus.QUEUED,
    CallStatus.RINGING,
    CallStatus.IN_PROGRESS,
    CallStatus.ENDED,
    CallStatus.COMPLETED,
]

TERMINAL_STATUSES = {CallStatus.COMPLETED, CallStatus.FAILED}


def can_transition(current: CallStatus | str, target: CallStatus | str) -> bool:
    """
    Whether a call may move from ``current`` to ``target``.

    Re-applying the current status is allowed (webhook redelivery).
    Moves backwards along the happy path are rejected, which drops
    out-of-order status events.
    """
    current = CallStatus(current)
    target = CallStatus(target)

    if current == target:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if target == CallStatus.FAILED:
        return True
    return _STATUS_ORDER.index(target) > _STATUS_ORDER.index(current)


def transition(current: CallStatus | str, target: CallStatus | str) -> CallStatus:
    """Return ``target`` as a CallStatus or raise InvalidTransitionError."""
    if not can_transition(current, target):
        raise InvalidTransitionError("call", CallStatus(current).value, CallStatus(target).value)
    return CallStatus(target)


def parse_provider_status(raw: Optional[str]) -> Optional[CallStatus]:
    """Map a provider status string onto CallStatus (None when not a lifecycle state)."""
    if not raw:
        return None
    try:
        return CallStatus(raw.strip().lower())
    except ValueError:
        return None


class TranscriptFragment(BaseModel):
    """One finalized utterance in the call transcript"""
    role: str
    text: str
    timestamp: Optional[int] = Field(None, description="Epoch milliseconds")
    source: Optional[str] = None


class Call(BaseModel):
    """
    Outbound call record.

    The assistant snapshot is written once at creation. The provider call
    id is attached exactly once; webhook correlation relies on it.
    """
    id: str
    opportunity_id: str
    agency_id: str
    dialed_number: str
    assistant: Dict[str, Any] = Field(default_factory=dict)

    status: CallStatus = CallStatus.INITIATED
    current_status: Optional[str] = None

    provider_call_id: Optional[str] = None
    listen_url: Optional[str] = None
    control_url: Optional[str] = None

    transcript: List[TranscriptFragment] = Field(default_factory=list)
    summary: Optional[str] = None
    recording_url: Optional[str] = None
    ended_reason: Optional[str] = None
    billing_seconds: Optional[int] = None

    outcome: Optional[CallOutcome] = None
    meeting_time: Optional[datetime] = None
    booking_analysis: Optional[Dict[str, Any]] = None

    last_webhook_at: Optional[datetime] = None
    started_by: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def is_attached(self) -> bool:
        return self.provider_call_id is not None

    @property
    def metering(self) -> Dict[str, Any]:
        return (self.metadata or {}).get("ai_call_metering") or {}
