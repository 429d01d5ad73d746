"""
Meeting Domain Model
A confirmed booking created by the booking finalizer
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class MeetingSource(str, Enum):
    """How the meeting was booked"""
    AI_CALL = "ai_call"
    MANUAL = "manual"


class Meeting(BaseModel):
    """
    Confirmed meeting.

    At most one meeting exists per (agency_id, meeting_time). Never
    mutated after insert.
    """
    id: str
    agency_id: str
    opportunity_id: str
    call_id: str
    meeting_time: datetime
    source: MeetingSource = MeetingSource.AI_CALL
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}
