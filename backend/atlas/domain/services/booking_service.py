"""
Booking Finalizer
Turns an agreed slot into a meeting, or records why it could not
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

import pytz

from atlas.core.exceptions import MeetingConflictError
from atlas.domain.interfaces.store import Store
from atlas.domain.models.call import Call, CallOutcome
from atlas.domain.models.meeting import Meeting, MeetingSource
from atlas.domain.models.opportunity import OpportunityStatus
from atlas.domain.models.task import TaskType
from atlas.domain.services.availability_service import (
    AvailabilityService,
    parse_iso_in_timezone,
    resolve_timezone,
)
from atlas.domain.services.opportunity_service import set_opportunity_status
from atlas.domain.services.task_queue import TaskQueueService

logger = logging.getLogger(__name__)

CREATED_BY = "atlas_ai"


class BookingStatus(str, Enum):
    BOOKED = "booked"
    BOOKING_FAILED = "booking_failed"
    INVALID = "invalid"
    NOT_FOUND = "not_found"


@dataclass
class BookingResult:
    status: BookingStatus
    meeting_id: Optional[str] = None
    reason: Optional[str] = None


class BookingFinalizer:
    """
    Finalizes meetings agreed on a call.

    A slot that became unavailable, a meeting already at that instant, or
    an insert failure all end in ``booking_failed`` on the call. Nothing
    here raises for those cases.
    """

    def __init__(self, store: Store, availability: AvailabilityService, queue: TaskQueueService):
        self.store = store
        self.availability = availability
        self.queue = queue

    async def finalize_booking(self, call_id: str, slot_iso: str) -> BookingResult:
        call = await self.store.get_call(call_id)
        if not call:
            logger.error(f"Cannot book: call {call_id} not found")
            return BookingResult(BookingStatus.NOT_FOUND, reason="call not found")

        agency = await self.store.get_agency(call.agency_id)
        if not agency:
            logger.error(f"Cannot book call {call_id}: agency {call.agency_id} not found")
            return BookingResult(BookingStatus.NOT_FOUND, reason="agency not found")

        tz = resolve_timezone(agency.time_zone)
        try:
            meeting_time = parse_iso_in_timezone(slot_iso, tz).astimezone(pytz.UTC)
        except (ValueError, TypeError) as e:
            logger.error(f"Cannot book call {call_id}: invalid slot {slot_iso!r} ({e})")
            return BookingResult(BookingStatus.INVALID, reason=f"invalid slot: {slot_iso}")

        if not await self.availability.validate_slot(agency.id, slot_iso):
            logger.warning(f"Slot {slot_iso} no longer available for agency {agency.id}")
            await self._mark_booking_failed(call)
            return BookingResult(BookingStatus.BOOKING_FAILED, reason="slot no longer available")

        existing = await self.store.find_meeting_at(agency.id, meeting_time)
        if existing:
            logger.warning(f"Agency {agency.id} already has meeting {existing.id} at {slot_iso}")
            await self._mark_booking_failed(call)
            return BookingResult(BookingStatus.BOOKING_FAILED, reason="slot already booked")

        try:
            meeting = await self.store.insert_meeting(Meeting(
                id=str(uuid.uuid4()),
                agency_id=agency.id,
                opportunity_id=call.opportunity_id,
                call_id=call.id,
                meeting_time=meeting_time,
                source=MeetingSource.AI_CALL,
                created_by=CREATED_BY,
                created_at=datetime.now(pytz.UTC),
            ))
            await set_opportunity_status(
                self.store, call.opportunity_id, OpportunityStatus.BOOKED, meeting_time=meeting_time
            )
            await self.store.update_call(call.id, {
                "outcome": CallOutcome.BOOKED,
                "current_status": CallOutcome.BOOKED.value,
                "meeting_time": meeting_time,
            })
            queued = await self.queue.enqueue_task(
                TaskType.SEND_BOOKING_CONFIRMATION,
                {"meeting_id": meeting.id},
                idempotency_key=f"booking_confirmation:{meeting.id}",
            )
        except MeetingConflictError as e:
            logger.warning(f"Meeting insert conflict for call {call_id}: {e}")
            await self._mark_booking_failed(call)
            return BookingResult(BookingStatus.BOOKING_FAILED, reason="slot already booked")
        except Exception as e:
            logger.error(f"Booking failed for call {call_id}: {e}", exc_info=True)
            await self._mark_booking_failed(call)
            return BookingResult(BookingStatus.BOOKING_FAILED, reason=str(e))

        if not queued:
            logger.warning(f"Confirmation for meeting {meeting.id} was not queued")

        logger.info(f"Booked meeting {meeting.id} for call {call_id} at {meeting_time.isoformat()}")
        return BookingResult(BookingStatus.BOOKED, meeting_id=meeting.id)

    async def mark_opportunity_rejected(self, call_id: str) -> bool:
        """Close the call's opportunity as Rejected. False when the call is unknown."""
        call = await self.store.get_call(call_id)
        if not call:
            logger.warning(f"Cannot mark rejection: call {call_id} not found")
            return False

        await set_opportunity_status(self.store, call.opportunity_id, OpportunityStatus.REJECTED)
        await self.store.update_call(call.id, {
            "outcome": CallOutcome.REJECTED,
            "current_status": CallOutcome.REJECTED.value,
        })
        logger.info(f"Opportunity {call.opportunity_id} rejected on call {call_id}")
        return True

    async def _mark_booking_failed(self, call: Call) -> None:
        await self.store.update_call(call.id, {
            "outcome": CallOutcome.BOOKING_FAILED,
            "current_status": CallOutcome.BOOKING_FAILED.value,
        })
