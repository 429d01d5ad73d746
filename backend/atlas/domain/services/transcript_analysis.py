"""
Transcript Analysis
Decides from a finished call's transcript whether a meeting was booked
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz

from atlas.domain.interfaces.store import Store
from atlas.domain.interfaces.text_generator import TextGenerator
from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.call import TranscriptFragment
from atlas.domain.models.opportunity import Opportunity
from atlas.domain.services.assistant_config import extract_booked_slot
from atlas.domain.services.availability_service import AvailabilityService
from atlas.domain.services.booking_service import BookingFinalizer
from atlas.domain.services.prompt_manager import PromptManager
from atlas.utils.json_utils import parse_json_object

logger = logging.getLogger(__name__)

MAX_SLOTS_IN_PROMPT = 10
MIN_BOOKING_CONFIDENCE = 70
INVALID_SLOT_PENALTY = 30
MARKER_CONFIDENCE = 80


def format_transcript(fragments: List[TranscriptFragment]) -> str:
    ordered = sorted(fragments, key=lambda f: f.timestamp or 0)
    return "\n".join(f"{f.role}: {f.text}" for f in ordered if f.text)


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, confidence))


def normalize_analysis(parsed: Dict[str, Any], marker_slot: Optional[str] = None) -> Dict[str, Any]:
    """Coerce a model response into the stored analysis shape."""
    slot = parsed.get("slotIso")
    if not isinstance(slot, str) or not slot.strip():
        slot = None
    return {
        "meeting_booked": parsed.get("meetingBooked") is True,
        "slot_iso": (slot.strip() if slot else None) or marker_slot,
        "confidence": _clamp_confidence(parsed.get("confidence")),
        "reasoning": str(parsed.get("reasoning") or ""),
        "rejection_detected": parsed.get("rejectionDetected") is True,
    }


def _empty_analysis(reasoning: str) -> Dict[str, Any]:
    return {
        "meeting_booked": False,
        "slot_iso": None,
        "confidence": 0.0,
        "reasoning": reasoning,
        "rejection_detected": False,
    }


class TranscriptAnalyzer:
    """Task handler for ``analyze_call_transcript``."""

    def __init__(
        self,
        store: Store,
        availability: AvailabilityService,
        booking: BookingFinalizer,
        text_generator: Optional[TextGenerator] = None,
        prompts: Optional[PromptManager] = None
    ):
        self.store = store
        self.availability = availability
        self.booking = booking
        self.text_generator = text_generator
        self.prompts = prompts or PromptManager()

    async def analyze_call_transcript(self, call_id: str) -> Optional[Dict[str, Any]]:
        """
        Analyze the call, persist ``booking_analysis`` and act on it.

        Calls that already carry an outcome are left untouched.
        """
        call = await self.store.get_call(call_id)
        if not call:
            logger.warning(f"Transcript analysis skipped, call {call_id} not found")
            return None
        if call.outcome:
            logger.info(f"Call {call_id} already has outcome {call.outcome}, skipping analysis")
            return call.booking_analysis

        agency = await self.store.get_agency(call.agency_id)
        opportunity = await self.store.get_opportunity(call.opportunity_id)
        if not agency or not opportunity:
            logger.warning(f"Transcript analysis skipped for call {call_id}: agency or opportunity missing")
            return None

        transcript = format_transcript(call.transcript)
        marker_slot = extract_booked_slot(
            " ".join(f.text for f in call.transcript if f.role == "assistant")
        )

        if not transcript:
            analysis = _empty_analysis("Empty transcript")
        elif self.text_generator is None:
            analysis = _empty_analysis("No text generator configured")
            if marker_slot:
                analysis.update({
                    "meeting_booked": True,
                    "slot_iso": marker_slot,
                    "confidence": float(MARKER_CONFIDENCE),
                    "reasoning": "Booking marker found in transcript",
                })
        else:
            analysis = await self._analyze_with_model(call_id, agency, opportunity, transcript, marker_slot)

        if analysis["meeting_booked"] and analysis["slot_iso"]:
            if not await self.availability.validate_slot(agency.id, analysis["slot_iso"]):
                analysis["meeting_booked"] = False
                analysis["slot_iso"] = None
                analysis["confidence"] = max(0.0, analysis["confidence"] - INVALID_SLOT_PENALTY)
                analysis["reasoning"] += " (AI suggested unavailable time slot)"

        if analysis["confidence"] < MIN_BOOKING_CONFIDENCE:
            analysis["meeting_booked"] = False

        analysis["analyzed_at"] = datetime.now(pytz.UTC).isoformat()
        await self.store.update_call(call.id, {"booking_analysis": analysis})

        if analysis["rejection_detected"]:
            await self.booking.mark_opportunity_rejected(call.id)
        elif analysis["meeting_booked"] and analysis["slot_iso"]:
            await self.booking.finalize_booking(call.id, analysis["slot_iso"])

        return analysis

    async def _analyze_with_model(
        self,
        call_id: str,
        agency: AgencyProfile,
        opportunity: Opportunity,
        transcript: str,
        marker_slot: Optional[str],
    ) -> Dict[str, Any]:
        slots = (await self.availability.get_slots_for_agency(agency))[:MAX_SLOTS_IN_PROMPT]
        slots_text = "\n".join(f'- "{slot.iso}" ({slot.label})' for slot in slots)

        try:
            prompt = self.prompts.render(
                "booking_analysis",
                agency=agency,
                opportunity=opportunity,
                transcript=transcript,
                slots_text=slots_text,
            )
            response = await self.text_generator.generate(
                prompt, temperature=0.1, max_tokens=500, json_mode=True
            )
            return normalize_analysis(parse_json_object(response), marker_slot)
        except Exception as e:
            logger.error(f"Transcript analysis failed for call {call_id}: {e}")
            return _empty_analysis(f"Analysis failed: {e}")
