"""
Assistant Configuration
Builds the immutable voice-assistant snapshot stored on each call
"""
import re
from typing import Any, Dict, List, Optional

from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.availability import Slot
from atlas.domain.models.opportunity import Opportunity
from atlas.domain.services.prompt_manager import PromptManager

DEFAULT_GUARDRAILS = "standard compliance"
DEFAULT_TIMEZONE = "America/New_York"

MODEL = {"provider": "openai", "model": "chatgpt-4o-latest"}
VOICE = {"provider": "playht", "voiceId": "jennifer", "model": "PlayDialog"}
TRANSCRIBER = {"provider": "deepgram", "model": "nova-3-general"}
SERVER_MESSAGES = ["status-update", "speech-update", "transcript", "end-of-call-report"]

BOOK_SLOT_PATTERN = re.compile(r"\[BOOK_SLOT:\s*([^\]\s]+)\s*\]")


def extract_booked_slot(text: Optional[str]) -> Optional[str]:
    """ISO timestamp from the last ``[BOOK_SLOT: <ISO>]`` marker in ``text``."""
    if not text:
        return None
    matches = BOOK_SLOT_PATTERN.findall(text)
    return matches[-1] if matches else None


def build_system_prompt(
    agency: AgencyProfile,
    opportunity: Opportunity,
    slots: List[Slot],
    prompts: Optional[PromptManager] = None
) -> str:
    prompts = prompts or PromptManager()
    return prompts.render(
        "call_system",
        agency=agency,
        opportunity=opportunity,
        guardrails=", ".join(agency.guardrails) or DEFAULT_GUARDRAILS,
        claims=" | ".join(claim.text for claim in agency.approved_claims),
        timezone=agency.time_zone or DEFAULT_TIMEZONE,
        windows=agency.availability,
        slot_labels=[f"{slot.label} ({slot.iso})" for slot in slots],
    )


def build_assistant(
    call_id: str,
    agency: AgencyProfile,
    opportunity: Opportunity,
    slots: List[Slot],
    system_prompt: str
) -> Dict[str, Any]:
    """Inline assistant payload for the voice provider."""
    return {
        "name": f"Atlas AI Rep for {agency.company_name}",
        "model": {**MODEL, "messages": [{"role": "system", "content": system_prompt}]},
        "voice": dict(VOICE),
        "transcriber": dict(TRANSCRIBER),
        "firstMessageMode": "assistant-speaks-first",
        "serverMessages": list(SERVER_MESSAGES),
        "metadata": {
            "call_id": call_id,
            "opportunity_id": opportunity.id,
            "agency_id": agency.id,
            "lead_gen_flow_id": opportunity.lead_gen_flow_id,
            "offered_slots": [slot.iso for slot in slots],
            "availability_windows": list(agency.availability),
        },
    }
