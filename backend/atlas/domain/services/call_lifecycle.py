"""
Call Lifecycle Service
Creates outbound calls, places them with the voice provider and reconciles
provider webhooks onto the call record
"""
import logging
import math
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytz

from atlas.core.config import ConfigManager, Settings, get_settings
from atlas.core.exceptions import BillingError, CallStartError
from atlas.domain.interfaces.store import Store
from atlas.domain.interfaces.voice_provider import ProviderCall, VoiceProvider
from atlas.domain.models.call import (
    TERMINAL_STATUSES,
    Call,
    CallStatus,
    TranscriptFragment,
    can_transition,
    parse_provider_status,
)
from atlas.domain.models.task import TaskType
from atlas.domain.services.assistant_config import build_assistant, build_system_prompt
from atlas.domain.services.availability_service import AvailabilityService
from atlas.domain.services.call_metering import CallMeteringService
from atlas.domain.services.lead_gen_billing import AI_CALL_MINUTES
from atlas.domain.services.prompt_manager import PromptManager
from atlas.domain.services.task_queue import TaskQueueService

logger = logging.getLogger(__name__)


# ========================================
# Webhook payload helpers
# ========================================

def unwrap_event(payload: Any) -> Any:
    """Events arrive bare or inside a ``{"message": {...}}`` envelope."""
    if isinstance(payload, dict) and "message" in payload:
        return payload["message"]
    return payload


def extract_call_id(event: Dict[str, Any]) -> Optional[str]:
    call = event.get("call")
    if isinstance(call, dict) and call.get("id"):
        return str(call["id"])
    for key in ("id", "callId"):
        if event.get(key):
            return str(event[key])
    return None


def coerce_billing_seconds(value: Any) -> Optional[int]:
    """Non-negative whole seconds, or None when not a finite number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return max(0, int(math.floor(value + 0.5)))


def _field(event: Dict[str, Any], key: str) -> Any:
    """Top-level field, falling back to the nested ``data`` object."""
    if event.get(key) is not None:
        return event[key]
    data = event.get("data")
    return data.get(key) if isinstance(data, dict) else None


def _now_ms() -> int:
    return int(time.time() * 1000)


class CallLifecycleService:
    """
    Outbound call lifecycle.

    Call creation never talks to the voice provider directly: it stores the
    call and enqueues a ``place_call`` task. Webhook handlers only patch
    fields or append transcript entries, so concurrent and re-delivered
    events are safe.
    """

    def __init__(
        self,
        store: Store,
        availability: AvailabilityService,
        voice: VoiceProvider,
        queue: TaskQueueService,
        metering: Optional[CallMeteringService] = None,
        prompts: Optional[PromptManager] = None,
        settings: Optional[Settings] = None,
        config: Optional[ConfigManager] = None
    ):
        self.store = store
        self.availability = availability
        self.voice = voice
        self.queue = queue
        self.metering = metering
        self.prompts = prompts or PromptManager()
        self.settings = settings or get_settings()

        config = config or ConfigManager()
        self.offered_slots = int(config.get("availability.offered_slots", 4))
        self.require_credits = bool(config.get("calls.require_credit_check", True))

        self._webhook_handlers: Dict[str, Callable[[Call, Dict[str, Any]], Awaitable[None]]] = {
            "status-update": self._on_status_update,
            "speech-update": self._on_speech_update,
            "transcript": self._on_transcript,
            "end-of-call-report": self._on_end_of_call_report,
        }

    # ========================================
    # Creation and placement
    # ========================================

    async def start_call(self, opportunity_id: str, agency_id: str, started_by: Optional[str] = None) -> Call:
        """
        Create a call for an opportunity and enqueue its placement.

        Raises:
            CallStartError: Missing opportunity, agency or phone number
            BillingError: Not enough AI call minutes
        """
        opportunity = await self.store.get_opportunity(opportunity_id)
        if not opportunity:
            raise CallStartError("Opportunity not found")
        if not opportunity.phone:
            raise CallStartError("Opportunity missing phone number")

        agency = await self.store.get_agency(agency_id)
        if not agency:
            raise CallStartError("Agency profile not found")
        if opportunity.agency_id != agency.id:
            raise CallStartError("Opportunity does not belong to this agency")

        if self.metering and self.require_credits:
            credits = await self.metering.ensure_ai_call_credits(agency.customer_id, 1)
            if not credits.allowed:
                raise BillingError(
                    "Insufficient AI call minutes",
                    feature_id=AI_CALL_MINUTES,
                    phase="call",
                    check={"allowed": credits.allowed, "balance": credits.balance},
                )

        slots = (await self.availability.get_slots_for_agency(agency))[:self.offered_slots]

        call_id = str(uuid.uuid4())
        system_prompt = build_system_prompt(agency, opportunity, slots, self.prompts)
        call = Call(
            id=call_id,
            opportunity_id=opportunity.id,
            agency_id=agency.id,
            dialed_number=opportunity.phone,
            assistant=build_assistant(call_id, agency, opportunity, slots, system_prompt),
            status=CallStatus.INITIATED,
            current_status=CallStatus.QUEUED.value,
            started_by=started_by,
            metadata={
                "billing_customer_id": agency.customer_id,
                "offered_slots": [slot.iso for slot in slots],
            },
            created_at=datetime.now(pytz.UTC),
        )
        call = await self.store.insert_call(call)

        queued = await self.queue.enqueue_task(
            TaskType.PLACE_CALL,
            {"call_id": call.id},
            idempotency_key=f"place_call:{call.id}",
        )
        if not queued:
            logger.error(f"Call {call.id} created but placement could not be queued")

        logger.info(f"Started call {call.id} to {opportunity.name} ({len(slots)} slots offered)")
        return call

    async def place_call(self, call_id: str, final_attempt: bool = True) -> Optional[Call]:
        """
        Ask the voice provider to dial. Task handler for ``place_call``.

        A provider error is recorded on the call and re-raised so the worker
        can retry; the call is only marked failed on the final attempt.
        """
        call = await self.store.get_call(call_id)
        if not call:
            logger.warning(f"place_call: call {call_id} not found")
            return None
        if call.is_attached:
            logger.info(f"Call {call_id} already placed as {call.provider_call_id}")
            return call
        if CallStatus(call.status) in TERMINAL_STATUSES:
            logger.info(f"Call {call_id} is {call.status}, not placing")
            return call

        try:
            provider_call = await self.voice.create_phone_call(
                self.settings.vapi_phone_number_id or "",
                call.dialed_number,
                call.assistant,
            )
        except Exception as e:
            fields: Dict[str, Any] = {"error": str(e)}
            if final_attempt:
                fields.update({"status": CallStatus.FAILED, "current_status": CallStatus.FAILED.value})
            await self.store.update_call(call_id, fields)
            logger.error(f"{self.voice.name} failed to place call {call_id}: {e}")
            raise

        await self.attach_provider_details(call_id, provider_call)
        return await self.store.get_call(call_id)

    async def attach_provider_details(self, call_id: str, provider_call: ProviderCall) -> bool:
        """
        Bind the provider call id and monitor URLs to the call, once.

        Returns:
            False if the call is missing or already bound to another id
        """
        call = await self.store.get_call(call_id)
        if not call:
            logger.warning(f"Cannot attach provider details, call {call_id} not found")
            return False
        if call.provider_call_id:
            if call.provider_call_id != provider_call.id:
                logger.error(
                    f"Call {call_id} is bound to {call.provider_call_id}, "
                    f"refusing to rebind to {provider_call.id}"
                )
                return False
            return True

        fields: Dict[str, Any] = {
            "provider_call_id": provider_call.id,
            "listen_url": provider_call.listen_url,
            "control_url": provider_call.control_url,
            "error": None,
        }
        if can_transition(call.status, CallStatus.QUEUED):
            fields["status"] = CallStatus.QUEUED
            fields["current_status"] = provider_call.status or CallStatus.QUEUED.value

        await self.store.update_call(call_id, fields)
        logger.info(f"Call {call_id} attached to {self.voice.name} call {provider_call.id}")
        return True

    # ========================================
    # Webhook ingestion
    # ========================================

    async def handle_webhook_event(self, payload: Any, header_call_id: Optional[str] = None) -> str:
        """
        Apply one provider webhook event.

        Events without a type or call id, of unknown type, or for unknown
        calls are logged and dropped.

        Returns:
            The handled event type, or ``"ignored"``
        """
        event = unwrap_event(payload)
        if not isinstance(event, dict):
            logger.warning("Webhook payload is not an object, ignoring")
            return "ignored"

        event_type = event.get("type")
        provider_call_id = extract_call_id(event) or header_call_id
        if not event_type or not provider_call_id:
            logger.warning(f"Webhook missing type or call id (type={event_type}, header={header_call_id})")
            return "ignored"

        handler = self._webhook_handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring webhook type {event_type}")
            return "ignored"

        call = await self.store.find_call_by_provider_id(provider_call_id)
        if not call:
            logger.warning(f"Webhook {event_type} for unknown call {provider_call_id}")
            return "ignored"

        await handler(call, event)
        return event_type

    async def _on_status_update(self, call: Call, event: Dict[str, Any]) -> None:
        raw = _field(event, "status") or "unknown"
        fields: Dict[str, Any] = {"last_webhook_at": datetime.now(pytz.UTC)}

        status = parse_provider_status(raw)
        if status is not None and not can_transition(call.status, status):
            logger.info(f"Call {call.id}: dropping out-of-order status {raw} (currently {call.status})")
        else:
            if status is not None:
                fields["status"] = status
            if not call.outcome:
                fields["current_status"] = raw

        await self.store.update_call(call.id, fields)

    async def _on_speech_update(self, call: Call, event: Dict[str, Any]) -> None:
        text = _field(event, "text") or ""
        if not text:
            return
        fragment = TranscriptFragment(
            role=event.get("from") or "assistant",
            text=text,
            timestamp=_now_ms(),
            source="speech",
        )
        await self.store.append_transcript(call.id, [fragment])
        await self.store.update_call(call.id, {"last_webhook_at": datetime.now(pytz.UTC)})

    async def _on_transcript(self, call: Call, event: Dict[str, Any]) -> None:
        if _field(event, "transcriptType") == "partial":
            return
        fragments: List[TranscriptFragment] = []
        messages = _field(event, "messages")

        if isinstance(messages, list) and messages:
            for message in messages:
                if not isinstance(message, dict):
                    continue
                text = message.get("text") or message.get("message") or ""
                if text:
                    fragments.append(TranscriptFragment(
                        role=message.get("role") or "assistant",
                        text=text,
                        timestamp=_now_ms(),
                        source="transcript",
                    ))
        elif isinstance(event.get("transcript"), str):
            fragments.append(TranscriptFragment(
                role=event.get("role") or "assistant",
                text=event["transcript"],
                timestamp=_now_ms(),
                source="transcript",
            ))

        if not fragments:
            return
        await self.store.append_transcript(call.id, fragments)
        await self.store.update_call(call.id, {"last_webhook_at": datetime.now(pytz.UTC)})

    async def _on_end_of_call_report(self, call: Call, event: Dict[str, Any]) -> None:
        fields: Dict[str, Any] = {"last_webhook_at": datetime.now(pytz.UTC)}
        for source_key, column in (
            ("summary", "summary"),
            ("recordingUrl", "recording_url"),
            ("endedReason", "ended_reason"),
        ):
            value = _field(event, source_key)
            if value is not None:
                fields[column] = value

        billing_seconds = coerce_billing_seconds(_field(event, "billingSeconds"))
        if billing_seconds is not None:
            fields["billing_seconds"] = billing_seconds

        if can_transition(call.status, CallStatus.COMPLETED):
            fields["status"] = CallStatus.COMPLETED
            if not call.outcome:
                fields["current_status"] = CallStatus.COMPLETED.value

        await self.store.update_call(call.id, fields)
        logger.info(f"Call {call.id} ended ({fields.get('ended_reason')}), {billing_seconds}s billed")

        await self.queue.enqueue_task(
            TaskType.METER_CALL_USAGE,
            {"call_id": call.id},
            idempotency_key=f"meter_call_usage:{call.id}",
        )
        await self.queue.enqueue_task(
            TaskType.ANALYZE_CALL_TRANSCRIPT,
            {"call_id": call.id},
            idempotency_key=f"analyze_call_transcript:{call.id}",
        )
