"""
Unit tests for the Call Lifecycle Service
Call creation, placement, provider binding and webhook reconciliation
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from atlas.core.config import Settings
from atlas.core.exceptions import BillingError, CallStartError, ProviderError
from atlas.domain.interfaces.voice_provider import ProviderCall
from atlas.domain.models.task import TaskType
from atlas.domain.services.call_lifecycle import (
    CallLifecycleService,
    coerce_billing_seconds,
    extract_call_id,
    unwrap_event,
)
from atlas.domain.services.call_metering import CallMeteringService


@pytest.fixture
def voice():
    mock = MagicMock()
    mock.name = "vapi"
    mock.create_phone_call = AsyncMock(return_value=ProviderCall(
        id="vapi-call-1",
        listen_url="wss://listen.example/1",
        control_url="https://control.example/1",
        status="queued",
    ))
    return mock


@pytest.fixture
def calls(store, availability, voice, queue, billing):
    return CallLifecycleService(
        store,
        availability,
        voice,
        queue,
        metering=CallMeteringService(store, billing),
        settings=Settings(vapi_phone_number_id="phone-number-1"),
    )


async def placed_call(calls, opportunity, agency):
    call = await calls.start_call(opportunity, agency.id, started_by="user-1")
    return await calls.place_call(call.id)


def event(event_type, **fields):
    return {"message": {"type": event_type, "call": {"id": "vapi-call-1"}, **fields}}


class TestPayloadHelpers:
    """Tests for webhook payload helpers"""

    def test_unwrap_message_envelope(self):
        assert unwrap_event({"message": {"type": "transcript"}}) == {"type": "transcript"}
        assert unwrap_event({"type": "transcript"}) == {"type": "transcript"}

    def test_call_id_lookup_order(self):
        assert extract_call_id({"call": {"id": "a"}, "id": "b"}) == "a"
        assert extract_call_id({"callId": "c"}) == "c"
        assert extract_call_id({}) is None

    @pytest.mark.parametrize("raw,expected", [
        (125, 125),
        (59.5, 60),
        (-3, 0),
        ("125", None),
        (True, None),
        (float("nan"), None),
        (None, None),
    ])
    def test_coerce_billing_seconds(self, raw, expected):
        assert coerce_billing_seconds(raw) == expected


class TestStartCall:
    """Tests for start_call"""

    @pytest.mark.asyncio
    async def test_creates_call_and_enqueues_placement(self, calls, store, queue, opportunity, agency):
        call = await calls.start_call(opportunity, agency.id, started_by="user-1")

        assert call.status == "initiated"
        assert call.current_status == "queued"
        assert call.dialed_number == "+1 (555) 010-2000"
        assert call.metadata["billing_customer_id"] == "user-1"
        assert call.metadata["offered_slots"][0] == "2026-01-05T14:00:00.000Z"
        assert len(call.metadata["offered_slots"]) == 4
        assert call.assistant["metadata"]["call_id"] == call.id
        assert "Mon, Jan 5, 9:00 AM EST" in call.assistant["model"]["messages"][0]["content"]

        queue.enqueue_task.assert_awaited_once_with(
            TaskType.PLACE_CALL,
            {"call_id": call.id},
            idempotency_key=f"place_call:{call.id}",
        )
        assert await store.get_call(call.id) is not None

    @pytest.mark.asyncio
    async def test_missing_phone_is_rejected(self, calls, store, queue, agency):
        store.seed("client_opportunities", {
            "id": "opp-no-phone",
            "agency_id": agency.id,
            "place_id": "place-9",
            "name": "Quiet Clinic",
            "status": "READY",
        })

        with pytest.raises(CallStartError) as exc:
            await calls.start_call("opp-no-phone", agency.id)

        assert exc.value.message == "Opportunity missing phone number"
        assert store.rows("calls") == []
        queue.enqueue_task.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_opportunity(self, calls, agency):
        with pytest.raises(CallStartError, match="Opportunity not found"):
            await calls.start_call("missing", agency.id)

    @pytest.mark.asyncio
    async def test_insufficient_minutes(self, calls, store, billing, opportunity, agency):
        billing.balance = 0

        with pytest.raises(BillingError) as exc:
            await calls.start_call(opportunity, agency.id)

        assert exc.value.feature_id == "ai_call_minutes"
        assert store.rows("calls") == []


class TestPlaceCall:
    """Tests for place_call and attach_provider_details"""

    @pytest.mark.asyncio
    async def test_attaches_provider_details(self, calls, voice, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        assert call.provider_call_id == "vapi-call-1"
        assert call.listen_url == "wss://listen.example/1"
        assert call.status == "queued"
        voice.create_phone_call.assert_awaited_once()
        assert voice.create_phone_call.await_args.args[:2] == ("phone-number-1", "+1 (555) 010-2000")

    @pytest.mark.asyncio
    async def test_already_placed_call_is_not_redialed(self, calls, voice, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)
        await calls.place_call(call.id)

        voice.create_phone_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_provider_error_before_final_attempt_keeps_call_open(self, calls, store, voice, opportunity, agency):
        voice.create_phone_call.side_effect = ProviderError("vapi", "create call failed: 500 upstream")
        call = await calls.start_call(opportunity, agency.id)

        with pytest.raises(ProviderError):
            await calls.place_call(call.id, final_attempt=False)

        call = await store.get_call(call.id)
        assert call.status == "initiated"
        assert "500 upstream" in call.error

    @pytest.mark.asyncio
    async def test_provider_error_on_final_attempt_fails_call(self, calls, store, voice, opportunity, agency):
        voice.create_phone_call.side_effect = ProviderError("vapi", "create call failed: 400 bad number")
        call = await calls.start_call(opportunity, agency.id)

        with pytest.raises(ProviderError):
            await calls.place_call(call.id)

        call = await store.get_call(call.id)
        assert call.status == "failed"
        assert call.current_status == "failed"

    @pytest.mark.asyncio
    async def test_provider_id_is_never_rebound(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        assert await calls.attach_provider_details(call.id, ProviderCall(id="vapi-call-1")) is True
        assert await calls.attach_provider_details(call.id, ProviderCall(id="vapi-call-2")) is False
        assert (await store.get_call(call.id)).provider_call_id == "vapi-call-1"


class TestWebhookEvents:
    """Tests for handle_webhook_event"""

    @pytest.mark.asyncio
    async def test_status_update(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        handled = await calls.handle_webhook_event(event("status-update", status="ringing"))

        call = await store.get_call(call.id)
        assert handled == "status-update"
        assert call.status == "ringing"
        assert call.current_status == "ringing"
        assert call.last_webhook_at is not None

    @pytest.mark.asyncio
    async def test_out_of_order_status_is_dropped(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)
        await calls.handle_webhook_event(event("status-update", status="in-progress"))

        await calls.handle_webhook_event(event("status-update", status="ringing"))

        call = await store.get_call(call.id)
        assert call.status == "in-progress"
        assert call.current_status == "in-progress"

    @pytest.mark.asyncio
    async def test_unknown_status_only_updates_display(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        await calls.handle_webhook_event(event("status-update", status="forwarding"))

        call = await store.get_call(call.id)
        assert call.status == "queued"
        assert call.current_status == "forwarding"

    @pytest.mark.asyncio
    async def test_speech_update_appends_fragment(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        await calls.handle_webhook_event(event("speech-update", text="Hi, is this Harbor Dental?"))
        await calls.handle_webhook_event(event("speech-update", text=""))

        transcript = (await store.get_call(call.id)).transcript
        assert len(transcript) == 1
        assert transcript[0].role == "assistant"
        assert transcript[0].source == "speech"

    @pytest.mark.asyncio
    async def test_partial_transcript_is_ignored(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        await calls.handle_webhook_event(event("transcript", transcript="Tues", transcriptType="partial", role="user"))
        await calls.handle_webhook_event(event("transcript", transcript="Tuesday works", transcriptType="final", role="user"))

        transcript = (await store.get_call(call.id)).transcript
        assert [(f.role, f.text) for f in transcript] == [("user", "Tuesday works")]

    @pytest.mark.asyncio
    async def test_partial_transcript_messages_are_ignored(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        await calls.handle_webhook_event(event(
            "transcript", transcriptType="partial", messages=[{"role": "user", "text": "Tues"}]
        ))

        assert (await store.get_call(call.id)).transcript == []

    @pytest.mark.asyncio
    async def test_transcript_messages_list(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        await calls.handle_webhook_event(event("transcript", messages=[
            {"role": "assistant", "message": "Does Monday at 9 work?"},
            {"role": "user", "text": "Sure"},
            {"role": "user", "text": ""},
        ]))

        transcript = (await store.get_call(call.id)).transcript
        assert [f.text for f in transcript] == ["Does Monday at 9 work?", "Sure"]

    @pytest.mark.asyncio
    async def test_end_of_call_report(self, calls, store, queue, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)
        queue.enqueue_task.reset_mock()

        await calls.handle_webhook_event(event(
            "end-of-call-report",
            summary="Prospect agreed to a Monday meeting",
            recordingUrl="https://recordings.example/1.wav",
            endedReason="customer-ended-call",
            billingSeconds=125.4,
        ))

        call = await store.get_call(call.id)
        assert call.status == "completed"
        assert call.current_status == "completed"
        assert call.billing_seconds == 125
        assert call.recording_url == "https://recordings.example/1.wav"
        assert call.ended_reason == "customer-ended-call"

        enqueued = [c.args[0] for c in queue.enqueue_task.await_args_list]
        assert enqueued == [TaskType.METER_CALL_USAGE, TaskType.ANALYZE_CALL_TRANSCRIPT]
        assert queue.enqueue_task.await_args_list[0].kwargs["idempotency_key"] == f"meter_call_usage:{call.id}"

    @pytest.mark.asyncio
    async def test_late_status_after_completion_is_dropped(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)
        await calls.handle_webhook_event(event("end-of-call-report", billingSeconds=30))

        await calls.handle_webhook_event(event("status-update", status="in-progress"))

        assert (await store.get_call(call.id)).status == "completed"

    @pytest.mark.asyncio
    async def test_header_call_id_fallback(self, calls, store, opportunity, agency):
        call = await placed_call(calls, opportunity, agency)

        handled = await calls.handle_webhook_event(
            {"type": "status-update", "status": "ringing"}, header_call_id="vapi-call-1"
        )

        assert handled == "status-update"
        assert (await store.get_call(call.id)).status == "ringing"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        [],
        {"message": {"call": {"id": "vapi-call-1"}}},
        {"message": {"type": "status-update"}},
        {"message": {"type": "hang", "call": {"id": "vapi-call-1"}}},
        {"message": {"type": "status-update", "status": "ringing", "call": {"id": "unknown"}}},
    ])
    async def test_unusable_events_are_ignored(self, calls, payload):
        assert await calls.handle_webhook_event(payload) == "ignored"
