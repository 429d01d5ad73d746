"""
Unit tests for the Supabase storage adapters
Query shapes and error mapping against a mocked Supabase client
"""
from datetime import datetime
from unittest.mock import MagicMock

import pytest
import pytz

from atlas.core.exceptions import MeetingConflictError
from atlas.domain.models.call import TranscriptFragment
from atlas.domain.models.meeting import Meeting
from atlas.infrastructure.storage.blob_storage import SupabaseBlobStorage
from atlas.infrastructure.storage.supabase_store import SupabaseStore

CALL_ROW = {
    "id": "call-1",
    "opportunity_id": "opp-1",
    "agency_id": "agency-1",
    "dialed_number": "+1 555 010 2000",
    "provider_call_id": "vapi-call-1",
    "status": "ringing",
}


@pytest.fixture
def supabase():
    return MagicMock()


class TestSupabaseStore:
    """Tests for SupabaseStore"""

    @pytest.mark.asyncio
    async def test_find_call_by_provider_id(self, supabase):
        query = supabase.table.return_value.select.return_value
        query.eq.return_value.limit.return_value.execute.return_value.data = [CALL_ROW]

        call = await SupabaseStore(supabase).find_call_by_provider_id("vapi-call-1")

        assert call.id == "call-1"
        assert call.status == "ringing"
        supabase.table.assert_called_with("calls")
        query.eq.assert_called_once_with("provider_call_id", "vapi-call-1")

    @pytest.mark.asyncio
    async def test_missing_row_is_none(self, supabase):
        query = supabase.table.return_value.select.return_value
        query.eq.return_value.limit.return_value.execute.return_value.data = []

        assert await SupabaseStore(supabase).get_call("nope") is None

    @pytest.mark.asyncio
    async def test_update_serializes_values(self, supabase):
        moment = datetime(2026, 1, 5, 14, 0, tzinfo=pytz.UTC)

        await SupabaseStore(supabase).update_call("call-1", {"meeting_time": moment, "outcome": None})

        update = supabase.table.return_value.update
        update.assert_called_once_with({"meeting_time": "2026-01-05T14:00:00+00:00", "outcome": None})
        update.return_value.eq.assert_called_once_with("id", "call-1")

    @pytest.mark.asyncio
    async def test_transcript_append_uses_rpc(self, supabase):
        fragments = [TranscriptFragment(role="user", text="Monday works", source="transcript")]

        await SupabaseStore(supabase).append_transcript("call-1", fragments)

        name, params = supabase.rpc.call_args.args
        assert name == "append_call_transcript"
        assert params["p_call_id"] == "call-1"
        assert params["p_fragments"][0]["text"] == "Monday works"

    @pytest.mark.asyncio
    async def test_unique_violation_is_meeting_conflict(self, supabase):
        supabase.table.return_value.insert.return_value.execute.side_effect = Exception(
            "duplicate key value violates unique constraint (23505)"
        )
        meeting = Meeting(
            id="meeting-1",
            agency_id="agency-1",
            opportunity_id="opp-1",
            call_id="call-1",
            meeting_time=datetime(2026, 1, 5, 14, 0, tzinfo=pytz.UTC),
        )

        with pytest.raises(MeetingConflictError):
            await SupabaseStore(supabase).insert_meeting(meeting)

    @pytest.mark.asyncio
    async def test_other_insert_errors_propagate(self, supabase):
        supabase.table.return_value.insert.return_value.execute.side_effect = RuntimeError("connection reset")
        meeting = Meeting(
            id="meeting-1",
            agency_id="agency-1",
            opportunity_id="opp-1",
            call_id="call-1",
            meeting_time=datetime(2026, 1, 5, 14, 0, tzinfo=pytz.UTC),
        )

        with pytest.raises(RuntimeError):
            await SupabaseStore(supabase).insert_meeting(meeting)

    @pytest.mark.asyncio
    async def test_scraped_page_upsert_key(self, supabase):
        upsert = supabase.table.return_value.upsert
        upsert.return_value.execute.return_value.data = [
            {"id": "page-1", "audit_job_id": "job-1", "url": "https://a.example", "status": "scraped"}
        ]

        page = await SupabaseStore(supabase).upsert_scraped_page("job-1", "https://a.example", {"status": "scraped"})

        assert page.status == "scraped"
        assert upsert.call_args.kwargs["on_conflict"] == "audit_job_id,url"


class TestSupabaseBlobStorage:

    @pytest.mark.asyncio
    async def test_store_and_load(self, supabase):
        blobs = SupabaseBlobStorage(supabase, bucket="scraped-content")
        bucket = supabase.storage.from_.return_value
        bucket.download.return_value = b"# Home"

        ref = await blobs.store(b"# Home")

        assert ref.startswith("scraped-content/")
        assert bucket.upload.call_args.args[1] == b"# Home"
        assert await blobs.load(ref) == b"# Home"
        bucket.download.assert_called_once_with(ref.split("/", 1)[1])
