"""
Unit tests for the Availability Service
Window parsing, slot generation, meeting conflicts and slot validation
"""
from datetime import datetime

import pytest
import pytz

from atlas.domain.models.availability import AvailabilityWindow
from atlas.domain.models.meeting import Meeting
from atlas.domain.services.availability_service import (
    AvailabilityService,
    format_slot_label,
    generate_slots,
    parse_availability_window,
    parse_iso_in_timezone,
    to_utc_iso,
)

NOW = datetime(2026, 1, 4, 12, 0, tzinfo=pytz.UTC)
FIRST_SLOT = "2026-01-05T14:00:00.000Z"

NEW_YORK = pytz.timezone("America/New_York")


class TestParseAvailabilityWindow:
    """Tests for "<Day> HH:MM-HH:MM" parsing"""

    def test_parses_weekday_and_minutes(self):
        window = parse_availability_window("Mon 09:00-17:30")
        assert window == AvailabilityWindow(weekday=1, start_minute=540, end_minute=1050)

    def test_day_is_case_insensitive(self):
        assert parse_availability_window("sun 10:00-11:00").weekday == 7

    def test_end_of_day_is_allowed(self):
        assert parse_availability_window("Fri 23:00-24:00").end_minute == 1440

    @pytest.mark.parametrize("text", [
        "Monday 09:00-10:00",
        "Mon 9am-10am",
        "Xyz 09:00-10:00",
        "Mon 10:00-09:00",
        "Mon 09:75-10:00",
        "",
    ])
    def test_malformed_windows_are_skipped(self, text):
        assert parse_availability_window(text) is None


class TestSlotGeneration:
    """Tests for generate_slots and slot formatting"""

    def test_slots_are_fifteen_minutes_apart(self):
        windows = [parse_availability_window("Mon 09:00-10:00")]
        slots = generate_slots(windows, NEW_YORK, NOW)

        assert [to_utc_iso(s) for s in slots] == [
            "2026-01-05T14:00:00.000Z",
            "2026-01-05T14:15:00.000Z",
            "2026-01-05T14:30:00.000Z",
            "2026-01-05T14:45:00.000Z",
        ]

    def test_past_slots_are_excluded(self):
        windows = [parse_availability_window("Sun 06:00-08:00")]
        slots = generate_slots(windows, NEW_YORK, NOW, lookahead_days=0)

        # 07:00 local is exactly now, so only 07:15 onwards remain
        assert [s.strftime("%H:%M") for s in slots] == ["07:15", "07:30", "07:45"]

    def test_lookahead_includes_the_same_weekday_next_week(self):
        windows = [parse_availability_window("Sun 09:00-09:15")]
        slots = generate_slots(windows, NEW_YORK, NOW)

        assert [s.date().isoformat() for s in slots] == ["2026-01-04", "2026-01-11"]

    def test_meeting_buffer_is_strict(self):
        windows = [parse_availability_window("Mon 09:00-10:00")]
        meeting = datetime(2026, 1, 5, 14, 15, tzinfo=pytz.UTC)
        slots = generate_slots(windows, NEW_YORK, NOW, meeting_times=[meeting])

        # Neighbours are exactly 15 minutes away and stay available
        assert [to_utc_iso(s) for s in slots] == [
            "2026-01-05T14:00:00.000Z",
            "2026-01-05T14:30:00.000Z",
            "2026-01-05T14:45:00.000Z",
        ]

    def test_overlapping_windows_do_not_duplicate_slots(self):
        windows = [
            parse_availability_window("Mon 09:00-09:30"),
            parse_availability_window("Mon 09:15-09:45"),
        ]
        slots = generate_slots(windows, NEW_YORK, NOW)
        assert len(slots) == 3

    def test_label_uses_local_time_and_zone(self):
        local = NEW_YORK.localize(datetime(2026, 1, 5, 9, 0))
        assert format_slot_label(local) == "Mon, Jan 5, 9:00 AM EST"

    def test_iso_without_offset_is_agency_local(self):
        parsed = parse_iso_in_timezone("2026-01-05T09:00:00", NEW_YORK)
        assert to_utc_iso(parsed) == FIRST_SLOT


class TestAvailabilityService:
    """Tests for AvailabilityService against the in-memory store"""

    @pytest.mark.asyncio
    async def test_available_slots_for_agency(self, availability, agency):
        slots = await availability.get_available_slots(agency.id)

        assert [s.iso for s in slots][0] == FIRST_SLOT
        assert len(slots) == 4
        assert slots[0].label == "Mon, Jan 5, 9:00 AM EST"

    @pytest.mark.asyncio
    async def test_unknown_agency_has_no_slots(self, availability):
        assert await availability.get_available_slots("missing") == []

    @pytest.mark.asyncio
    async def test_booked_meeting_removes_slot(self, store, availability, agency):
        await store.insert_meeting(Meeting(
            id="meeting-1",
            agency_id=agency.id,
            opportunity_id="opp-1",
            call_id="call-1",
            meeting_time=datetime(2026, 1, 5, 14, 15, tzinfo=pytz.UTC),
        ))

        isos = [s.iso for s in await availability.get_available_slots(agency.id)]
        assert "2026-01-05T14:15:00.000Z" not in isos
        assert len(isos) == 3

    @pytest.mark.asyncio
    async def test_invalid_timezone_falls_back_to_default(self, store, agency):
        store.seed("agency_profiles", {**agency.model_dump(), "id": "agency-2", "time_zone": "Mars/Olympus"})
        service = AvailabilityService(store, clock=lambda: NOW)

        slots = await service.get_available_slots("agency-2")
        assert slots[0].iso == FIRST_SLOT

    @pytest.mark.asyncio
    async def test_validate_slot_tolerance(self, availability, agency):
        assert await availability.validate_slot(agency.id, FIRST_SLOT) is True
        assert await availability.validate_slot(agency.id, "2026-01-05T14:00:59Z") is True
        assert await availability.validate_slot(agency.id, "2026-01-05T14:01:00Z") is False

    @pytest.mark.asyncio
    async def test_validate_slot_rejects_garbage(self, availability, agency):
        assert await availability.validate_slot(agency.id, "next tuesday") is False
        assert await availability.validate_slot("missing", FIRST_SLOT) is False
