"""
Availability Service
Turns recurring weekly availability windows into concrete bookable slots

Slots are never persisted; they are recomputed from the agency's windows
and existing meetings on every request.
"""
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional

import pytz

from atlas.core.config import ConfigManager, get_settings
from atlas.domain.interfaces.store import Store
from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.availability import AvailabilityWindow, Slot

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"

WINDOW_PATTERN = re.compile(r"^(\w{3})\s+(\d{1,2}:\d{2})-(\d{1,2}:\d{2})$")

DAY_MAP = {
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
    "sun": 7,
}


def _parse_clock(text: str) -> Optional[int]:
    """'09:30' -> 570 minutes after midnight. 24:00 is allowed as an end time."""
    hours, minutes = (int(part) for part in text.split(":"))
    if minutes >= 60 or hours > 24 or (hours == 24 and minutes > 0):
        return None
    return hours * 60 + minutes


def parse_availability_window(text: str) -> Optional[AvailabilityWindow]:
    """
    Parse ``"<Day> HH:MM-HH:MM"`` into an AvailabilityWindow.

    Malformed strings are logged and return None.
    """
    match = WINDOW_PATTERN.match((text or "").strip())
    if not match:
        logger.warning(f"Skipping malformed availability window: {text!r}")
        return None

    day_text, start_text, end_text = match.groups()
    weekday = DAY_MAP.get(day_text.lower())
    if weekday is None:
        logger.warning(f"Skipping availability window with unknown day: {text!r}")
        return None

    start_minute = _parse_clock(start_text)
    end_minute = _parse_clock(end_text)
    if start_minute is None or end_minute is None or end_minute <= start_minute:
        logger.warning(f"Skipping availability window with invalid times: {text!r}")
        return None

    return AvailabilityWindow(weekday=weekday, start_minute=start_minute, end_minute=end_minute)


def parse_windows(texts: Iterable[str]) -> List[AvailabilityWindow]:
    windows = []
    for text in texts or []:
        window = parse_availability_window(text)
        if window:
            windows.append(window)
    return windows


def resolve_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Agency timezone, falling back to the configured default."""
    default_name = get_settings().default_timezone or DEFAULT_TIMEZONE
    if not name:
        return pytz.timezone(default_name)
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {name!r}, using {default_name}")
        return pytz.timezone(default_name)


def parse_iso_in_timezone(value: str, tz: pytz.BaseTzInfo) -> datetime:
    """
    Parse an ISO-8601 timestamp.

    Strings without an offset are read as wall-clock time in ``tz``.

    Raises:
        ValueError: If the string is not a valid ISO timestamp
    """
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid ISO timestamp: {value!r}")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = tz.localize(parsed)
    return parsed


def to_utc_iso(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2026-01-05T14:00:00.000Z"""
    utc = moment.astimezone(pytz.UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def format_slot_label(local: datetime) -> str:
    """Localized label, e.g. 'Mon, Jan 5, 9:00 AM EST'"""
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%a}, {local:%b} {local.day}, {hour}:{local:%M} {meridiem} {local.tzname()}"


def generate_slots(
    windows: List[AvailabilityWindow],
    tz: pytz.BaseTzInfo,
    now: datetime,
    meeting_times: Iterable[datetime] = (),
    slot_minutes: int = 15,
    buffer_minutes: int = 15,
    lookahead_days: int = 7,
) -> List[datetime]:
    """
    Concrete slot instants (agency-local, tz-aware), sorted and unique.

    Every calendar day from today through today + ``lookahead_days`` is
    considered. Slots must be strictly after ``now`` and more than
    ``buffer_minutes`` away from every meeting.
    """
    local_now = now.astimezone(tz)
    start_date: date = local_now.date()
    buffer = timedelta(minutes=buffer_minutes)
    meetings = list(meeting_times)

    slots = {}
    for offset in range(lookahead_days + 1):
        day = start_date + timedelta(days=offset)
        midnight = datetime.combine(day, time())
        for window in windows:
            if day.isoweekday() != window.weekday:
                continue
            for minute in range(window.start_minute, window.end_minute, slot_minutes):
                # Localize each wall-clock time separately so DST shifts don't drift slots
                local = tz.normalize(tz.localize(midnight + timedelta(minutes=minute)))
                if local <= now:
                    continue
                if any(abs(local - meeting) < buffer for meeting in meetings):
                    continue
                slots[local.astimezone(pytz.UTC)] = local

    return [slots[key] for key in sorted(slots)]


class AvailabilityService:
    """
    Computes an agency's available slots and validates proposed slots.

    Args:
        store: Persistence boundary (agencies, meetings)
        clock: Returns the current tz-aware instant
    """

    def __init__(
        self,
        store: Store,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[ConfigManager] = None
    ):
        self.store = store
        self._clock = clock or (lambda: datetime.now(pytz.UTC))
        config = config or ConfigManager()
        self.slot_minutes = int(config.get("availability.slot_minutes", 15))
        self.buffer_minutes = int(config.get("availability.conflict_buffer_minutes", 15))
        self.lookahead_days = int(config.get("availability.lookahead_days", 7))
        self.conflict_horizon_days = int(config.get("availability.conflict_horizon_days", 14))
        self.tolerance_seconds = float(config.get("availability.validation_tolerance_seconds", 60))

    def now(self) -> datetime:
        return self._clock()

    async def get_available_slots(self, agency_id: str) -> List[Slot]:
        """Available slots for the agency, earliest first."""
        agency = await self.store.get_agency(agency_id)
        if not agency:
            logger.warning(f"Agency {agency_id} not found, no availability")
            return []
        return await self.get_slots_for_agency(agency)

    async def get_slots_for_agency(self, agency: AgencyProfile) -> List[Slot]:
        tz = resolve_timezone(agency.time_zone)
        windows = parse_windows(agency.availability)
        if not windows:
            return []

        now = self.now()
        start_of_day = tz.localize(datetime.combine(now.astimezone(tz).date(), time()))
        horizon_end = start_of_day + timedelta(days=self.conflict_horizon_days)

        meetings = await self.store.list_meetings_between(agency.id, start_of_day, horizon_end)

        slot_times = generate_slots(
            windows,
            tz,
            now,
            meeting_times=[m.meeting_time for m in meetings],
            slot_minutes=self.slot_minutes,
            buffer_minutes=self.buffer_minutes,
            lookahead_days=self.lookahead_days,
        )

        return [Slot(iso=to_utc_iso(local), label=format_slot_label(local)) for local in slot_times]

    async def validate_slot(self, agency_id: str, slot_iso: str) -> bool:
        """
        Whether ``slot_iso`` matches a currently available slot.

        Matches within the configured tolerance (strictly less than 60s).
        Invalid input or lookup errors return False.
        """
        try:
            agency = await self.store.get_agency(agency_id)
            if not agency:
                return False

            tz = resolve_timezone(agency.time_zone)
            candidate = parse_iso_in_timezone(slot_iso, tz)

            for slot in await self.get_slots_for_agency(agency):
                slot_time = parse_iso_in_timezone(slot.iso, tz)
                if abs((slot_time - candidate).total_seconds()) < self.tolerance_seconds:
                    return True
            return False

        except Exception as e:
            logger.warning(f"Slot validation failed for agency {agency_id} ({slot_iso!r}): {e}")
            return False
