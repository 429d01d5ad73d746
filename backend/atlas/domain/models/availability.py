"""
Availability Models
Recurring weekly windows and the concrete slots derived from them
"""
from dataclasses import dataclass

from pydantic import BaseModel


@dataclass(frozen=True)
class AvailabilityWindow:
    """
    Recurring weekly window in agency-local wall-clock time.

    weekday follows ISO numbering: Monday=1 ... Sunday=7.
    """
    weekday: int
    start_minute: int
    end_minute: int


class Slot(BaseModel):
    """Bookable instant: UTC ISO-8601 plus a localized label"""
    iso: str
    label: str
