"""
Place Candidate Model
A business returned by the places provider
"""
from typing import Optional

from pydantic import BaseModel


class PlaceCandidate(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    user_rating_count: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
