"""
Google Places Provider
Text search over the Places API (New)
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from atlas.core.exceptions import ProviderError
from atlas.domain.interfaces.places_provider import PlacesProvider
from atlas.domain.models.place import PlaceCandidate

logger = logging.getLogger(__name__)

FIELD_MASK = [
    "places.id",
    "places.displayName",
    "places.websiteUri",
    "places.internationalPhoneNumber",
    "places.nationalPhoneNumber",
    "places.rating",
    "places.userRatingCount",
    "places.formattedAddress",
    "places.location",
]


def parse_place(raw: Dict[str, Any]) -> PlaceCandidate:
    location = raw.get("location") or {}
    return PlaceCandidate(
        id=raw.get("id") or "",
        name=(raw.get("displayName") or {}).get("text") or "",
        address=raw.get("formattedAddress"),
        phone=raw.get("internationalPhoneNumber") or raw.get("nationalPhoneNumber"),
        website=raw.get("websiteUri"),
        rating=raw.get("rating"),
        user_rating_count=raw.get("userRatingCount"),
        latitude=location.get("latitude"),
        longitude=location.get("longitude"),
    )


class GooglePlacesProvider(PlacesProvider):
    """Google Places ``places:searchText``. Returns at most 20 results per call."""

    SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
    MAX_RESULTS = 20

    def __init__(self, api_key: str, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise ValueError("Google Places API key not configured")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    async def search(self, query: str, max_results: int) -> List[PlaceCandidate]:
        body = {"textQuery": query, "maxResultCount": max(1, min(max_results, self.MAX_RESULTS))}
        headers = {
            "X-Goog-Api-Key": self._api_key,
            "X-Goog-FieldMask": ",".join(FIELD_MASK),
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = await self._client.post(self.SEARCH_URL, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self.SEARCH_URL, json=body, headers=headers)

        if response.status_code != 200:
            logger.error(f"Places search failed ({response.status_code}): {response.text}")
            raise ProviderError(self.name, response.text, response.status_code)

        places = response.json().get("places") or []
        logger.info(f"Places returned {len(places)} results for {query!r}")
        return [parse_place(p) for p in places if isinstance(p, dict)]

    @property
    def name(self) -> str:
        return "google_places"
