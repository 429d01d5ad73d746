"""
Lead Sourcing Service
Queries the places provider, then normalizes and deduplicates candidates
"""
import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from atlas.core.config import ConfigManager
from atlas.core.exceptions import SourcingError
from atlas.core.retry import retry_with_backoff
from atlas.domain.interfaces.places_provider import PlacesProvider
from atlas.domain.models.place import PlaceCandidate

logger = logging.getLogger(__name__)

PROVIDER_MAX_RESULTS = 20
MIN_PHONE_LENGTH = 6

_PHONE_PUNCTUATION = re.compile(r"[\s\-\(\)\.]")


def normalize_website(url: Optional[str]) -> Optional[str]:
    """
    Canonical website URL: https scheme, no ``www.``, path kept unless root.

    Returns the input unchanged when it cannot be parsed.
    """
    if not url:
        return None

    cleaned = url.strip().lower()
    if not cleaned:
        return None
    if not re.match(r"^[a-z][a-z0-9+.\-]*://", cleaned):
        cleaned = f"https://{cleaned}"

    try:
        parsed = urlparse(cleaned)
        host = parsed.hostname
    except ValueError:
        return url
    if not host:
        return url

    while host.startswith("www."):
        host = host[4:]

    path = parsed.path.rstrip("/")
    return f"https://{host}{path}" if path else f"https://{host}"


def canonical_domain(url: Optional[str]) -> Optional[str]:
    """Lowercase hostname without ``www.``; None if there is no usable host."""
    normalized = normalize_website(url)
    if not normalized:
        return None
    try:
        host = urlparse(normalized).hostname
    except ValueError:
        return None
    if not host:
        return None
    while host.startswith("www."):
        host = host[4:]
    return host


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Keep a phone number only if it looks plausible.

    Formatting punctuation is stripped to measure it; the original string
    is returned so display formatting survives.
    """
    if not phone:
        return None
    digits = _PHONE_PUNCTUATION.sub("", phone)
    return phone if len(digits) >= MIN_PHONE_LENGTH else None


def normalize_place(place: PlaceCandidate) -> PlaceCandidate:
    return place.model_copy(update={
        "website": normalize_website(place.website),
        "phone": normalize_phone(place.phone),
    })


def deduplicate_places(places: Iterable[PlaceCandidate]) -> List[PlaceCandidate]:
    """
    Drop candidates whose provider id or website domain was already seen.

    First occurrence wins. Running it on its own output is a no-op.
    """
    seen_ids = set()
    seen_domains = set()
    unique: List[PlaceCandidate] = []

    for place in places:
        domain = canonical_domain(place.website)
        if place.id in seen_ids or (domain and domain in seen_domains):
            continue
        seen_ids.add(place.id)
        if domain:
            seen_domains.add(domain)
        unique.append(place)

    return unique


class LeadSourcingService:
    """
    Sources candidate businesses for a campaign.

    Provider failures are retried per the ``places`` retry policy and then
    raised as SourcingError; an empty list always means the provider really
    returned nothing.
    """

    def __init__(self, provider: PlacesProvider, config: Optional[ConfigManager] = None):
        self.provider = provider
        self._config = config or ConfigManager()

    async def source_places(self, query: str, max_results: int = PROVIDER_MAX_RESULTS) -> List[PlaceCandidate]:
        limit = max(1, min(int(max_results), PROVIDER_MAX_RESULTS))
        logger.info(f"Sourcing up to {limit} places for {query!r} via {self.provider.name}")

        try:
            raw = await retry_with_backoff(
                self.provider.search,
                query,
                limit,
                label=f"{self.provider.name} search",
                **self._config.get_retry_policy("places"),
            )
        except Exception as e:
            logger.error(f"Places search failed for {query!r}: {e}")
            raise SourcingError(f"Google Places API failed: {e}") from e

        places = deduplicate_places(normalize_place(p) for p in raw)
        logger.info(f"Sourced {len(places)} unique places ({len(raw)} raw) for {query!r}")
        return places[:limit]
