"""
Lead Signals
Qualification signals, scoring and ranking for sourced places
"""
from dataclasses import dataclass, field
from typing import List, Optional

from atlas.domain.models.place import PlaceCandidate
from atlas.domain.services.lead_sourcing import canonical_domain

# Websites on these domains are a profile page, not a real web presence
SOCIAL_DOMAINS = [
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "twitter.com",
    "x.com",
    "tiktok.com",
    "youtube.com",
    "yelp.com",
    "pinterest.com",
    "nextdoor.com",
    "business.site",
    "sites.google.com",
    "linktr.ee",
]

LOW_RATING_THRESHOLD = 4.0
MIN_REVIEWS = 5


class Signal:
    MISSING_WEBSITE = "MISSING_WEBSITE"
    WEAK_WEB_PRESENCE = "WEAK_WEB_PRESENCE"
    LOW_GOOGLE_RATING = "LOW_GOOGLE_RATING"
    FEW_GOOGLE_REVIEWS = "FEW_GOOGLE_REVIEWS"


@dataclass
class QualifiedLead:
    """A place that passed the hard filter, with its signals and score"""
    place: PlaceCandidate
    signals: List[str] = field(default_factory=list)
    qualification_score: float = 0.0


def is_social_domain(website: Optional[str]) -> bool:
    domain = canonical_domain(website)
    if not domain:
        return False
    return any(domain == social or domain.endswith(f".{social}") for social in SOCIAL_DOMAINS)


def detect_signals(place: PlaceCandidate) -> List[str]:
    signals = []

    if not place.website:
        signals.append(Signal.MISSING_WEBSITE)
    elif is_social_domain(place.website):
        signals.append(Signal.WEAK_WEB_PRESENCE)

    reviews = place.user_rating_count or 0
    if place.rating is not None and place.rating < LOW_RATING_THRESHOLD and reviews >= MIN_REVIEWS:
        signals.append(Signal.LOW_GOOGLE_RATING)
    if reviews < MIN_REVIEWS:
        signals.append(Signal.FEW_GOOGLE_REVIEWS)

    return signals


def qualification_score(signals: List[str], criteria: List[str]) -> float:
    """Fraction of the agency's qualification criteria matched by the signals."""
    if not criteria:
        return 0.0
    matched = sum(1 for criterion in criteria if criterion in signals)
    return matched / len(criteria)


def passes_hard_filter(place: PlaceCandidate) -> bool:
    """A lead must be callable."""
    return bool(place.phone)


def qualify(place: PlaceCandidate, criteria: List[str]) -> Optional[QualifiedLead]:
    if not passes_hard_filter(place):
        return None
    signals = detect_signals(place)
    return QualifiedLead(place=place, signals=signals, qualification_score=qualification_score(signals, criteria))


def rank_leads(leads: List[QualifiedLead]) -> List[QualifiedLead]:
    """Highest score first; ties keep sourcing order."""
    return sorted(leads, key=lambda lead: lead.qualification_score, reverse=True)
