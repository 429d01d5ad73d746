"""
Places Provider Interface
Abstract base class for business search providers
"""
from abc import ABC, abstractmethod
from typing import List

from atlas.domain.models.place import PlaceCandidate


class PlacesProvider(ABC):
    """Abstract base class for places search providers"""

    @abstractmethod
    async def search(self, query: str, max_results: int) -> List[PlaceCandidate]:
        """
        Search businesses matching a free-text query.

        Args:
            query: e.g. "dentists in Austin, TX"
            max_results: Upper bound on returned candidates

        Returns:
            Raw (un-normalized) candidates
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
