"""
Blob Storage Interface
Opaque storage for scraped page content
"""
from abc import ABC, abstractmethod


class BlobStorage(ABC):
    """Abstract base class for blob storage"""

    @abstractmethod
    async def store(self, data: bytes, content_type: str = "text/markdown") -> str:
        """Store bytes and return an opaque reference."""
        pass

    @abstractmethod
    async def load(self, ref: str) -> bytes:
        """Load bytes previously stored under ``ref``."""
        pass
