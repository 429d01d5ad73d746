"""
Voice Provider Interface
Abstract base class for AI phone call providers
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ProviderCall:
    """Provider response to a create-call request"""
    id: str
    listen_url: Optional[str] = None
    control_url: Optional[str] = None
    status: Optional[str] = None


class VoiceProvider(ABC):
    """Abstract base class for voice providers"""

    @abstractmethod
    async def create_phone_call(
        self,
        phone_number_id: str,
        customer_number: str,
        assistant: Dict[str, Any]
    ) -> ProviderCall:
        """
        Place an outbound phone call driven by an AI assistant.

        Args:
            phone_number_id: Provider id of the caller number
            customer_number: E.164 number to dial
            assistant: Assistant configuration snapshot

        Returns:
            ProviderCall with id and monitor URLs
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
