"""
Billing Provider Interface
Credit check and usage tracking capability
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CreditCheck(BaseModel):
    """Result of a feature credit check"""
    allowed: bool
    balance: Optional[float] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class BillingProvider(ABC):
    """Abstract base class for billing/metering providers"""

    @abstractmethod
    async def check(self, customer_id: str, feature_id: str) -> CreditCheck:
        """Check whether the customer may use a feature and their balance."""
        pass

    @abstractmethod
    async def track(self, customer_id: str, feature_id: str, value: float) -> None:
        """
        Record usage.

        Raises:
            ProviderError: If the provider rejects the usage event
        """
        pass
