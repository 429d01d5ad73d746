"""
Autumn Billing Provider
Feature credit checks and usage tracking
"""
import logging
from typing import Any, Dict

import httpx

from atlas.core.exceptions import ProviderError
from atlas.domain.interfaces.billing_provider import BillingProvider, CreditCheck

logger = logging.getLogger(__name__)


class AutumnBillingProvider(BillingProvider):
    """Autumn REST API (``/check`` and ``/track``)."""

    BASE_URL = "https://api.useautumn.com/v1"

    def __init__(self, secret_key: str, timeout: float = 15.0, base_url: str = BASE_URL):
        self._secret_key = secret_key
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self._secret_key:
            raise ValueError("Autumn secret key not configured")
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self._base_url}{path}",
                json=body,
                headers={
                    "Authorization": f"Bearer {self._secret_key}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code >= 400:
            logger.error(f"Autumn {path} failed ({response.status_code}): {response.text}")
            raise ProviderError("autumn", response.text, response.status_code)
        return response.json() if response.content else {}

    async def check(self, customer_id: str, feature_id: str) -> CreditCheck:
        data = await self._post("/check", {"customer_id": customer_id, "feature_id": feature_id})
        balance = data.get("balance")
        return CreditCheck(
            allowed=bool(data.get("allowed")),
            balance=float(balance) if isinstance(balance, (int, float)) else None,
            raw=data,
        )

    async def track(self, customer_id: str, feature_id: str, value: float) -> None:
        await self._post("/track", {"customer_id": customer_id, "feature_id": feature_id, "value": value})
        logger.debug(f"Tracked {value} {feature_id} for {customer_id}")
