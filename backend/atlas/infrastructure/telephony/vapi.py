"""
Vapi Voice Provider
Creates outbound phone calls driven by an inline assistant
"""
import logging
from typing import Any, Dict, Optional

import httpx

from atlas.core.exceptions import ProviderError
from atlas.domain.interfaces.voice_provider import ProviderCall, VoiceProvider

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/v1/webhooks/vapi"


class VapiVoiceProvider(VoiceProvider):
    """
    Vapi ``POST /call/phone``.

    The assistant snapshot stored on the call carries no secrets; the
    webhook server URL and secret are added here, at request time.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.vapi.ai",
        public_base_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: float = 30.0
    ):
        self._api_key = api_key
        self._api_url = api_url.rstrip("/")
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._webhook_secret = webhook_secret
        self._timeout = timeout

    def build_request(self, phone_number_id: str, customer_number: str, assistant: Dict[str, Any]) -> Dict[str, Any]:
        assistant = dict(assistant)
        if self._public_base_url:
            server: Dict[str, Any] = {"url": f"{self._public_base_url}{WEBHOOK_PATH}"}
            if self._webhook_secret:
                server["secret"] = self._webhook_secret
            assistant["server"] = server

        return {
            "phoneNumberId": phone_number_id,
            "customer": {"number": customer_number},
            "squad": {"members": [{"assistant": assistant}]},
        }

    async def create_phone_call(
        self,
        phone_number_id: str,
        customer_number: str,
        assistant: Dict[str, Any]
    ) -> ProviderCall:
        if not self._api_key:
            raise ValueError("Vapi API key not configured")
        if not phone_number_id:
            raise ValueError("Vapi phone number id not configured")

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self._api_url}/call/phone",
                json=self.build_request(phone_number_id, customer_number, assistant),
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code >= 400:
            logger.error(f"Vapi create call failed ({response.status_code}): {response.text}")
            raise ProviderError(self.name, f"create call failed: {response.text}", response.status_code)

        data = response.json()
        monitor = data.get("monitor") or {}
        return ProviderCall(
            id=data["id"],
            listen_url=monitor.get("listenUrl"),
            control_url=monitor.get("controlUrl"),
            status=data.get("status"),
        )

    @property
    def name(self) -> str:
        return "vapi"
