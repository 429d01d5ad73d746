"""
Resend Email Sender
Transactional email over the Resend REST API
"""
import logging
from typing import Optional

import httpx

from atlas.core.exceptions import ProviderError
from atlas.domain.interfaces.email_sender import EmailSender

logger = logging.getLogger(__name__)


class ResendEmailSender(EmailSender):
    API_URL = "https://api.resend.com/emails"

    def __init__(self, api_key: str, from_address: str, timeout: float = 15.0):
        if not api_key:
            raise ValueError("Resend API key not configured")
        self._api_key = api_key
        self._from_address = from_address
        self._timeout = timeout

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        body = {"from": self._from_address, "to": [to], "subject": subject, "html": html}
        if text:
            body["text"] = text

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                self.API_URL,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )

        if response.status_code >= 400:
            logger.error(f"Resend send failed ({response.status_code}): {response.text}")
            raise ProviderError("resend", response.text, response.status_code)

        message_id = response.json().get("id", "")
        logger.info(f"Sent email {message_id} to {to}")
        return message_id
