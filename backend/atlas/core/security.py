"""
Webhook Security
Verifies inbound voice provider webhooks
"""
import hashlib
import hmac
import logging
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-vapi-secret"
SIGNATURE_HEADER = "x-vapi-signature"


def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_vapi_request(body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
    """
    Verify a webhook request.

    Accepts either a shared-secret header that matches exactly, or a
    signature header carrying the HMAC-SHA256 hex digest of the raw body.
    A missing secret rejects every request.
    """
    if not secret:
        logger.warning("VAPI_WEBHOOK_SECRET is not configured, rejecting webhook")
        return False

    lowered = {k.lower(): v for k, v in headers.items()}

    provided_secret = lowered.get(SECRET_HEADER)
    if provided_secret and hmac.compare_digest(provided_secret.encode("utf-8"), secret.encode("utf-8")):
        return True

    signature = lowered.get(SIGNATURE_HEADER)
    if signature:
        expected = compute_signature(body, secret)
        if hmac.compare_digest(signature.strip().lower().encode("utf-8"), expected.encode("utf-8")):
            return True

    return False
