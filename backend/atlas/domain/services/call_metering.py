"""
Call Metering
Bills AI call minutes once per completed call, capped at the live balance
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import pytz

from atlas.domain.interfaces.billing_provider import BillingProvider
from atlas.domain.interfaces.store import Store
from atlas.domain.services.lead_gen_billing import AI_CALL_MINUTES

logger = logging.getLogger(__name__)

METERING_KEY = "ai_call_metering"


@dataclass
class CreditStatus:
    allowed: bool
    balance: float


def billable_minutes(billing_seconds: int, balance: Optional[float]) -> tuple[int, int]:
    """(requested, billed) minutes: ceil of seconds, capped at floor(balance)."""
    requested = max(0, math.ceil(billing_seconds / 60))
    billed = min(requested, max(0, math.floor(balance or 0)))
    return requested, billed


class CallMeteringService:
    """
    Meters AI call minutes.

    The check and the track are two separate provider calls; the balance
    is re-read right before tracking and the billed amount never exceeds it.
    """

    def __init__(self, store: Store, billing: BillingProvider):
        self.store = store
        self.billing = billing

    async def ensure_ai_call_credits(self, customer_id: str, required_minutes: float = 1) -> CreditStatus:
        """Allowed only when the provider allows and the balance covers ``required_minutes``."""
        required = max(1, math.ceil(required_minutes))
        try:
            check = await self.billing.check(customer_id, AI_CALL_MINUTES)
        except Exception as e:
            logger.error(f"AI call credit check failed for {customer_id}: {e}")
            return CreditStatus(allowed=False, balance=0)

        balance = check.balance if check.balance is not None else 0
        return CreditStatus(allowed=check.allowed and balance >= required, balance=balance)

    async def meter_call_usage(self, call_id: str) -> Optional[Dict[str, Any]]:
        """
        Track billed minutes for a completed call.

        Re-running for the same call is a no-op once the metering record
        exists.

        Returns:
            The metering record written, or None when skipped
        """
        call = await self.store.get_call(call_id)
        if not call:
            logger.warning(f"Metering skipped, call {call_id} not found")
            return None

        if call.metering.get("tracked_at"):
            logger.debug(f"Call {call_id} already metered")
            return None

        seconds = call.billing_seconds or 0
        if seconds <= 0:
            return None

        customer_id = (call.metadata or {}).get("billing_customer_id")
        if not customer_id:
            logger.warning(f"Metering skipped, call {call_id} has no billing_customer_id")
            return None

        check = await self.billing.check(customer_id, AI_CALL_MINUTES)
        requested, billed = billable_minutes(seconds, check.balance)
        if requested == 0:
            return None

        if billed > 0:
            await self.billing.track(customer_id, AI_CALL_MINUTES, billed)
        if billed < requested:
            logger.warning(
                f"Call {call_id}: billed {billed} of {requested} minutes "
                f"(balance {check.balance})"
            )

        record = {
            "requested_minutes": requested,
            "billed_minutes": billed,
            "balance_at_check": check.balance or 0,
            "tracked_at": datetime.now(pytz.UTC).isoformat(),
        }
        await self.store.update_call(call_id, {"metadata": {**(call.metadata or {}), METERING_KEY: record}})

        logger.info(f"Metered call {call_id}: {billed} minute(s)")
        return record
