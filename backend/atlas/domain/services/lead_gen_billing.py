"""
Lead-Gen Billing Gate
Credit checks that pause a flow, and usage tracking after paid work
"""
import logging

from atlas.core.exceptions import BillingError
from atlas.domain.interfaces.billing_provider import BillingProvider, CreditCheck
from atlas.domain.models.lead_gen_flow import PhaseName
from atlas.domain.services.phase_tracker import PhaseTracker

logger = logging.getLogger(__name__)

# Billing feature ids
LEAD_DISCOVERY = "lead_discovery"
DOSSIER_RESEARCH = "dossier_research"
AI_CALL_MINUTES = "ai_call_minutes"


class LeadGenBilling:
    """Gates billable phases behind a credit check"""

    def __init__(self, billing: BillingProvider, tracker: PhaseTracker):
        self.billing = billing
        self.tracker = tracker

    async def check_and_pause(
        self,
        flow_id: str,
        customer_id: str,
        feature_id: str,
        phase: PhaseName | str
    ) -> CreditCheck:
        """
        Check credits for ``feature_id``; pause the flow when not allowed.

        Raises:
            BillingError: The flow was paused for upgrade
        """
        phase = PhaseName(phase)
        check = await self.billing.check(customer_id, feature_id)
        if check.allowed:
            return check

        snapshot = {"allowed": check.allowed, "balance": check.balance, **check.raw}
        await self.tracker.pause_for_billing(flow_id, phase, feature_id, snapshot)
        raise BillingError(
            f"Workflow paused for billing: insufficient credits for {feature_id}",
            feature_id=feature_id,
            phase=phase.value,
            check=snapshot,
        )

    async def track_usage(self, customer_id: str, feature_id: str, value: float = 1) -> None:
        try:
            await self.billing.track(customer_id, feature_id, value)
        except Exception as e:
            logger.error(f"Failed to track {value} {feature_id} for {customer_id}: {e}")
            raise
