"""
Opportunity Status Updates
Applies the opportunity state machine before patching the row
"""
import logging
from typing import Any, Optional

from atlas.domain.interfaces.store import Store
from atlas.domain.models.opportunity import Opportunity, OpportunityStatus, can_transition

logger = logging.getLogger(__name__)


async def set_opportunity_status(
    store: Store,
    opportunity: Opportunity | str,
    status: OpportunityStatus,
    **fields: Any
) -> Optional[Opportunity]:
    """
    Move an opportunity to ``status`` together with any extra columns.

    Disallowed moves (e.g. out of Booked) are logged and skipped.

    Returns:
        The updated opportunity, or None when missing or skipped
    """
    if isinstance(opportunity, str):
        opportunity = await store.get_opportunity(opportunity)
        if opportunity is None:
            logger.warning(f"Cannot set status {status.value}: opportunity not found")
            return None

    if not can_transition(opportunity.status, status):
        logger.warning(
            f"Opportunity {opportunity.id}: ignoring status change "
            f"{opportunity.status} -> {status.value}"
        )
        return None

    update = {"status": status, **fields}
    await store.update_opportunity(opportunity.id, update)
    return opportunity.model_copy(update={**fields, "status": status.value})
