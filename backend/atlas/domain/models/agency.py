"""
Agency Profile Model
The seller: offer, claims, guardrails and weekly availability
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class ApprovedClaim(BaseModel):
    """A marketing claim the agent is allowed to make"""
    id: Optional[str] = None
    text: str
    source_url: Optional[str] = None


class AgencyProfile(BaseModel):
    id: str
    user_id: str
    company_name: str
    core_offer: Optional[str] = None
    summary: Optional[str] = None
    target_geography: Optional[str] = None
    guardrails: List[str] = Field(default_factory=list)
    approved_claims: List[ApprovedClaim] = Field(default_factory=list)
    lead_qualification_criteria: List[str] = Field(default_factory=list)
    availability: List[str] = Field(default_factory=list, description='Weekly windows like "Mon 09:00-17:00"')
    time_zone: Optional[str] = None
    billing_customer_id: Optional[str] = None

    @property
    def customer_id(self) -> str:
        """Billing customer, falling back to the owning user."""
        return self.billing_customer_id or self.user_id
