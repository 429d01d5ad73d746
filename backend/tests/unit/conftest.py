"""
Shared fixtures for unit tests
"""
import os
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytz

os.environ.setdefault("ENVIRONMENT", "test")

from atlas.domain.interfaces.billing_provider import BillingProvider, CreditCheck
from atlas.domain.models.agency import AgencyProfile, ApprovedClaim
from atlas.domain.models.opportunity import Opportunity
from atlas.domain.services.availability_service import AvailabilityService
from atlas.infrastructure.storage.memory_store import InMemoryStore

# Sunday 2026-01-04 07:00 in New York
NOW = datetime(2026, 1, 4, 12, 0, tzinfo=pytz.UTC)


class FakeBilling(BillingProvider):
    """Billing provider with a settable balance that records tracked usage"""

    def __init__(self, allowed: bool = True, balance: float = 100):
        self.allowed = allowed
        self.balance = balance
        self.tracked = []
        self.checks = []

    async def check(self, customer_id, feature_id):
        self.checks.append((customer_id, feature_id))
        return CreditCheck(allowed=self.allowed, balance=self.balance, raw={"feature_id": feature_id})

    async def track(self, customer_id, feature_id, value):
        self.tracked.append((customer_id, feature_id, value))


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def agency(store):
    return store.add_agency(AgencyProfile(
        id="agency-1",
        user_id="user-1",
        company_name="Northwind Digital",
        core_offer="Websites that book appointments",
        guardrails=["No pricing promises"],
        approved_claims=[ApprovedClaim(text="Launched 120 local business sites")],
        lead_qualification_criteria=["MISSING_WEBSITE", "FEW_GOOGLE_REVIEWS"],
        availability=["Mon 09:00-10:00"],
        time_zone="America/New_York",
    ))


@pytest.fixture
def opportunity(store, agency):
    store.seed("client_opportunities", Opportunity(
        id="opp-1",
        agency_id=agency.id,
        place_id="place-1",
        name="Harbor Dental",
        phone="+1 (555) 010-2000",
        email="frontdesk@harbordental.example",
        status="READY",
    ).model_dump(mode="json"))
    return "opp-1"


@pytest.fixture
def availability(store):
    return AvailabilityService(store, clock=lambda: NOW)


@pytest.fixture
def queue():
    """Task queue double; enqueue always succeeds"""
    mock = MagicMock()
    mock.enqueue_task = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def billing():
    return FakeBilling()
