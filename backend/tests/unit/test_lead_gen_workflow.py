"""
Unit tests for the Lead-Gen Workflow
Phase execution, pause-for-billing and resume, error recording
"""
from unittest.mock import AsyncMock, patch

import pytest

from atlas.core.exceptions import InvalidTransitionError, LeadGenPhaseError
from atlas.domain.interfaces.crawl_provider import CrawlProvider
from atlas.domain.interfaces.places_provider import PlacesProvider
from atlas.domain.models.crawl import CrawledPage, CrawlStatus, ScrapeResult
from atlas.domain.models.lead_gen_flow import PhaseName
from atlas.domain.models.place import PlaceCandidate
from atlas.domain.services.audit_service import AuditService
from atlas.domain.services.lead_gen_billing import DOSSIER_RESEARCH, LEAD_DISCOVERY
from atlas.domain.services.lead_gen_workflow import LeadGenWorkflow
from atlas.domain.services.lead_sourcing import LeadSourcingService
from atlas.domain.services.scrape_pipeline import ScrapePipeline
from atlas.infrastructure.storage.blob_storage import InMemoryBlobStorage

PLACES = [
    PlaceCandidate(id="p1", name="Harbor Dental", phone="+1 555 010 1000", rating=4.9, user_rating_count=3),
    PlaceCandidate(id="p2", name="Bayside Smiles", phone="+1 555 010 2000", website="https://baysidesmiles.example"),
    PlaceCandidate(id="p3", name="No Phone Dental"),
]


class StaticPlaces(PlacesProvider):
    def __init__(self, places):
        self.places = places

    async def search(self, query, max_results):
        return list(self.places)

    @property
    def name(self):
        return "static"


class SiteCrawler(CrawlProvider):
    """Every crawl completes at once with a homepage and a pricing page"""

    async def start_crawl(self, url, options):
        return "crawl-1"

    async def get_crawl_status(self, job_id, auto_paginate=True):
        return CrawlStatus(status="completed", total=2, completed=2, pages=[
            CrawledPage(url="https://baysidesmiles.example", title="Home"),
            CrawledPage(url="https://baysidesmiles.example/pricing", title="Pricing"),
        ])

    async def scrape(self, url, options=None):
        return ScrapeResult(url=url, title="Page", markdown=f"# {url}", status_code=200)


@pytest.fixture
def workflow(store, agency, billing):
    pipeline = ScrapePipeline(SiteCrawler(), store, InMemoryBlobStorage(), sleep=AsyncMock())
    return LeadGenWorkflow(
        store,
        LeadSourcingService(StaticPlaces(PLACES)),
        pipeline,
        AuditService(store, pipeline),
        billing,
    )


async def create(workflow, agency):
    return await workflow.create_flow("user-1", agency.id, " dentists ", "Austin, TX", 10)


class TestRun:
    """Tests for a full run"""

    @pytest.mark.asyncio
    async def test_completes_all_phases(self, workflow, store, agency, billing):
        flow = await create(workflow, agency)

        flow = await workflow.run(flow.id)

        assert flow.status == "completed"
        assert flow.target_vertical == "dentists"
        assert all(phase.status == "complete" for phase in flow.phases)
        assert flow.overall_progress() == 1.0
        assert flow.num_leads_fetched == 3
        assert flow.last_event.type == "leadgen.flow.completed"

        opportunities = {o.place_id: o for o in await store.list_opportunities_by_flow(flow.id)}
        assert set(opportunities) == {"p1", "p2"}
        assert opportunities["p1"].status == "SOURCED"
        assert opportunities["p1"].qualification_score == 1.0
        assert opportunities["p2"].status == "READY"
        assert opportunities["p2"].domain == "baysidesmiles.example"
        assert opportunities["p2"].fit_reason

        assert billing.tracked == [
            ("user-1", LEAD_DISCOVERY, 1),
            ("user-1", DOSSIER_RESEARCH, 1),
        ]

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate_leads(self, workflow, store, agency):
        flow = await create(workflow, agency)
        await workflow.run(flow.id)

        await workflow.persist_leads(flow, agency, workflow.qualified_leads(await store.get_flow(flow.id), agency))

        assert len(await store.list_opportunities_by_flow(flow.id)) == 2

    @pytest.mark.asyncio
    async def test_completed_flow_is_not_rerun(self, workflow, agency, billing):
        flow = await create(workflow, agency)
        await workflow.run(flow.id)
        checks = len(billing.checks)

        flow = await workflow.run(flow.id)

        assert flow.status == "completed"
        assert len(billing.checks) == checks


class TestBillingPause:
    """Tests for pause-for-upgrade and resume"""

    @pytest.mark.asyncio
    async def test_insufficient_credits_pause_the_flow(self, workflow, store, agency, billing):
        billing.allowed = False
        flow = await create(workflow, agency)

        flow = await workflow.run(flow.id)

        assert flow.status == "paused_for_upgrade"
        assert flow.billing_block.phase == PhaseName.SOURCE.value
        assert flow.billing_block.feature_id == LEAD_DISCOVERY
        assert flow.billing_block.credit_check["allowed"] is False
        assert flow.get_phase(PhaseName.SOURCE).status == "running"
        assert flow.error is None
        assert await store.list_opportunities_by_flow(flow.id) == []

    @pytest.mark.asyncio
    async def test_resume_continues_from_blocked_phase(self, workflow, agency, billing):
        billing.allowed = False
        flow = await create(workflow, agency)
        await workflow.run(flow.id)

        billing.allowed = True
        flow = await workflow.resume(flow.id)

        assert flow.status == "completed"
        assert flow.billing_block is None

    @pytest.mark.asyncio
    async def test_paused_flow_is_not_run_again(self, workflow, agency, billing):
        billing.allowed = False
        flow = await create(workflow, agency)
        await workflow.run(flow.id)
        checks = len(billing.checks)

        flow = await workflow.run(flow.id)

        assert flow.status == "paused_for_upgrade"
        assert len(billing.checks) == checks

    @pytest.mark.asyncio
    async def test_resume_requires_paused_flow(self, workflow, agency):
        flow = await create(workflow, agency)

        with pytest.raises(InvalidTransitionError):
            await workflow.resume(flow.id)


class TestPhaseErrors:
    """Tests for phase failure recording"""

    @pytest.mark.asyncio
    async def test_empty_search_fails_source_phase(self, store, agency, billing):
        pipeline = ScrapePipeline(SiteCrawler(), store, InMemoryBlobStorage(), sleep=AsyncMock())
        workflow = LeadGenWorkflow(
            store, LeadSourcingService(StaticPlaces([])), pipeline, AuditService(store, pipeline), billing
        )
        flow = await create(workflow, agency)

        with pytest.raises(LeadGenPhaseError) as exc:
            await workflow.run(flow.id)

        assert exc.value.phase == "source"
        flow = await store.get_flow(flow.id)
        assert flow.status == "error"
        assert flow.error.startswith('Error in source: No places found for query: "dentists in Austin, TX"')
        assert flow.get_phase(PhaseName.SOURCE).status == "error"
        assert flow.get_phase(PhaseName.FILTER_RANK).status == "pending"

    @pytest.mark.asyncio
    async def test_provider_outage_is_recorded(self, store, agency, billing):
        places = StaticPlaces([])
        places.search = AsyncMock(side_effect=RuntimeError("503 Service Unavailable"))
        pipeline = ScrapePipeline(SiteCrawler(), store, InMemoryBlobStorage(), sleep=AsyncMock())
        workflow = LeadGenWorkflow(
            store, LeadSourcingService(places), pipeline, AuditService(store, pipeline), billing
        )
        flow = await create(workflow, agency)

        with patch("atlas.core.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(LeadGenPhaseError):
                await workflow.run(flow.id)

        flow = await store.get_flow(flow.id)
        assert "Google Places API failed: 503 Service Unavailable" in flow.error

    @pytest.mark.asyncio
    async def test_failed_audit_leaves_data_ready_lead(self, store, agency, billing):
        crawler = SiteCrawler()
        crawler.scrape = AsyncMock(side_effect=RuntimeError("blocked by robots"))
        pipeline = ScrapePipeline(crawler, store, InMemoryBlobStorage(), sleep=AsyncMock())
        workflow = LeadGenWorkflow(
            store, LeadSourcingService(StaticPlaces(PLACES)), pipeline, AuditService(store, pipeline), billing
        )
        flow = await create(workflow, agency)

        flow = await workflow.run(flow.id)

        assert flow.status == "completed"
        opportunity = await store.find_opportunity_by_place_id(agency.id, "p2")
        assert opportunity.status == "DATA_READY"
        job = await store.find_audit_job_by_opportunity(opportunity.id)
        assert job.status == "error"


class TestCounts:
    @pytest.mark.asyncio
    async def test_opportunity_counts(self, workflow, agency):
        flow = await create(workflow, agency)
        await workflow.run(flow.id)

        assert await workflow.get_opportunity_count_by_flow(flow.id) == {
            "total": 2,
            "with_websites": 1,
            "without_websites": 1,
        }
