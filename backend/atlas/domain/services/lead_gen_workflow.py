"""
Lead-Gen Workflow
Runs a campaign through source -> filter_rank -> persist_leads ->
scrape_content -> generate_dossier -> finalize_rank

Each phase is tracked on the flow row. The run always starts from the
first phase that is not complete, so a resumed or re-delivered run picks
up where the last one stopped.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

import pytz

from atlas.core.config import ConfigManager
from atlas.core.exceptions import (
    AtlasError,
    BillingError,
    InvalidTransitionError,
    LeadGenPhaseError,
    NotFoundError,
    SourcingError,
)
from atlas.domain.interfaces.billing_provider import BillingProvider
from atlas.domain.interfaces.store import Store
from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.audit import AuditJob, AuditJobStatus, AuditPhaseName
from atlas.domain.models.lead_gen_flow import (
    PHASE_ORDER,
    FlowStatus,
    LastEvent,
    LeadGenFlow,
    PhaseName,
    PhaseStatus,
    PlaceSnapshot,
)
from atlas.domain.models.opportunity import Opportunity, OpportunityStatus
from atlas.domain.models.place import PlaceCandidate
from atlas.domain.services.audit_service import AuditService
from atlas.domain.services.lead_gen_billing import DOSSIER_RESEARCH, LEAD_DISCOVERY, LeadGenBilling
from atlas.domain.services.lead_signals import QualifiedLead, qualify, rank_leads
from atlas.domain.services.lead_sourcing import LeadSourcingService, canonical_domain
from atlas.domain.services.opportunity_service import set_opportunity_status
from atlas.domain.services.phase_tracker import PhaseTracker
from atlas.domain.services.scrape_pipeline import ScrapePipeline, map_progress

logger = logging.getLogger(__name__)

SNAPSHOT_LIMIT = 20
FILTER_PROGRESS_EVERY = 5


def snapshot_to_candidate(snapshot: PlaceSnapshot) -> PlaceCandidate:
    return PlaceCandidate(
        id=snapshot.id,
        name=snapshot.name,
        address=snapshot.address,
        phone=snapshot.phone,
        website=snapshot.website,
        rating=snapshot.rating,
        user_rating_count=snapshot.reviews,
    )


class LeadGenWorkflow:
    """
    Lead generation orchestrator.

    A failed credit check pauses the flow (BillingError) and the run stops
    quietly; ``resume`` re-enters the blocked phase. Any other phase failure
    is recorded on the phase and the flow, then re-raised as
    LeadGenPhaseError.
    """

    def __init__(
        self,
        store: Store,
        sourcing: LeadSourcingService,
        pipeline: ScrapePipeline,
        audits: AuditService,
        billing: BillingProvider,
        config: Optional[ConfigManager] = None
    ):
        self.store = store
        self.sourcing = sourcing
        self.pipeline = pipeline
        self.audits = audits
        self.tracker = PhaseTracker(store)
        self.billing = LeadGenBilling(billing, self.tracker)

        config = config or ConfigManager()
        self.audit_concurrency = max(1, int(config.get("workflow.audit_concurrency", 4)))
        self.progress_start = float(config.get("scraping.progress_start", 0.2))
        self.progress_end = float(config.get("scraping.progress_end", 0.8))

        self._handlers: Dict[PhaseName, Callable[[LeadGenFlow, AgencyProfile], Awaitable[None]]] = {
            PhaseName.SOURCE: self._run_source,
            PhaseName.FILTER_RANK: self._run_filter_rank,
            PhaseName.PERSIST_LEADS: self._run_persist_leads,
            PhaseName.SCRAPE_CONTENT: self._run_scrape_content,
            PhaseName.GENERATE_DOSSIER: self._run_generate_dossier,
            PhaseName.FINALIZE_RANK: self._run_finalize_rank,
        }

    # ========================================
    # Flow lifecycle
    # ========================================

    async def create_flow(
        self,
        user_id: str,
        agency_id: str,
        target_vertical: str,
        target_geography: str,
        num_leads: int = 20
    ) -> LeadGenFlow:
        agency = await self.store.get_agency(agency_id)
        if not agency:
            raise NotFoundError(f"Agency profile {agency_id} not found")

        now = datetime.now(pytz.UTC)
        flow = LeadGenFlow(
            id=str(uuid.uuid4()),
            user_id=user_id,
            agency_id=agency_id,
            num_leads_requested=max(1, int(num_leads)),
            target_vertical=target_vertical.strip(),
            target_geography=target_geography.strip(),
            last_event=LastEvent(type="leadgen.flow.created", message="Lead generation queued", timestamp=now),
            created_at=now,
            updated_at=now,
        )
        flow = await self.store.insert_flow(flow)
        logger.info(f"Created lead-gen flow {flow.id}: {flow.target_vertical} in {flow.target_geography}")
        return flow

    async def run(self, flow_id: str) -> LeadGenFlow:
        """
        Execute the flow from its first incomplete phase.

        Raises:
            LeadGenPhaseError: A phase failed (already recorded on the flow)
        """
        flow = await self.tracker.load(flow_id)
        if flow.status in (FlowStatus.COMPLETED.value, FlowStatus.ERROR.value, FlowStatus.PAUSED_FOR_UPGRADE.value):
            logger.info(f"Flow {flow_id} is {flow.status}, nothing to run")
            return flow

        agency = await self.store.get_agency(flow.agency_id)
        if not agency:
            error = NotFoundError(f"Agency profile {flow.agency_id} not found")
            phase = flow.next_phase() or PhaseName.FINALIZE_RANK
            await self.tracker.record_flow_error(flow_id, phase, error)
            raise LeadGenPhaseError(phase.value, error)

        start = flow.next_phase()
        if start is None:
            await self.tracker.complete_flow(flow_id)
            return await self.tracker.load(flow_id)

        try:
            for phase in PHASE_ORDER[PHASE_ORDER.index(start):]:
                await self._run_phase(flow_id, phase, agency)
        except BillingError as e:
            logger.info(f"Flow {flow_id} stopped at {e.phase}: {e.message}")

        return await self.tracker.load(flow_id)

    async def resume(self, flow_id: str) -> LeadGenFlow:
        """
        Resume a flow paused for upgrade at its blocked phase.

        Raises:
            InvalidTransitionError: The flow is not paused
        """
        flow = await self.tracker.load(flow_id)
        if flow.status != FlowStatus.PAUSED_FOR_UPGRADE.value:
            raise InvalidTransitionError("flow", flow.status, FlowStatus.RUNNING.value)

        blocked = flow.billing_block.phase if flow.billing_block else flow.next_phase()
        await self.tracker.clear_billing_block(flow_id)
        logger.info(f"Resuming flow {flow_id} at {blocked}")
        return await self.run(flow_id)

    async def _run_phase(self, flow_id: str, phase: PhaseName, agency: AgencyProfile) -> None:
        flow = await self.tracker.load(flow_id)
        try:
            await self._handlers[phase](flow, agency)
        except BillingError:
            raise
        except Exception as e:
            logger.error(f"Flow {flow_id} phase {phase.value} failed: {e}")
            await self.tracker.record_flow_error(flow_id, phase, e)
            raise LeadGenPhaseError(phase.value, e) from e

    # ========================================
    # Phase: source
    # ========================================

    async def _run_source(self, flow: LeadGenFlow, agency: AgencyProfile) -> None:
        phase = PhaseName.SOURCE
        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.05, message="Checking lead discovery credits")
        await self.billing.check_and_pause(flow.id, agency.customer_id, LEAD_DISCOVERY, phase)

        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.1, message="Starting Google Places search")
        query = f"{flow.target_vertical} in {flow.target_geography}"
        places = await self.sourcing.source_places(query, flow.num_leads_requested)

        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.7, message=f"Found {len(places)} places")
        if not places:
            raise SourcingError(
                f'No places found for query: "{query}". Try adjusting your target vertical or geography.'
            )

        snapshot = [
            PlaceSnapshot(
                id=p.id,
                name=p.name,
                address=p.address,
                phone=p.phone,
                website=p.website,
                rating=p.rating,
                reviews=p.user_rating_count,
            )
            for p in places[:SNAPSHOT_LIMIT]
        ]
        await self.store.update_flow(flow.id, {"places_snapshot": snapshot, "num_leads_fetched": len(places)})

        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.COMPLETE, 1.0,
            message=f"Fetched {len(places)} places from Google Places",
        )
        await self.billing.track_usage(agency.customer_id, LEAD_DISCOVERY, 1)

    # ========================================
    # Phase: filter_rank
    # ========================================

    def qualified_leads(self, flow: LeadGenFlow, agency: AgencyProfile) -> List[QualifiedLead]:
        """Hard filter, signals and score over the places snapshot, best first."""
        leads = []
        for snapshot in flow.places_snapshot:
            lead = qualify(snapshot_to_candidate(snapshot), agency.lead_qualification_criteria)
            if lead:
                leads.append(lead)
        return rank_leads(leads)

    async def _run_filter_rank(self, flow: LeadGenFlow, agency: AgencyProfile) -> None:
        phase = PhaseName.FILTER_RANK
        total = len(flow.places_snapshot)
        if total == 0:
            raise AtlasError("No places data found to filter")

        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.1, message=f"Filtering {total} places")

        kept = 0
        for processed, snapshot in enumerate(flow.places_snapshot, start=1):
            if qualify(snapshot_to_candidate(snapshot), agency.lead_qualification_criteria):
                kept += 1
            else:
                logger.debug(f"Filtered out {snapshot.name}: no phone number")
            if processed % FILTER_PROGRESS_EVERY == 0 or processed == total:
                await self.tracker.update_phase_status(
                    flow.id, phase, PhaseStatus.RUNNING, 0.1 + 0.8 * processed / total,
                    message=f"Processed {processed}/{total} places",
                )

        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.COMPLETE, 1.0,
            message=f"Filtered leads: kept {kept}, dropped {total - kept}",
        )

    # ========================================
    # Phase: persist_leads
    # ========================================

    async def persist_leads(self, flow: LeadGenFlow, agency: AgencyProfile, leads: List[QualifiedLead]) -> Dict[str, int]:
        """
        Insert qualified leads as opportunities.

        Leads already known to the agency by place id or website domain are
        skipped, so re-running is safe.
        """
        created = updated = skipped = 0

        for lead in leads:
            place = lead.place
            try:
                if await self.store.find_opportunity_by_place_id(agency.id, place.id):
                    logger.debug(f"Skipping {place.name}: place {place.id} already persisted")
                    skipped += 1
                    continue

                domain = canonical_domain(place.website)
                if domain and await self.store.find_opportunity_by_domain(agency.id, domain):
                    logger.debug(f"Skipping {place.name}: domain {domain} already persisted")
                    skipped += 1
                    continue

                await self.store.insert_opportunity(Opportunity(
                    id=str(uuid.uuid4()),
                    agency_id=agency.id,
                    lead_gen_flow_id=flow.id,
                    place_id=place.id,
                    name=place.name,
                    domain=domain,
                    website=place.website,
                    phone=place.phone,
                    address=place.address,
                    rating=place.rating,
                    reviews_count=place.user_rating_count,
                    signals=lead.signals,
                    qualification_score=lead.qualification_score,
                    status=OpportunityStatus.SOURCED,
                    target_vertical=flow.target_vertical,
                    target_geography=flow.target_geography,
                    source="google_places",
                    created_at=datetime.now(pytz.UTC),
                ))
                created += 1

            except Exception as e:
                logger.error(f"Error persisting lead {place.name}: {e}")
                skipped += 1

        logger.info(f"Flow {flow.id} persist: created {created}, updated {updated}, skipped {skipped}")
        return {"created": created, "updated": updated, "skipped": skipped}

    async def _run_persist_leads(self, flow: LeadGenFlow, agency: AgencyProfile) -> None:
        phase = PhaseName.PERSIST_LEADS
        leads = self.qualified_leads(flow, agency)
        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.1, message=f"Saving {len(leads)} leads")

        result = await self.persist_leads(flow, agency, leads)

        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.COMPLETE, 1.0,
            message=f"Persisted leads: created {result['created']}, skipped {result['skipped']}",
        )

    # ========================================
    # Phase: scrape_content
    # ========================================

    async def queue_audits(self, flow_id: str, agency_id: str) -> Dict[str, int]:
        """Create an audit job for every opportunity with a website and no audit yet."""
        queued = skipped = 0

        for opportunity in await self.store.list_opportunities_by_flow(flow_id):
            target = opportunity.website or (f"https://{opportunity.domain}" if opportunity.domain else None)
            if not target:
                skipped += 1
                continue
            if await self.store.find_audit_job_by_opportunity(opportunity.id):
                skipped += 1
                continue

            await self.store.insert_audit_job(AuditJob(
                id=str(uuid.uuid4()),
                opportunity_id=opportunity.id,
                agency_id=agency_id,
                lead_gen_flow_id=flow_id,
                target_url=target,
                created_at=datetime.now(pytz.UTC),
            ))
            await set_opportunity_status(self.store, opportunity, OpportunityStatus.AUDITING)
            queued += 1

        logger.info(f"Flow {flow_id}: queued {queued} audits, skipped {skipped}")
        return {"queued": queued, "skipped": skipped}

    async def _run_scrape_content(self, flow: LeadGenFlow, agency: AgencyProfile) -> None:
        phase = PhaseName.SCRAPE_CONTENT
        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.05, message="Queueing website audits")
        await self.queue_audits(flow.id, agency.id)

        jobs = [
            job for job in await self.store.list_audit_jobs_by_flow(flow.id)
            if job.status in (AuditJobStatus.QUEUED.value, AuditJobStatus.RUNNING.value) and not job.dossier_id
        ]
        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.RUNNING, self.progress_start,
            message=f"Scraping {len(jobs)} websites",
        )

        fractions: Dict[str, float] = {}
        lock = asyncio.Lock()
        semaphore = asyncio.Semaphore(self.audit_concurrency)

        async def report(job_id: str, fraction: float) -> None:
            async with lock:
                fractions[job_id] = fraction
                overall = sum(fractions.values()) / len(jobs)
                await self.tracker.set_progress(
                    flow.id, phase, map_progress(overall, self.progress_start, self.progress_end)
                )

        async def audit_one(job: AuditJob) -> None:
            async with semaphore:
                await self._scrape_job(job, lambda fraction: report(job.id, fraction))

        await asyncio.gather(*(audit_one(job) for job in jobs))

        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.COMPLETE, 1.0,
            message=f"Scraped content for {len(jobs)} websites",
        )

    async def _scrape_job(self, job: AuditJob, report: Callable[[float], Awaitable[None]]) -> None:
        """Discovery, selection and persisted scrape for one audit job; failures stay on the job."""
        try:
            await self.store.update_audit_job(job.id, {"status": AuditJobStatus.RUNNING})

            await self.audits.set_audit_phase(job, AuditPhaseName.MAP_URLS, PhaseStatus.RUNNING)
            pages = await self.pipeline.discover_pages(job.target_url, self.audits.crawl_limit, self.audits.crawl_max_minutes)
            await self.audits.set_audit_phase(job, AuditPhaseName.MAP_URLS, PhaseStatus.COMPLETE)

            await self.audits.set_audit_phase(job, AuditPhaseName.FILTER_URLS, PhaseStatus.RUNNING)
            urls = await self.audits.select_relevant_urls(pages) or [job.target_url]
            await self.store.update_audit_job(job.id, {"selected_urls": urls})
            await self.audits.set_audit_phase(job, AuditPhaseName.FILTER_URLS, PhaseStatus.COMPLETE)

            await self.audits.set_audit_phase(job, AuditPhaseName.SCRAPE_CONTENT, PhaseStatus.RUNNING)
            summary = await self.pipeline.scrape_pages(job.id, urls, on_progress=report)
            if summary.scraped == 0:
                raise AtlasError(f"No pages could be scraped from {job.target_url}")
            await self.audits.set_audit_phase(job, AuditPhaseName.SCRAPE_CONTENT, PhaseStatus.COMPLETE)

        except Exception as e:
            await self.audits.fail_audit(job, e)
            await report(1.0)

    # ========================================
    # Phase: generate_dossier
    # ========================================

    async def _run_generate_dossier(self, flow: LeadGenFlow, agency: AgencyProfile) -> None:
        phase = PhaseName.GENERATE_DOSSIER
        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.05, message="Preparing dossiers")

        jobs = [
            job for job in await self.store.list_audit_jobs_by_flow(flow.id)
            if job.status == AuditJobStatus.RUNNING.value and not job.dossier_id
        ]

        for index, job in enumerate(jobs, start=1):
            await self.billing.check_and_pause(flow.id, agency.customer_id, DOSSIER_RESEARCH, phase)

            contents = await self.pipeline.load_scraped_content(job.id)
            opportunity = await self.store.get_opportunity(job.opportunity_id)
            if not contents or not opportunity:
                await self.audits.fail_audit(job, "No scraped content available for dossier")
                continue

            await self.audits.set_audit_phase(job, AuditPhaseName.GENERATE_DOSSIER, PhaseStatus.RUNNING)
            await self.audits.generate_dossier(job, opportunity, agency, contents)
            await self.audits.set_audit_phase(job, AuditPhaseName.GENERATE_DOSSIER, PhaseStatus.COMPLETE)

            await self.store.update_audit_job(job.id, {"status": AuditJobStatus.COMPLETED})
            await set_opportunity_status(self.store, opportunity, OpportunityStatus.READY)
            await self.billing.track_usage(agency.customer_id, DOSSIER_RESEARCH, 1)

            await self.tracker.update_phase_status(
                flow.id, phase, PhaseStatus.RUNNING, 0.05 + 0.95 * index / len(jobs),
                message=f"Generated dossier for {opportunity.name}",
            )

        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.COMPLETE, 1.0,
            message=f"Generated {len(jobs)} dossiers",
        )

    # ========================================
    # Phase: finalize_rank
    # ========================================

    async def get_opportunity_count_by_flow(self, flow_id: str) -> Dict[str, int]:
        opportunities = await self.store.list_opportunities_by_flow(flow_id)
        with_websites = sum(1 for opp in opportunities if opp.domain)
        return {
            "total": len(opportunities),
            "with_websites": with_websites,
            "without_websites": len(opportunities) - with_websites,
        }

    async def _run_finalize_rank(self, flow: LeadGenFlow, agency: AgencyProfile) -> None:
        phase = PhaseName.FINALIZE_RANK
        await self.tracker.update_phase_status(flow.id, phase, PhaseStatus.RUNNING, 0.1, message="Finalizing lead generation workflow")

        counts = await self.get_opportunity_count_by_flow(flow.id)

        await self.tracker.update_phase_status(
            flow.id, phase, PhaseStatus.COMPLETE, 1.0,
            message=f"Lead generation completed: {counts['total']} opportunities created",
        )
        await self.tracker.complete_flow(flow.id)
