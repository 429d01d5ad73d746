"""
Audit Service
Per-opportunity website audit: URL discovery, selection, scraping and dossier
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

import pytz

from atlas.core.config import ConfigManager
from atlas.core.exceptions import AtlasError, NotFoundError
from atlas.core.retry import retry_with_backoff
from atlas.domain.interfaces.store import Store
from atlas.domain.interfaces.text_generator import TextGenerator
from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.audit import (
    AuditDossier,
    AuditJob,
    AuditJobStatus,
    AuditPhaseName,
    DiscoveredPage,
    ScrapedContent,
)
from atlas.domain.models.lead_gen_flow import PhaseStatus
from atlas.domain.models.opportunity import Opportunity, OpportunityStatus
from atlas.domain.services.opportunity_service import set_opportunity_status
from atlas.domain.services.prompt_manager import PromptManager
from atlas.domain.services.scrape_pipeline import ScrapePipeline
from atlas.utils.json_utils import parse_json_object

logger = logging.getLogger(__name__)

MAX_SELECTED_URLS = 4
MAX_CANDIDATE_PAGES = 40
FIT_REASON_MAX_CHARS = 150

_PRIORITY_KEYWORDS = ("product", "service", "pricing", "about", "solution")


def fallback_url_selection(pages: List[DiscoveredPage], max_urls: int = MAX_SELECTED_URLS) -> List[str]:
    """
    Rule-based URL choice: the homepage plus product/service/pricing/about
    pages by URL or title. Falls back to the first three pages.
    """
    if not pages:
        return []

    homepage = pages[0].url
    picked = []
    for page in pages:
        url = page.url.lower()
        title = (page.title or "").lower()
        if page.url == homepage or any(f"/{kw}" in url or kw in title for kw in _PRIORITY_KEYWORDS):
            picked.append(page.url)
        if len(picked) == max_urls:
            break

    return picked or [p.url for p in pages[:3]]


def _dedupe_pages(pages: List[DiscoveredPage]) -> List[DiscoveredPage]:
    seen = set()
    unique = []
    for page in pages:
        if page.url in seen:
            continue
        seen.add(page.url)
        unique.append(page)
    return unique


class AuditService:
    """
    Audits an opportunity's website.

    The text generator is optional; without it (or when it fails) URL
    selection and dossiers use rule-based fallbacks.
    """

    def __init__(
        self,
        store: Store,
        pipeline: ScrapePipeline,
        text_generator: Optional[TextGenerator] = None,
        prompts: Optional[PromptManager] = None,
        config: Optional[ConfigManager] = None
    ):
        self.store = store
        self.pipeline = pipeline
        self.llm = text_generator
        self.prompts = prompts or PromptManager()
        config = config or ConfigManager()
        self.crawl_limit = int(config.get("crawl.audit_limit", 40))
        self.crawl_max_minutes = float(config.get("crawl.audit_max_minutes", 3))
        self.retry_policy = config.get_retry_policy("ai")

    # ========================================
    # URL selection
    # ========================================

    async def select_relevant_urls(self, pages: List[DiscoveredPage]) -> List[str]:
        """Pick up to four URLs worth scraping, only from ``pages``."""
        candidates = _dedupe_pages(pages)[:MAX_CANDIDATE_PAGES]
        if not candidates:
            return []

        if self.llm:
            try:
                prompt = self.prompts.render("url_selection", pages=candidates, max_urls=MAX_SELECTED_URLS)
                raw = await self.llm.generate(prompt, temperature=0.2, max_tokens=512, json_mode=True)
                allowed = {p.url for p in candidates}
                urls = [
                    u for u in parse_json_object(raw).get("urls", [])
                    if isinstance(u, str) and u in allowed
                ][:MAX_SELECTED_URLS]
                if urls:
                    logger.info(f"Selected {len(urls)} URLs via {self.llm.name}")
                    return urls
                logger.info("Model selected no usable URLs, using rule-based selection")
            except Exception as e:
                logger.warning(f"URL selection failed, using rule-based selection: {e}")

        return fallback_url_selection(candidates)

    # ========================================
    # Dossier
    # ========================================

    async def generate_dossier(
        self,
        audit_job: AuditJob,
        opportunity: Opportunity,
        agency: AgencyProfile,
        pages: List[ScrapedContent]
    ) -> Tuple[AuditDossier, str]:
        """
        Build and store the dossier, link it to the job and save the
        opportunity's fit reason.
        """
        try:
            if not self.llm:
                raise RuntimeError("no text generator configured")
            summary, gaps, talking_points, fit_reason = await self._generate_with_model(opportunity, agency, pages)
        except Exception as e:
            logger.error(f"Dossier generation failed for {opportunity.name}, using fallback: {e}")
            summary, gaps, talking_points, fit_reason = self._fallback_dossier(opportunity, pages)

        dossier = await self.store.insert_dossier(AuditDossier(
            id=str(uuid.uuid4()),
            opportunity_id=opportunity.id,
            audit_job_id=audit_job.id,
            summary=summary,
            identified_gaps=gaps,
            talking_points=talking_points,
            created_at=datetime.now(pytz.UTC),
        ))
        await self.store.update_audit_job(audit_job.id, {"dossier_id": dossier.id})
        await self.store.update_opportunity(opportunity.id, {"fit_reason": fit_reason})

        logger.info(f"Generated dossier {dossier.id} for {opportunity.name}")
        return dossier, fit_reason

    async def _generate_with_model(self, opportunity, agency, pages):
        prompt = self.prompts.render("dossier", agency=agency, opportunity=opportunity, pages=pages)
        raw = await retry_with_backoff(
            self.llm.generate,
            prompt,
            temperature=0.3,
            max_tokens=2048,
            json_mode=True,
            label="Dossier generation",
            **self.retry_policy,
        )
        data = parse_json_object(raw)

        summary = str(data.get("summary") or "Analysis completed")
        gaps = [
            {"key": str(g.get("key", "")), "value": str(g.get("value", "")), "source_url": g.get("source_url")}
            for g in data.get("gaps") or [] if isinstance(g, dict)
        ]
        talking_points = []
        for index, point in enumerate(data.get("talking_points") or []):
            if isinstance(point, str):
                point = {"text": point}
            if not isinstance(point, dict):
                continue
            talking_points.append({
                "text": str(point.get("text", "")),
                "approved_claim_id": f"generated_{index}",
                "source_url": point.get("source_url"),
            })

        fit_prompt = self.prompts.render("fit_reason", agency=agency, opportunity=opportunity, summary=summary)
        fit_reason = (await self.llm.generate(fit_prompt, temperature=0.4, max_tokens=120)).strip()
        fit_reason = fit_reason[:FIT_REASON_MAX_CHARS]

        return summary, gaps, talking_points, fit_reason

    def _fallback_dossier(self, opportunity: Opportunity, pages: List[ScrapedContent]):
        source_url = pages[0].url if pages else None
        signals = ", ".join(opportunity.signals)
        summary = (
            f"{opportunity.name} is a {opportunity.target_vertical} business in "
            f"{opportunity.target_geography}. Qualification signals: {signals}."
        )
        gaps = [{"key": "Website Analysis", "value": "Detailed analysis requires manual review", "source_url": source_url}]
        talking_points = [{
            "text": f"Discuss {opportunity.target_vertical} challenges and our solutions",
            "approved_claim_id": "fallback_1",
            "source_url": source_url,
        }]
        fit_reason = (
            f"{opportunity.name} shows {len(opportunity.signals)} qualification signals "
            f"indicating potential for our services."
        )
        return summary, gaps, talking_points, fit_reason[:FIT_REASON_MAX_CHARS]

    # ========================================
    # Audit job state
    # ========================================

    async def set_audit_phase(self, job: AuditJob, phase: AuditPhaseName, status: PhaseStatus) -> None:
        now = datetime.now(pytz.UTC)
        for record in job.phases:
            if record.name != phase.value:
                continue
            record.status = status.value
            if status == PhaseStatus.RUNNING:
                record.started_at = now
            elif status == PhaseStatus.COMPLETE:
                record.completed_at = now
        await self.store.update_audit_job(job.id, {"phases": job.phases})

    async def fail_audit(self, job: AuditJob, error: Exception | str) -> None:
        """Job -> error, opportunity falls back to DATA_READY."""
        logger.error(f"Audit {job.id} failed for opportunity {job.opportunity_id}: {error}")
        await self.store.update_audit_job(job.id, {"status": AuditJobStatus.ERROR, "error": str(error)})
        await set_opportunity_status(self.store, job.opportunity_id, OpportunityStatus.DATA_READY)

    # ========================================
    # Standalone audit
    # ========================================

    async def run_audit(self, audit_job_id: str) -> AuditDossier:
        """
        Discovery crawl, URL selection, in-memory scrape and dossier for one
        opportunity.

        Raises:
            AtlasError: The audit failed; the job and opportunity are updated first
        """
        job = await self.store.get_audit_job(audit_job_id)
        if not job:
            raise NotFoundError(f"Audit job {audit_job_id} not found")

        try:
            opportunity = await self.store.get_opportunity(job.opportunity_id)
            agency = await self.store.get_agency(job.agency_id)
            if not opportunity or not agency:
                raise NotFoundError("Opportunity or agency profile not found")

            await self.store.update_audit_job(job.id, {"status": AuditJobStatus.RUNNING})
            await set_opportunity_status(self.store, opportunity, OpportunityStatus.AUDITING)

            await self.set_audit_phase(job, AuditPhaseName.MAP_URLS, PhaseStatus.RUNNING)
            pages = await self.pipeline.discover_pages(job.target_url, self.crawl_limit, self.crawl_max_minutes)
            await self.set_audit_phase(job, AuditPhaseName.MAP_URLS, PhaseStatus.COMPLETE)

            await self.set_audit_phase(job, AuditPhaseName.FILTER_URLS, PhaseStatus.RUNNING)
            urls = await self.select_relevant_urls(pages)
            await self.store.update_audit_job(job.id, {"selected_urls": urls})
            await self.set_audit_phase(job, AuditPhaseName.FILTER_URLS, PhaseStatus.COMPLETE)

            await self.set_audit_phase(job, AuditPhaseName.SCRAPE_CONTENT, PhaseStatus.RUNNING)
            contents = await self.pipeline.scrape_audit_urls(urls)
            await self.set_audit_phase(job, AuditPhaseName.SCRAPE_CONTENT, PhaseStatus.COMPLETE)

            await self.set_audit_phase(job, AuditPhaseName.GENERATE_DOSSIER, PhaseStatus.RUNNING)
            dossier, _ = await self.generate_dossier(job, opportunity, agency, contents)
            await self.set_audit_phase(job, AuditPhaseName.GENERATE_DOSSIER, PhaseStatus.COMPLETE)

            await self.store.update_audit_job(job.id, {"status": AuditJobStatus.COMPLETED})
            await set_opportunity_status(self.store, opportunity.id, OpportunityStatus.READY)

            logger.info(f"Audit {job.id} complete: dossier {dossier.id}")
            return dossier

        except Exception as e:
            await self.fail_audit(job, e)
            raise AtlasError(f"Audit action failed: {e}") from e
