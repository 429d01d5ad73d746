"""
Audit Models
Per-opportunity website audit jobs, scraped pages and dossiers
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from atlas.core.exceptions import InvalidTransitionError
from atlas.domain.models.lead_gen_flow import PhaseStatus


class AuditJobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    ERROR = "error"
    COMPLETED = "completed"


class AuditPhaseName(str, Enum):
    MAP_URLS = "map_urls"
    FILTER_URLS = "filter_urls"
    SCRAPE_CONTENT = "scrape_content"
    GENERATE_DOSSIER = "generate_dossier"


class PageStatus(str, Enum):
    """Per-page scrape state"""
    QUEUED = "queued"
    FETCHING = "fetching"
    SCRAPED = "scraped"
    FAILED = "failed"


PAGE_TRANSITIONS: Dict[PageStatus, set] = {
    PageStatus.QUEUED: {PageStatus.QUEUED, PageStatus.FETCHING, PageStatus.SCRAPED, PageStatus.FAILED},
    PageStatus.FETCHING: {PageStatus.FETCHING, PageStatus.SCRAPED, PageStatus.FAILED, PageStatus.QUEUED},
    PageStatus.SCRAPED: {PageStatus.SCRAPED, PageStatus.FETCHING},
    PageStatus.FAILED: {PageStatus.FAILED, PageStatus.FETCHING},
}


def transition_page(current: PageStatus | str, target: PageStatus | str) -> PageStatus:
    current, target = PageStatus(current), PageStatus(target)
    if target not in PAGE_TRANSITIONS[current]:
        raise InvalidTransitionError("page", current.value, target.value)
    return target


def page_status_for(markdown: Optional[str], status_code: Optional[int]) -> PageStatus:
    """Status for a page row given what the crawler returned."""
    if status_code is not None and status_code >= 400:
        return PageStatus.FAILED
    if markdown and (status_code is None or 200 <= status_code < 400):
        return PageStatus.SCRAPED
    return PageStatus.QUEUED


class AuditPhase(BaseModel):
    name: AuditPhaseName
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}


def default_audit_phases() -> List[AuditPhase]:
    return [AuditPhase(name=name) for name in AuditPhaseName]


class AuditJob(BaseModel):
    """Website audit for one opportunity"""
    id: str
    opportunity_id: str
    agency_id: str
    lead_gen_flow_id: Optional[str] = None
    target_url: str
    status: AuditJobStatus = AuditJobStatus.QUEUED
    phases: List[AuditPhase] = Field(default_factory=default_audit_phases)
    selected_urls: List[str] = Field(default_factory=list)
    dossier_id: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}


class ScrapedPage(BaseModel):
    """Row tracking one page of an audit crawl"""
    id: str
    audit_job_id: str
    url: str
    title: Optional[str] = None
    status: PageStatus = PageStatus.QUEUED
    status_code: Optional[int] = None
    content_ref: Optional[str] = None
    error: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}


class AuditDossier(BaseModel):
    """Sales dossier generated from a prospect's website"""
    id: str
    opportunity_id: str
    audit_job_id: str
    summary: str
    identified_gaps: List[Dict[str, Any]] = Field(default_factory=list)
    talking_points: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class DiscoveredPage(BaseModel):
    """URL/title pair from a discovery-only crawl"""
    url: str
    title: Optional[str] = None


class ScrapedContent(BaseModel):
    """In-memory page content for dossier generation"""
    url: str
    title: Optional[str] = None
    content: str
