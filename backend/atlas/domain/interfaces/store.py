"""
Store Interface
Abstract persistence boundary injected into every core service
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.audit import AuditDossier, AuditJob, ScrapedPage
from atlas.domain.models.call import Call, TranscriptFragment
from atlas.domain.models.lead_gen_flow import LeadGenFlow
from atlas.domain.models.meeting import Meeting
from atlas.domain.models.opportunity import Opportunity


class Store(ABC):
    """
    Persistence operations used by the core.

    ``update_*`` methods take a dict of column -> value. Values may be
    enums, datetimes or pydantic models; implementations serialize them.
    """

    # ------------------------------------------------------------------
    # Agencies
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_agency(self, agency_id: str) -> Optional[AgencyProfile]:
        pass

    # ------------------------------------------------------------------
    # Lead-gen flows
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_flow(self, flow: LeadGenFlow) -> LeadGenFlow:
        pass

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Optional[LeadGenFlow]:
        pass

    @abstractmethod
    async def update_flow(self, flow_id: str, fields: Dict[str, Any]) -> None:
        pass

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        pass

    @abstractmethod
    async def find_opportunity_by_place_id(self, agency_id: str, place_id: str) -> Optional[Opportunity]:
        pass

    @abstractmethod
    async def find_opportunity_by_domain(self, agency_id: str, domain: str) -> Optional[Opportunity]:
        pass

    @abstractmethod
    async def insert_opportunity(self, opportunity: Opportunity) -> Opportunity:
        pass

    @abstractmethod
    async def update_opportunity(self, opportunity_id: str, fields: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def list_opportunities_by_flow(self, flow_id: str) -> List[Opportunity]:
        pass

    # ------------------------------------------------------------------
    # Audit jobs, pages and dossiers
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_audit_job(self, audit_job_id: str) -> Optional[AuditJob]:
        pass

    @abstractmethod
    async def find_audit_job_by_opportunity(self, opportunity_id: str) -> Optional[AuditJob]:
        pass

    @abstractmethod
    async def insert_audit_job(self, job: AuditJob) -> AuditJob:
        pass

    @abstractmethod
    async def update_audit_job(self, audit_job_id: str, fields: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def list_audit_jobs_by_flow(self, flow_id: str) -> List[AuditJob]:
        pass

    @abstractmethod
    async def upsert_scraped_page(self, audit_job_id: str, url: str, fields: Dict[str, Any]) -> ScrapedPage:
        """Insert or update the page row keyed by (audit_job_id, url)."""
        pass

    @abstractmethod
    async def list_scraped_pages(self, audit_job_id: str) -> List[ScrapedPage]:
        pass

    @abstractmethod
    async def insert_dossier(self, dossier: AuditDossier) -> AuditDossier:
        pass

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_call(self, call: Call) -> Call:
        pass

    @abstractmethod
    async def get_call(self, call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def find_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def append_transcript(self, call_id: str, fragments: List[TranscriptFragment]) -> None:
        """Append fragments to the transcript without rewriting existing entries."""
        pass

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_meeting(self, meeting: Meeting) -> Meeting:
        """
        Insert a meeting.

        Raises:
            MeetingConflictError: If the agency already has a meeting at that instant
        """
        pass

    @abstractmethod
    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        pass

    @abstractmethod
    async def find_meeting_at(self, agency_id: str, meeting_time: datetime) -> Optional[Meeting]:
        pass

    @abstractmethod
    async def list_meetings_between(self, agency_id: str, start: datetime, end: datetime) -> List[Meeting]:
        pass

    # ------------------------------------------------------------------
    # Follow-up emails
    # ------------------------------------------------------------------

    @abstractmethod
    async def find_email_for_meeting(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def insert_email(self, record: Dict[str, Any]) -> Dict[str, Any]:
        pass
