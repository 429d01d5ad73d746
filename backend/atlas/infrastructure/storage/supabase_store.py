"""
Supabase Store
Store implementation on top of the Supabase (PostgREST) client
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel
from supabase import Client

from atlas.core.exceptions import MeetingConflictError
from atlas.domain.interfaces.store import Store
from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.audit import AuditDossier, AuditJob, ScrapedPage
from atlas.domain.models.call import Call, TranscriptFragment
from atlas.domain.models.lead_gen_flow import LeadGenFlow
from atlas.domain.models.meeting import Meeting
from atlas.domain.models.opportunity import Opportunity
from atlas.infrastructure.storage.serialization import to_row, to_row_value

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

UNIQUE_VIOLATION = "23505"


def _is_unique_violation(error: Exception) -> bool:
    code = getattr(error, "code", None)
    return code == UNIQUE_VIOLATION or UNIQUE_VIOLATION in str(error)


class SupabaseStore(Store):
    """
    Supabase-backed store.

    Table names match backend/database/schema.sql.
    """

    AGENCIES = "agency_profiles"
    FLOWS = "lead_gen_flows"
    OPPORTUNITIES = "client_opportunities"
    AUDIT_JOBS = "audit_jobs"
    PAGES = "audit_scraped_pages"
    DOSSIERS = "audit_dossiers"
    CALLS = "calls"
    MEETINGS = "meetings"
    EMAILS = "emails"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _one(self, table: str, model: Type[M], **criteria) -> Optional[M]:
        query = self.supabase.table(table).select("*")
        for column, value in criteria.items():
            query = query.eq(column, value)
        response = query.limit(1).execute()
        if not response.data:
            return None
        return model.model_validate(response.data[0])

    def _many(self, table: str, model: Type[M], order: str = "created_at", **criteria) -> List[M]:
        query = self.supabase.table(table).select("*")
        for column, value in criteria.items():
            query = query.eq(column, value)
        response = query.order(order).execute()
        return [model.model_validate(row) for row in (response.data or [])]

    def _insert(self, table: str, model: Type[M], instance: BaseModel) -> M:
        row = to_row_value(instance)
        response = self.supabase.table(table).insert(row).execute()
        return model.model_validate(response.data[0] if response.data else row)

    def _update(self, table: str, row_id: str, fields: Dict[str, Any]) -> None:
        self.supabase.table(table).update(to_row(fields)).eq("id", row_id).execute()

    # ------------------------------------------------------------------
    # Agencies
    # ------------------------------------------------------------------

    async def get_agency(self, agency_id: str) -> Optional[AgencyProfile]:
        return self._one(self.AGENCIES, AgencyProfile, id=agency_id)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def insert_flow(self, flow: LeadGenFlow) -> LeadGenFlow:
        return self._insert(self.FLOWS, LeadGenFlow, flow)

    async def get_flow(self, flow_id: str) -> Optional[LeadGenFlow]:
        return self._one(self.FLOWS, LeadGenFlow, id=flow_id)

    async def update_flow(self, flow_id: str, fields: Dict[str, Any]) -> None:
        self._update(self.FLOWS, flow_id, fields)

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    async def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        return self._one(self.OPPORTUNITIES, Opportunity, id=opportunity_id)

    async def find_opportunity_by_place_id(self, agency_id: str, place_id: str) -> Optional[Opportunity]:
        return self._one(self.OPPORTUNITIES, Opportunity, agency_id=agency_id, place_id=place_id)

    async def find_opportunity_by_domain(self, agency_id: str, domain: str) -> Optional[Opportunity]:
        return self._one(self.OPPORTUNITIES, Opportunity, agency_id=agency_id, domain=domain)

    async def insert_opportunity(self, opportunity: Opportunity) -> Opportunity:
        return self._insert(self.OPPORTUNITIES, Opportunity, opportunity)

    async def update_opportunity(self, opportunity_id: str, fields: Dict[str, Any]) -> None:
        self._update(self.OPPORTUNITIES, opportunity_id, fields)

    async def list_opportunities_by_flow(self, flow_id: str) -> List[Opportunity]:
        return self._many(self.OPPORTUNITIES, Opportunity, lead_gen_flow_id=flow_id)

    # ------------------------------------------------------------------
    # Audits
    # ------------------------------------------------------------------

    async def get_audit_job(self, audit_job_id: str) -> Optional[AuditJob]:
        return self._one(self.AUDIT_JOBS, AuditJob, id=audit_job_id)

    async def find_audit_job_by_opportunity(self, opportunity_id: str) -> Optional[AuditJob]:
        return self._one(self.AUDIT_JOBS, AuditJob, opportunity_id=opportunity_id)

    async def insert_audit_job(self, job: AuditJob) -> AuditJob:
        return self._insert(self.AUDIT_JOBS, AuditJob, job)

    async def update_audit_job(self, audit_job_id: str, fields: Dict[str, Any]) -> None:
        self._update(self.AUDIT_JOBS, audit_job_id, fields)

    async def list_audit_jobs_by_flow(self, flow_id: str) -> List[AuditJob]:
        return self._many(self.AUDIT_JOBS, AuditJob, lead_gen_flow_id=flow_id)

    async def upsert_scraped_page(self, audit_job_id: str, url: str, fields: Dict[str, Any]) -> ScrapedPage:
        row = {"audit_job_id": audit_job_id, "url": url, **to_row(fields)}
        response = self.supabase.table(self.PAGES).upsert(
            row, on_conflict="audit_job_id,url"
        ).execute()
        return ScrapedPage.model_validate(response.data[0])

    async def list_scraped_pages(self, audit_job_id: str) -> List[ScrapedPage]:
        return self._many(self.PAGES, ScrapedPage, order="updated_at", audit_job_id=audit_job_id)

    async def insert_dossier(self, dossier: AuditDossier) -> AuditDossier:
        return self._insert(self.DOSSIERS, AuditDossier, dossier)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def insert_call(self, call: Call) -> Call:
        return self._insert(self.CALLS, Call, call)

    async def get_call(self, call_id: str) -> Optional[Call]:
        return self._one(self.CALLS, Call, id=call_id)

    async def find_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        return self._one(self.CALLS, Call, provider_call_id=provider_call_id)

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> None:
        self._update(self.CALLS, call_id, fields)

    async def append_transcript(self, call_id: str, fragments: List[TranscriptFragment]) -> None:
        # jsonb concatenation happens inside the database, so concurrent
        # appends never overwrite each other
        self.supabase.rpc("append_call_transcript", {
            "p_call_id": call_id,
            "p_fragments": to_row_value(list(fragments)),
        }).execute()

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    async def insert_meeting(self, meeting: Meeting) -> Meeting:
        try:
            return self._insert(self.MEETINGS, Meeting, meeting)
        except Exception as e:
            if _is_unique_violation(e):
                raise MeetingConflictError() from e
            raise

    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        return self._one(self.MEETINGS, Meeting, id=meeting_id)

    async def find_meeting_at(self, agency_id: str, meeting_time: datetime) -> Optional[Meeting]:
        return self._one(self.MEETINGS, Meeting, agency_id=agency_id, meeting_time=meeting_time.isoformat())

    async def list_meetings_between(self, agency_id: str, start: datetime, end: datetime) -> List[Meeting]:
        response = self.supabase.table(self.MEETINGS).select("*").eq(
            "agency_id", agency_id
        ).gte("meeting_time", start.isoformat()).lte(
            "meeting_time", end.isoformat()
        ).order("meeting_time").execute()
        return [Meeting.model_validate(row) for row in (response.data or [])]

    # ------------------------------------------------------------------
    # Emails
    # ------------------------------------------------------------------

    async def find_email_for_meeting(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(self.EMAILS).select("*").eq(
            "meeting_id", meeting_id
        ).limit(1).execute()
        return response.data[0] if response.data else None

    async def insert_email(self, record: Dict[str, Any]) -> Dict[str, Any]:
        response = self.supabase.table(self.EMAILS).insert(to_row(record)).execute()
        return response.data[0] if response.data else record
