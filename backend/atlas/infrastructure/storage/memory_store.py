"""
In-Memory Store
Process-local Store implementation for development runs and tests
"""
import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from atlas.core.exceptions import MeetingConflictError
from atlas.domain.interfaces.store import Store
from atlas.domain.models.agency import AgencyProfile
from atlas.domain.models.audit import AuditDossier, AuditJob, ScrapedPage
from atlas.domain.models.call import Call, TranscriptFragment
from atlas.domain.models.lead_gen_flow import LeadGenFlow
from atlas.domain.models.meeting import Meeting
from atlas.domain.models.opportunity import Opportunity
from atlas.infrastructure.storage.serialization import parse_timestamp, to_row, to_row_value

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class InMemoryStore(Store):
    """
    Dict-backed store.

    Rows are kept in their serialized (JSON) form so that reads go through
    the same model validation as the Supabase store.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {
            "agency_profiles": {},
            "lead_gen_flows": {},
            "client_opportunities": {},
            "audit_jobs": {},
            "audit_scraped_pages": {},
            "audit_dossiers": {},
            "calls": {},
            "meetings": {},
            "emails": {},
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _insert(self, table: str, model: BaseModel) -> Dict[str, Any]:
        row = to_row_value(model)
        row_id = row.get("id") or str(uuid.uuid4())
        row["id"] = row_id
        self._tables[table][row_id] = row
        return copy.deepcopy(row)

    def _get(self, table: str, row_id: str, model: Type[M]) -> Optional[M]:
        row = self._tables[table].get(row_id)
        return model.model_validate(copy.deepcopy(row)) if row else None

    def _find(self, table: str, model: Type[M], **criteria) -> List[M]:
        return [
            model.model_validate(copy.deepcopy(row))
            for row in self._tables[table].values()
            if all(row.get(k) == v for k, v in criteria.items())
        ]

    def _update(self, table: str, row_id: str, fields: Dict[str, Any]) -> None:
        row = self._tables[table].get(row_id)
        if row is None:
            logger.warning(f"Update skipped, {table} row {row_id} not found")
            return
        row.update(to_row(fields))

    def seed(self, table: str, row: Dict[str, Any]) -> None:
        """Insert a raw row (fixtures, dev bootstrap)."""
        row = to_row(row)
        row.setdefault("id", str(uuid.uuid4()))
        self._tables[table][row["id"]] = row

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._tables[table].values()]

    # ------------------------------------------------------------------
    # Agencies
    # ------------------------------------------------------------------

    async def get_agency(self, agency_id: str) -> Optional[AgencyProfile]:
        return self._get("agency_profiles", agency_id, AgencyProfile)

    def add_agency(self, agency: AgencyProfile) -> AgencyProfile:
        self._insert("agency_profiles", agency)
        return agency

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def insert_flow(self, flow: LeadGenFlow) -> LeadGenFlow:
        return LeadGenFlow.model_validate(self._insert("lead_gen_flows", flow))

    async def get_flow(self, flow_id: str) -> Optional[LeadGenFlow]:
        return self._get("lead_gen_flows", flow_id, LeadGenFlow)

    async def update_flow(self, flow_id: str, fields: Dict[str, Any]) -> None:
        self._update("lead_gen_flows", flow_id, fields)

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    async def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        return self._get("client_opportunities", opportunity_id, Opportunity)

    async def find_opportunity_by_place_id(self, agency_id: str, place_id: str) -> Optional[Opportunity]:
        found = self._find("client_opportunities", Opportunity, agency_id=agency_id, place_id=place_id)
        return found[0] if found else None

    async def find_opportunity_by_domain(self, agency_id: str, domain: str) -> Optional[Opportunity]:
        found = self._find("client_opportunities", Opportunity, agency_id=agency_id, domain=domain)
        return found[0] if found else None

    async def insert_opportunity(self, opportunity: Opportunity) -> Opportunity:
        return Opportunity.model_validate(self._insert("client_opportunities", opportunity))

    async def update_opportunity(self, opportunity_id: str, fields: Dict[str, Any]) -> None:
        self._update("client_opportunities", opportunity_id, fields)

    async def list_opportunities_by_flow(self, flow_id: str) -> List[Opportunity]:
        return self._find("client_opportunities", Opportunity, lead_gen_flow_id=flow_id)

    # ------------------------------------------------------------------
    # Audits
    # ------------------------------------------------------------------

    async def get_audit_job(self, audit_job_id: str) -> Optional[AuditJob]:
        return self._get("audit_jobs", audit_job_id, AuditJob)

    async def find_audit_job_by_opportunity(self, opportunity_id: str) -> Optional[AuditJob]:
        found = self._find("audit_jobs", AuditJob, opportunity_id=opportunity_id)
        return found[0] if found else None

    async def insert_audit_job(self, job: AuditJob) -> AuditJob:
        return AuditJob.model_validate(self._insert("audit_jobs", job))

    async def update_audit_job(self, audit_job_id: str, fields: Dict[str, Any]) -> None:
        self._update("audit_jobs", audit_job_id, fields)

    async def list_audit_jobs_by_flow(self, flow_id: str) -> List[AuditJob]:
        return self._find("audit_jobs", AuditJob, lead_gen_flow_id=flow_id)

    async def upsert_scraped_page(self, audit_job_id: str, url: str, fields: Dict[str, Any]) -> ScrapedPage:
        for row in self._tables["audit_scraped_pages"].values():
            if row["audit_job_id"] == audit_job_id and row["url"] == url:
                row.update(to_row(fields))
                return ScrapedPage.model_validate(copy.deepcopy(row))

        page = ScrapedPage(id=str(uuid.uuid4()), audit_job_id=audit_job_id, url=url, **fields)
        return ScrapedPage.model_validate(self._insert("audit_scraped_pages", page))

    async def list_scraped_pages(self, audit_job_id: str) -> List[ScrapedPage]:
        return self._find("audit_scraped_pages", ScrapedPage, audit_job_id=audit_job_id)

    async def insert_dossier(self, dossier: AuditDossier) -> AuditDossier:
        return AuditDossier.model_validate(self._insert("audit_dossiers", dossier))

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def insert_call(self, call: Call) -> Call:
        return Call.model_validate(self._insert("calls", call))

    async def get_call(self, call_id: str) -> Optional[Call]:
        return self._get("calls", call_id, Call)

    async def find_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        found = self._find("calls", Call, provider_call_id=provider_call_id)
        return found[0] if found else None

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> None:
        self._update("calls", call_id, fields)

    async def append_transcript(self, call_id: str, fragments: List[TranscriptFragment]) -> None:
        row = self._tables["calls"].get(call_id)
        if row is None:
            logger.warning(f"Transcript append skipped, call {call_id} not found")
            return
        row.setdefault("transcript", [])
        row["transcript"].extend(to_row_value(list(fragments)))

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    async def insert_meeting(self, meeting: Meeting) -> Meeting:
        # Mirrors the unique index on (agency_id, meeting_time)
        if await self.find_meeting_at(meeting.agency_id, meeting.meeting_time):
            raise MeetingConflictError()
        return Meeting.model_validate(self._insert("meetings", meeting))

    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        return self._get("meetings", meeting_id, Meeting)

    async def find_meeting_at(self, agency_id: str, meeting_time: datetime) -> Optional[Meeting]:
        for row in self._tables["meetings"].values():
            if row["agency_id"] == agency_id and parse_timestamp(row["meeting_time"]) == meeting_time:
                return Meeting.model_validate(copy.deepcopy(row))
        return None

    async def list_meetings_between(self, agency_id: str, start: datetime, end: datetime) -> List[Meeting]:
        meetings = [
            Meeting.model_validate(copy.deepcopy(row))
            for row in self._tables["meetings"].values()
            if row["agency_id"] == agency_id
            and start <= parse_timestamp(row["meeting_time"]) <= end
        ]
        return sorted(meetings, key=lambda m: m.meeting_time)

    # ------------------------------------------------------------------
    # Emails
    # ------------------------------------------------------------------

    async def find_email_for_meeting(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        for row in self._tables["emails"].values():
            if row.get("meeting_id") == meeting_id:
                return copy.deepcopy(row)
        return None

    async def insert_email(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = to_row(record)
        row.setdefault("id", str(uuid.uuid4()))
        self._tables["emails"][row["id"]] = row
        return copy.deepcopy(row)
