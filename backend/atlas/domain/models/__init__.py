"""Domain models"""

from .call import (
    CallStatus,
    CallOutcome,
    TranscriptFragment,
    Call,
)

from .lead_gen_flow import (
    FlowStatus,
    PhaseName,
    PhaseStatus,
    PhaseRecord,
    LastEvent,
    BillingBlock,
    PlaceSnapshot,
    LeadGenFlow,
    PHASE_ORDER,
    PHASE_WEIGHTS,
)

from .opportunity import OpportunityStatus, Opportunity

from .audit import (
    AuditJobStatus,
    AuditPhaseName,
    PageStatus,
    AuditJob,
    ScrapedPage,
    AuditDossier,
    DiscoveredPage,
    ScrapedContent,
)

from .meeting import MeetingSource, Meeting
from .agency import ApprovedClaim, AgencyProfile
from .availability import AvailabilityWindow, Slot
from .place import PlaceCandidate
from .crawl import CrawledPage, CrawlStatus, ScrapeResult
from .task import TaskType, TaskStatus, DeferredTask

__all__ = [
    "CallStatus",
    "CallOutcome",
    "TranscriptFragment",
    "Call",
    "FlowStatus",
    "PhaseName",
    "PhaseStatus",
    "PhaseRecord",
    "LastEvent",
    "BillingBlock",
    "PlaceSnapshot",
    "LeadGenFlow",
    "PHASE_ORDER",
    "PHASE_WEIGHTS",
    "OpportunityStatus",
    "Opportunity",
    "AuditJobStatus",
    "AuditPhaseName",
    "PageStatus",
    "AuditJob",
    "ScrapedPage",
    "AuditDossier",
    "DiscoveredPage",
    "ScrapedContent",
    "MeetingSource",
    "Meeting",
    "ApprovedClaim",
    "AgencyProfile",
    "AvailabilityWindow",
    "Slot",
    "PlaceCandidate",
    "CrawledPage",
    "CrawlStatus",
    "ScrapeResult",
    "TaskType",
    "TaskStatus",
    "DeferredTask",
]
