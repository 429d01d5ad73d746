"""
Service Container
Wires providers, storage and domain services from settings
"""
import logging
from functools import cached_property
from typing import Optional

from atlas.core.config import ConfigManager, Settings, get_settings
from atlas.domain.interfaces.blob_storage import BlobStorage
from atlas.domain.interfaces.store import Store
from atlas.domain.services.audit_service import AuditService
from atlas.domain.services.availability_service import AvailabilityService
from atlas.domain.services.booking_service import BookingFinalizer
from atlas.domain.services.call_lifecycle import CallLifecycleService
from atlas.domain.services.call_metering import CallMeteringService
from atlas.domain.services.lead_gen_workflow import LeadGenWorkflow
from atlas.domain.services.lead_sourcing import LeadSourcingService
from atlas.domain.services.prompt_manager import PromptManager
from atlas.domain.services.scrape_pipeline import ScrapePipeline
from atlas.domain.services.task_queue import TaskQueueService
from atlas.domain.services.transcript_analysis import TranscriptAnalyzer
from atlas.infrastructure.billing.autumn import AutumnBillingProvider
from atlas.infrastructure.crawl.firecrawl import FirecrawlProvider
from atlas.infrastructure.email.resend import ResendEmailSender
from atlas.infrastructure.llm.groq import GroqTextGenerator
from atlas.infrastructure.places.google_places import GooglePlacesProvider
from atlas.infrastructure.telephony.vapi import VapiVoiceProvider
from atlas.services.follow_up_service import FollowUpService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Lazily built object graph shared by the API and the task worker.

    Providers are created on first use, so a missing API key only breaks
    the operations that need that provider.
    """

    def __init__(
        self,
        store: Store,
        blobs: BlobStorage,
        queue: TaskQueueService,
        settings: Optional[Settings] = None,
        config: Optional[ConfigManager] = None
    ):
        self.store = store
        self.blobs = blobs
        self.queue = queue
        self.settings = settings or get_settings()
        self.config = config or ConfigManager()
        self.prompts = PromptManager()

    # ========================================
    # Providers
    # ========================================

    @cached_property
    def places(self) -> GooglePlacesProvider:
        return GooglePlacesProvider(self.settings.google_places_api_key or "")

    @cached_property
    def crawler(self) -> FirecrawlProvider:
        return FirecrawlProvider(self.settings.firecrawl_api_key or "")

    @cached_property
    def voice(self) -> VapiVoiceProvider:
        return VapiVoiceProvider(
            self.settings.vapi_api_key or "",
            api_url=self.settings.vapi_api_url,
            public_base_url=self.settings.public_base_url,
            webhook_secret=self.settings.vapi_webhook_secret,
        )

    @cached_property
    def billing(self) -> AutumnBillingProvider:
        return AutumnBillingProvider(self.settings.autumn_secret_key or "")

    @cached_property
    def text_generator(self) -> Optional[GroqTextGenerator]:
        if not self.settings.groq_api_key:
            logger.warning("GROQ_API_KEY not set, using rule-based fallbacks")
            return None
        return GroqTextGenerator(self.settings.groq_api_key)

    @cached_property
    def email_sender(self) -> Optional[ResendEmailSender]:
        if not self.settings.resend_api_key:
            logger.warning("RESEND_API_KEY not set, confirmation emails disabled")
            return None
        return ResendEmailSender(self.settings.resend_api_key, self.settings.followup_from_address)

    # ========================================
    # Domain services
    # ========================================

    @cached_property
    def availability(self) -> AvailabilityService:
        return AvailabilityService(self.store, config=self.config)

    @cached_property
    def pipeline(self) -> ScrapePipeline:
        return ScrapePipeline(self.crawler, self.store, self.blobs, config=self.config)

    @cached_property
    def audits(self) -> AuditService:
        return AuditService(self.store, self.pipeline, self.text_generator, self.prompts, self.config)

    @cached_property
    def workflow(self) -> LeadGenWorkflow:
        return LeadGenWorkflow(
            self.store,
            LeadSourcingService(self.places, self.config),
            self.pipeline,
            self.audits,
            self.billing,
            self.config,
        )

    @cached_property
    def metering(self) -> CallMeteringService:
        return CallMeteringService(self.store, self.billing)

    @cached_property
    def calls(self) -> CallLifecycleService:
        return CallLifecycleService(
            self.store,
            self.availability,
            self.voice,
            self.queue,
            metering=self.metering,
            prompts=self.prompts,
            settings=self.settings,
            config=self.config,
        )

    @cached_property
    def booking(self) -> BookingFinalizer:
        return BookingFinalizer(self.store, self.availability, self.queue)

    @cached_property
    def analyzer(self) -> TranscriptAnalyzer:
        return TranscriptAnalyzer(
            self.store, self.availability, self.booking, self.text_generator, self.prompts
        )

    @cached_property
    def follow_ups(self) -> FollowUpService:
        return FollowUpService(self.store, self.email_sender, self.settings.followup_from_address)
