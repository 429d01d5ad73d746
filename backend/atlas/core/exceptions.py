"""
Domain Exceptions
Errors raised by the lead-gen, call and booking services
"""
from typing import Any, Dict, Optional


class AtlasError(Exception):
    """Base class for domain errors. Carries a user-facing message."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidTransitionError(AtlasError):
    """Raised when a state change is not allowed by the entity's state machine."""
    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} transition: {current} -> {target}")


class ProviderError(AtlasError):
    """Raised when an external provider returns an error response."""
    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} error{f' ({status_code})' if status_code else ''}: {message}")


class SourcingError(AtlasError):
    """Raised when the places provider fails during lead sourcing."""
    pass


class CrawlFailedError(AtlasError):
    """Raised when a crawl job reports a failed status."""
    def __init__(self, message: str = "Crawl job failed"):
        super().__init__(message)


class CrawlTimeoutError(AtlasError):
    """Raised when a crawl job does not complete within the polling budget."""
    pass


class BillingError(AtlasError):
    """Raised when a credit check fails and the flow is paused for upgrade."""
    def __init__(self, message: str, feature_id: str, phase: str, check: Optional[Dict[str, Any]] = None):
        self.feature_id = feature_id
        self.phase = phase
        self.check = check or {}
        super().__init__(message)


class LeadGenPhaseError(AtlasError):
    """Raised after a phase failure has been recorded on the flow."""
    def __init__(self, phase: str, error: Exception):
        self.phase = phase
        self.error = error
        super().__init__(f"Error in {phase}: {error}")


class CallStartError(AtlasError):
    """Raised when a call cannot be created for an opportunity."""
    pass


class MeetingConflictError(AtlasError):
    """Raised by storage when a meeting already exists for the agency and instant."""
    def __init__(self, message: str = "A meeting already exists at this time"):
        super().__init__(message)


class NotFoundError(AtlasError):
    """Raised when a required record does not exist."""
    pass
