"""
Provider Validation Module
Validates all provider configurations on startup
"""
import os
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class ProviderValidator:
    """
    Validates provider configurations at startup.

    Ensures the API keys for every external collaborator are present
    before the application starts accepting requests.
    """

    # Required environment variables by provider
    REQUIRED_ENV_VARS = {
        "database": [
            ("SUPABASE_URL", "Supabase database"),
            ("SUPABASE_SERVICE_KEY", "Supabase database"),
        ],
        "queue": [("REDIS_URL", "Redis task queue")],
        "voice": [
            ("VAPI_API_KEY", "Vapi voice provider"),
            ("VAPI_PHONE_NUMBER_ID", "Vapi outbound number"),
            ("VAPI_WEBHOOK_SECRET", "Vapi webhook verification"),
        ],
        "places": [("GOOGLE_PLACES_API_KEY", "Google Places lead sourcing")],
        "crawl": [("FIRECRAWL_API_KEY", "Firecrawl crawling")],
        "billing": [("AUTUMN_SECRET_KEY", "Autumn billing")],
        "llm": [("GROQ_API_KEY", "Groq LLM provider")],
    }

    # Optional but recommended
    OPTIONAL_ENV_VARS = {
        "email": [("RESEND_API_KEY", "Resend follow-up email")],
    }

    def __init__(self, strict: bool = False):
        """
        Initialize validator.

        Args:
            strict: If True, treat warnings as errors
        """
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all provider configurations.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        for provider, vars_list in self.REQUIRED_ENV_VARS.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    self._add(provider, env_var, False, f"{description} requires {env_var} to be set")
                else:
                    self._add(provider, env_var, True, f"{description} configured")

        for provider, vars_list in self.OPTIONAL_ENV_VARS.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    # Warnings become errors in strict mode
                    self._add(provider, env_var, not self.strict,
                              f"WARNING: {description} not configured (optional)")
                else:
                    self._add(provider, env_var, True, f"{description} configured")

        all_valid = not any(not r.is_valid for r in self.results)
        return all_valid, self.results

    def _add(self, provider: str, setting: str, is_valid: bool, message: str) -> None:
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=is_valid,
            message=message
        ))

    def log_results(self) -> None:
        """Log all validation results."""
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  ✗ [{r.provider}] {r.message}")
            elif "WARNING" in r.message:
                logger.warning(f"  ⚠ [{r.provider}] {r.message}")
            else:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Provider configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_providers_on_startup(strict: bool = False) -> None:
    """
    Validate all providers at startup.

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ProviderValidator(strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All provider configurations validated successfully")
