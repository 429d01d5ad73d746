"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Redis/Queue
    redis_url: str = "redis://localhost:6379"

    # Scheduling
    default_timezone: str = "America/New_York"

    # Voice provider (Vapi)
    vapi_api_url: str = "https://api.vapi.ai"
    vapi_api_key: Optional[str] = None
    vapi_phone_number_id: Optional[str] = None
    vapi_webhook_secret: Optional[str] = None
    public_base_url: Optional[str] = None

    # Lead sourcing / crawling
    google_places_api_key: Optional[str] = None
    firecrawl_api_key: Optional[str] = None

    # Billing (Autumn)
    autumn_secret_key: Optional[str] = None

    # LLM
    groq_api_key: Optional[str] = None

    # Follow-up email (Resend)
    resend_api_key: Optional[str] = None
    followup_from_address: str = "Atlas Outbound <notifications@scheduler.atlasoutbound.app>"

    # Blob storage bucket for scraped page content
    content_bucket: str = "scraped-content"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: Optional[str] = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        # Load default config if exists
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        # Load environment-specific config
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        # Substitute environment variables
        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("scraping.batch_size") -> 4
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_retry_policy(self, provider: str) -> Dict[str, float]:
        """Retry policy for an external provider (attempts, base_delay, factor)"""
        policy = self.get(f"retry.{provider}", {}) or {}
        return {
            "attempts": int(policy.get("attempts", 3)),
            "base_delay": float(policy.get("base_delay_ms", 1000)) / 1000.0,
            "factor": float(policy.get("factor", 2)),
        }
