"""
Application configuration.
Loads settings from environment variables and an optional .env file.

Version: 1.0.0
"""
import json
import logging
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_ORG_ID = "00000000-0000-0000-0000-000000000001"

DEFAULT_PROTECTED_AGENT_IDS = [
    "10000000-0000-0000-0000-000000000001",
    "10000000-0000-0000-0000-000000000002",
    "10000000-0000-0000-0000-000000000003",
    "10000000-0000-0000-0000-000000000004",
    "10000000-0000-0000-0000-000000000005",
]


def _parse_list(v: Any) -> Any:
    """Accept JSON arrays or comma-separated strings for list settings."""
    if isinstance(v, str):
        v = v.strip()
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in v.split(',') if item.strip()]
    return v


class Settings(BaseSettings):
    """
    Application settings.

    The organisation id is injected into every query; the service is single
    tenant but the id is never hard-coded in queries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(default="Emmie", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development",
        description="Runtime environment (development, testing, staging, production)"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # ===========================
    # Tenant
    # ===========================

    org_id: str = Field(
        default=DEFAULT_ORG_ID,
        description="Organisation identifier that scopes every chat, agent and tool"
    )
    protected_agent_ids: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_AGENT_IDS),
        description="Default system agents that can never be deleted"
    )
    admin_user_ids: List[str] = Field(
        default_factory=list,
        description="Users allowed on /api/admin; empty allows every authenticated user"
    )

    # ===========================
    # API
    # ===========================

    api_prefix: str = Field(default="/api", description="API route prefix")
    api_host: str = Field(default="0.0.0.0", description="Bind host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="Bind port")
    api_workers: int = Field(default=1, ge=1, description="Number of uvicorn workers")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins"
    )
    cors_allow_credentials: bool = Field(default=True, description="Allow CORS credentials")
    user_id_header: str = Field(
        default="X-User-ID",
        description="Header carrying the authenticated user id"
    )

    # ===========================
    # Database
    # ===========================

    database_url: str = Field(
        default="sqlite:///./data/emmie.db",
        description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    database_pool_size: int = Field(default=10, ge=1, description="Connection pool size")
    database_pool_overflow: int = Field(default=20, ge=0, description="Pool overflow")
    database_pool_timeout: int = Field(default=30, ge=1, description="Pool timeout in seconds")
    database_pool_recycle: int = Field(default=3600, ge=60, description="Connection recycle in seconds")

    # ===========================
    # OpenAI
    # ===========================

    openai_api_key: Optional[SecretStr] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(default=None, description="Override OpenAI base URL")
    openai_timeout: float = Field(default=60.0, gt=0, description="Provider request timeout in seconds")

    model_fast: str = Field(default="gpt-5-nano", description="Tier for short, simple prompts")
    model_balanced: str = Field(default="gpt-5-mini", description="Default tier, multimodal capable")
    model_advanced: str = Field(default="gpt-5", description="Tier for long or code-heavy prompts")
    title_model: str = Field(default="gpt-5-nano", description="Model used to generate chat titles")
    title_max_messages: int = Field(
        default=6,
        ge=2,
        le=50,
        description="Messages fed to the title generator"
    )
    max_tool_rounds: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum function-call round trips per chat turn"
    )

    # ===========================
    # Media
    # ===========================

    media_root: str = Field(default="./data/media", description="Local media storage root")
    media_base_url: str = Field(default="/media", description="Public base URL for stored media")
    media_signing_key: SecretStr = Field(
        default=SecretStr("development-signing-key"),
        description="HMAC key used to sign media URLs"
    )
    signed_url_ttl_seconds: int = Field(
        default=60 * 60 * 24,
        ge=60,
        description="Lifetime of signed media URLs"
    )

    # ===========================
    # Telemetry
    # ===========================

    enable_telemetry: bool = Field(default=True, description="Expose Prometheus metrics")
    log_level: str = Field(default="INFO", description="Root log level")

    # ===========================
    # Validators
    # ===========================

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Normalise and validate the environment name."""
        v = v.lower().strip()
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {sorted(allowed)}")
        return v

    @field_validator('cors_origins', 'protected_agent_ids', 'admin_user_ids', mode='before')
    @classmethod
    def parse_list_fields(cls, v):
        """Parse list settings from JSON or comma-separated strings."""
        return _parse_list(v)

    @field_validator('org_id')
    @classmethod
    def validate_org_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("org_id cannot be empty")
        return v.strip()

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return v

    # ===========================
    # Derived properties
    # ===========================

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def database_is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def get_openai_api_key(self) -> Optional[str]:
        """
        Get OpenAI API key value.

        Returns:
            API key string or None if not set
        """
        if self.openai_api_key:
            return self.openai_api_key.get_secret_value()
        return None

    def validate_configuration(self) -> List[str]:
        """
        Check settings for problems that do not prevent startup.

        Returns:
            List of warning messages
        """
        warnings = []

        if not self.openai_api_key:
            warnings.append("OPENAI_API_KEY is not set; chat turns and title generation will fail")

        if self.is_production:
            if self.debug:
                warnings.append("Debug mode is enabled in production")
            if self.media_signing_key.get_secret_value() == "development-signing-key":
                warnings.append("MEDIA_SIGNING_KEY uses the development default in production")
            if self.database_is_sqlite:
                warnings.append("SQLite is not recommended for production")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

__all__ = ['Settings', 'get_settings', 'settings', 'DEFAULT_ORG_ID']
